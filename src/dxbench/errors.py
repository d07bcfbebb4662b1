from dxbench.util import ReadableException


class DxError(ReadableException):
    """Base class for every error the harness raises on purpose."""

    exit_code = 1


class ConfigError(DxError):
    """Missing or invalid flags, malformed specs, nonexistent compare targets."""

    exit_code = 2


class SchemaError(DxError):
    """The remote service refused to create or describe an index or field."""

    exit_code = 3


class ArtifactError(DxError):
    """A persisted benchmark could not be read, parsed, written or deleted, or does not match this run."""

    exit_code = 4


class AdapterError(DxError):
    exit_code = 5


class TransientAdapterError(AdapterError):
    """A single query or ingest batch failed; the position is dropped and the run continues."""


class PermanentAdapterError(AdapterError):
    """Failures exceeded the adapter's threshold; the run is aborted."""


class RunCancelled(DxError):
    exit_code = 130


__all__ = [
    "DxError",
    "ConfigError",
    "SchemaError",
    "ArtifactError",
    "AdapterError",
    "TransientAdapterError",
    "PermanentAdapterError",
    "RunCancelled",
]
