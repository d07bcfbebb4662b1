from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources as importlib_resources
from pathlib import Path
from typing import Any

import tomllib

_RESOURCE_PACKAGE = "dxbench.config"
_RUNTIME_DEFAULTS_FILE = "defaults.toml"
RUNTIME_DEFAULTS_PATH_ENV_VAR = "DXBENCH_RUNTIME_DEFAULTS_PATH"
MAX_CONFIG_FILE_BYTES = 1_048_576
SOURCE_PACKAGED = "packaged_toml"
SOURCE_OVERRIDE = "override_toml"
_MATERIALIZED: dict[str, Path] = {}
_MATERIALIZED_DIR: tempfile.TemporaryDirectory | None = None


@dataclass(frozen=True)
class TomlDocument:
    """Outcome of reading one TOML file; ``error_kind`` is set whenever ``ok`` is false."""

    source: str
    path: str
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error_kind: str | None = None
    size_bytes: int | None = None


def packaged_file(filename: str) -> Path:
    resource = importlib_resources.files(_RESOURCE_PACKAGE).joinpath(filename)
    if isinstance(resource, Path):
        return resource
    # Zipped installs hand back a Traversable that is not a real path.
    global _MATERIALIZED_DIR
    cached = _MATERIALIZED.get(filename)
    if cached is not None and cached.exists():
        return cached
    if _MATERIALIZED_DIR is None:
        _MATERIALIZED_DIR = tempfile.TemporaryDirectory(prefix="dxbench-config-")
    target = Path(_MATERIALIZED_DIR.name) / filename
    target.write_bytes(resource.read_bytes())
    _MATERIALIZED[filename] = target
    return target


def override_path() -> Path | None:
    raw = os.getenv(RUNTIME_DEFAULTS_PATH_ENV_VAR, "").strip()
    return Path(raw).expanduser() if raw else None


@lru_cache(maxsize=16)
def _parse_cached(path_str: str, mtime_ns: int, size_bytes: int) -> Any:
    del mtime_ns, size_bytes
    with open(path_str, "rb") as handle:
        return tomllib.load(handle)


def read_toml(path: Path, *, source: str) -> TomlDocument:
    """Read ``path`` without raising; repeated reads of an unchanged file are cached."""
    try:
        resolved = path.resolve()
        stat = resolved.stat()
    except FileNotFoundError:
        return TomlDocument(source, str(path), False, error_kind="missing")
    except OSError:
        return TomlDocument(source, str(path), False, error_kind="unreadable")
    if stat.st_size > MAX_CONFIG_FILE_BYTES:
        return TomlDocument(source, str(resolved), False, error_kind="oversized", size_bytes=stat.st_size)
    try:
        loaded = _parse_cached(str(resolved), stat.st_mtime_ns, stat.st_size)
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError):
        return TomlDocument(source, str(resolved), False, error_kind="invalid_toml")
    if not isinstance(loaded, dict):
        return TomlDocument(source, str(resolved), False, error_kind="invalid_shape")
    return TomlDocument(source, str(resolved), True, payload=loaded, size_bytes=stat.st_size)


def load_packaged_defaults() -> TomlDocument:
    return read_toml(packaged_file(_RUNTIME_DEFAULTS_FILE), source=SOURCE_PACKAGED)


def load_override_defaults() -> TomlDocument | None:
    path = override_path()
    if path is None:
        return None
    return read_toml(path, source=SOURCE_OVERRIDE)
