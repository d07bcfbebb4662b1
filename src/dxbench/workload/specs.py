from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import tomllib

from dxbench.config.constants import ARTIFACT_SUFFIXES
from dxbench.errors import ConfigError

DEFAULT_FIELD_TYPE = "set"
VALID_FIELD_TYPES = frozenset({"set", "mutex", "time"})


@dataclass(frozen=True)
class FieldSpec:
    name: str
    min: int
    max: int
    cardinality: int | None = None
    type: str = DEFAULT_FIELD_TYPE

    @property
    def row_range(self) -> int:
        return self.max - self.min + 1

    def options(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class IndexSpec:
    name: str
    columns: int
    fields: tuple[FieldSpec, ...]


@dataclass(frozen=True)
class WorkloadSpec:
    indexes: tuple[IndexSpec, ...]
    raw: bytes

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.raw)

    def artifact_name(self, command: str) -> str:
        return artifact_name(self.raw, command)


def fingerprint(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def artifact_name(raw: bytes, command: str) -> str:
    suffix = ARTIFACT_SUFFIXES.get(command)
    if suffix is None:
        raise ConfigError(f"unknown command {command!r}; expected one of: {', '.join(sorted(ARTIFACT_SUFFIXES))}")
    return fingerprint(raw) + suffix


def _require_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{what} must be an integer, got {value!r}")
    if value < 0:
        raise ConfigError(f"{what} must be non-negative, got {value}")
    return value


def _parse_field(index_name: str, raw: Any) -> FieldSpec:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"index {index_name!r}: every field must be a table")
    name = str(raw.get("name", "")).strip()
    if not name:
        raise ConfigError(f"index {index_name!r}: field without a name")
    where = f"field {index_name}.{name}"
    minimum = _require_int(raw.get("min", 0), f"{where} min")
    if "max" not in raw:
        raise ConfigError(f"{where} needs a max row id")
    maximum = _require_int(raw["max"], f"{where} max")
    if minimum > maximum:
        raise ConfigError(f"{where}: min ({minimum}) is greater than max ({maximum})")
    cardinality = raw.get("cardinality")
    if cardinality is not None:
        cardinality = _require_int(cardinality, f"{where} cardinality")
    field_type = str(raw.get("type", DEFAULT_FIELD_TYPE)).strip().lower()
    if field_type not in VALID_FIELD_TYPES:
        raise ConfigError(f"{where}: unsupported type {field_type!r}")
    return FieldSpec(name=name, min=minimum, max=maximum, cardinality=cardinality, type=field_type)


def parse_specs(raw: bytes) -> WorkloadSpec:
    try:
        document = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError("specs document is not valid TOML", exc) from exc

    indexes_raw = document.get("indexes")
    if not isinstance(indexes_raw, Mapping) or not indexes_raw:
        raise ConfigError("specs document declares no [indexes]")

    indexes = []
    for index_name, index_raw in indexes_raw.items():
        if not isinstance(index_raw, Mapping):
            raise ConfigError(f"index {index_name!r} must be a table")
        columns = _require_int(index_raw.get("columns", 0), f"index {index_name} columns")
        fields_raw = index_raw.get("fields", [])
        if not isinstance(fields_raw, list) or not fields_raw:
            raise ConfigError(f"index {index_name!r} declares no fields")
        fields = tuple(_parse_field(index_name, item) for item in fields_raw)
        names = [field.name for field in fields]
        if len(set(names)) != len(names):
            raise ConfigError(f"index {index_name!r} declares a field twice")
        indexes.append(IndexSpec(name=str(index_name), columns=columns, fields=fields))
    return WorkloadSpec(indexes=tuple(indexes), raw=raw)


def load_specs(path: str | Path) -> WorkloadSpec:
    specs_path = Path(path).expanduser()
    try:
        raw = specs_path.read_bytes()
    except FileNotFoundError:
        raise ConfigError(f"specs file {specs_path} does not exist") from None
    except OSError as exc:
        raise ConfigError(f"could not read specs file {specs_path}", exc) from exc
    return parse_specs(raw)
