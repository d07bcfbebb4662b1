from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
from typing import Any, Mapping

from dxbench.config.loader import load_override_defaults, load_packaged_defaults
from dxbench.util.logging import log_structured_event

_MAX_CONFIG_STRING_LENGTH = 128
_MAX_CONFIG_INT = 1_000_000_000
_MAX_CONFIG_LIST_ITEMS = 64
VALID_CLIENT_TYPES = frozenset({"single", "round_robin"})
VALID_CONTENT_TYPES = frozenset({"binary", "textual"})
VALID_QUERY_MODES = frozenset({"columns", "count"})
VALID_ROW_DISTRIBUTIONS = frozenset({"uniform", "zipf"})
RUNTIME_DEFAULTS_SCHEMA_VERSION = 1
_RUNTIME_DEFAULTS_LOG = logging.getLogger("dxbench.config.runtime_defaults")


@dataclass(frozen=True)
class PoolDefaults:
    workers: int = 4
    thread_name_prefix: str = "dxbench-worker"


@dataclass(frozen=True)
class WorkloadDefaults:
    seed: int = 1
    rows_per_intersect: int = 2
    batch_sizes: tuple[int, ...] = (1000, 10000, 100000)
    row_distribution: str = "uniform"
    query_mode: str = "columns"
    ingest_iterations: int = 100_000
    ingest_batch_size: int = 1000
    zipf_exponent: float = 1.01
    zipf_ratio: float = 0.25


@dataclass(frozen=True)
class ClientDefaults:
    port: int = 10101
    client_type: str = "single"
    content_type: str = "binary"
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 60.0
    retry_total: int = 3
    retry_backoff_seconds: float = 0.4
    max_consecutive_failures: int = 10


@dataclass(frozen=True)
class StoreDefaults:
    data_dir: str = "~/.dxbench"


@dataclass(frozen=True)
class RuntimeDefaults:
    pool_defaults: PoolDefaults
    workload_defaults: WorkloadDefaults
    client_defaults: ClientDefaults
    store_defaults: StoreDefaults


_BUILTIN_RUNTIME_DEFAULTS = RuntimeDefaults(
    pool_defaults=PoolDefaults(),
    workload_defaults=WorkloadDefaults(),
    client_defaults=ClientDefaults(),
    store_defaults=StoreDefaults(),
)


def _log_runtime_defaults_source(
    source: str,
    *,
    error_kind: str | None,
    schema_status: str,
    used_fallback: bool,
) -> None:
    level = logging.WARNING if used_fallback else logging.DEBUG
    log_structured_event(
        _RUNTIME_DEFAULTS_LOG,
        level,
        "runtime_defaults_source",
        source=source,
        schema_status=schema_status,
        error_kind=error_kind,
        used_fallback=bool(used_fallback),
    )


def _schema_status(payload: Mapping[str, Any], *, require_schema: bool) -> tuple[bool, str]:
    meta = _to_mapping(payload.get("meta"))
    raw = meta.get("schema_version")
    if raw is None:
        if require_schema:
            return False, "missing"
        return True, "absent"
    try:
        version = int(raw)
    except (TypeError, ValueError):
        return False, "mismatch"
    if version != RUNTIME_DEFAULTS_SCHEMA_VERSION:
        return False, "mismatch"
    return True, "ok"


def _parse_positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool):
        return int(default)
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        return int(default)
    if parsed <= 0:
        return int(default)
    return min(parsed, _MAX_CONFIG_INT)


def _parse_non_negative_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool):
        return int(default)
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        return int(default)
    if parsed < 0:
        return int(default)
    return min(parsed, _MAX_CONFIG_INT)


def _parse_positive_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool):
        return float(default)
    try:
        parsed = float(raw)
    except (TypeError, ValueError):
        return float(default)
    if not parsed > 0:
        return float(default)
    return parsed


def _parse_choice(raw: Any, default: str, valid_values: frozenset[str]) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip().lower()
    if len(value) > _MAX_CONFIG_STRING_LENGTH:
        return str(default)
    return value if value in valid_values else str(default)


def _parse_small_string(raw: Any, default: str) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip()
    if not value:
        return str(default)
    if len(value) > _MAX_CONFIG_STRING_LENGTH:
        return str(default)
    return value


def _parse_positive_int_list(raw: Any, default: tuple[int, ...]) -> tuple[int, ...]:
    if not isinstance(raw, (list, tuple)):
        return tuple(default)
    result: list[int] = []
    for value in raw[:_MAX_CONFIG_LIST_ITEMS]:
        parsed = _parse_positive_int(value, 0)
        if parsed > 0:
            result.append(parsed)
    if not result:
        return tuple(default)
    return tuple(result)


def _to_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    return {}


def parse_runtime_defaults(
    payload: Mapping[str, Any] | None,
    *,
    base: RuntimeDefaults | None = None,
) -> RuntimeDefaults:
    root = _to_mapping(payload)
    runtime_base = _BUILTIN_RUNTIME_DEFAULTS if base is None else base

    pool_raw = _to_mapping(root.get("pool_defaults"))
    pool_builtin = runtime_base.pool_defaults
    pool_defaults = PoolDefaults(
        workers=_parse_positive_int(pool_raw.get("workers"), pool_builtin.workers),
        thread_name_prefix=_parse_small_string(
            pool_raw.get("thread_name_prefix"),
            pool_builtin.thread_name_prefix,
        ),
    )

    workload_raw = _to_mapping(root.get("workload_defaults"))
    workload_builtin = runtime_base.workload_defaults
    zipf_ratio = _parse_positive_float(workload_raw.get("zipf_ratio"), workload_builtin.zipf_ratio)
    if zipf_ratio > 1.0:
        zipf_ratio = workload_builtin.zipf_ratio
    zipf_exponent = _parse_positive_float(workload_raw.get("zipf_exponent"), workload_builtin.zipf_exponent)
    if zipf_exponent <= 1.0:
        zipf_exponent = workload_builtin.zipf_exponent
    workload_defaults = WorkloadDefaults(
        seed=_parse_non_negative_int(workload_raw.get("seed"), workload_builtin.seed),
        rows_per_intersect=_parse_positive_int(
            workload_raw.get("rows_per_intersect"),
            workload_builtin.rows_per_intersect,
        ),
        batch_sizes=_parse_positive_int_list(workload_raw.get("batch_sizes"), workload_builtin.batch_sizes),
        row_distribution=_parse_choice(
            workload_raw.get("row_distribution"),
            workload_builtin.row_distribution,
            VALID_ROW_DISTRIBUTIONS,
        ),
        query_mode=_parse_choice(
            workload_raw.get("query_mode"),
            workload_builtin.query_mode,
            VALID_QUERY_MODES,
        ),
        ingest_iterations=_parse_positive_int(
            workload_raw.get("ingest_iterations"),
            workload_builtin.ingest_iterations,
        ),
        ingest_batch_size=_parse_positive_int(
            workload_raw.get("ingest_batch_size"),
            workload_builtin.ingest_batch_size,
        ),
        zipf_exponent=zipf_exponent,
        zipf_ratio=zipf_ratio,
    )

    client_raw = _to_mapping(root.get("client_defaults"))
    client_builtin = runtime_base.client_defaults
    client_defaults = ClientDefaults(
        port=_parse_positive_int(client_raw.get("port"), client_builtin.port),
        client_type=_parse_choice(client_raw.get("client_type"), client_builtin.client_type, VALID_CLIENT_TYPES),
        content_type=_parse_choice(
            client_raw.get("content_type"),
            client_builtin.content_type,
            VALID_CONTENT_TYPES,
        ),
        connect_timeout_seconds=_parse_positive_float(
            client_raw.get("connect_timeout_seconds"),
            client_builtin.connect_timeout_seconds,
        ),
        request_timeout_seconds=_parse_positive_float(
            client_raw.get("request_timeout_seconds"),
            client_builtin.request_timeout_seconds,
        ),
        retry_total=_parse_non_negative_int(client_raw.get("retry_total"), client_builtin.retry_total),
        retry_backoff_seconds=_parse_positive_float(
            client_raw.get("retry_backoff_seconds"),
            client_builtin.retry_backoff_seconds,
        ),
        max_consecutive_failures=_parse_positive_int(
            client_raw.get("max_consecutive_failures"),
            client_builtin.max_consecutive_failures,
        ),
    )

    store_raw = _to_mapping(root.get("store_defaults"))
    store_builtin = runtime_base.store_defaults
    store_defaults = StoreDefaults(
        data_dir=_parse_small_string(store_raw.get("data_dir"), store_builtin.data_dir),
    )

    return RuntimeDefaults(
        pool_defaults=pool_defaults,
        workload_defaults=workload_defaults,
        client_defaults=client_defaults,
        store_defaults=store_defaults,
    )


@lru_cache(maxsize=1)
def get_runtime_defaults() -> RuntimeDefaults:
    """Packaged defaults, layered under ``$DXBENCH_RUNTIME_DEFAULTS_PATH`` when it is set.

    A broken packaged file falls back to the builtin dataclass defaults; a broken
    override is ignored. Either way a ``runtime_defaults_source`` event records what won.
    """
    packaged = load_packaged_defaults()
    if not packaged.ok:
        _log_runtime_defaults_source(
            "builtin_fallback",
            error_kind=f"packaged_{packaged.error_kind}",
            schema_status="missing",
            used_fallback=True,
        )
        return _BUILTIN_RUNTIME_DEFAULTS

    schema_ok, schema_state = _schema_status(packaged.payload, require_schema=True)
    if not schema_ok:
        _log_runtime_defaults_source(
            "builtin_fallback",
            error_kind="missing_packaged_schema" if schema_state == "missing" else "packaged_schema_mismatch",
            schema_status=schema_state,
            used_fallback=True,
        )
        return _BUILTIN_RUNTIME_DEFAULTS

    parsed = parse_runtime_defaults(packaged.payload, base=_BUILTIN_RUNTIME_DEFAULTS)
    source = packaged.source
    error_kind = None

    override = load_override_defaults()
    if override is not None:
        if not override.ok:
            error_kind = f"override_{override.error_kind}"
        else:
            override_ok, override_state = _schema_status(override.payload, require_schema=False)
            schema_state = override_state
            if override_ok:
                parsed = parse_runtime_defaults(override.payload, base=parsed)
                source = override.source
            else:
                error_kind = "override_schema_mismatch"
    _log_runtime_defaults_source(
        source,
        error_kind=error_kind,
        schema_status=schema_state,
        used_fallback=False,
    )
    return parsed


def clear_runtime_defaults_cache() -> None:
    get_runtime_defaults.cache_clear()
