from dxbench.config.loader import (
    RUNTIME_DEFAULTS_PATH_ENV_VAR,
    TomlDocument,
    load_override_defaults,
    load_packaged_defaults,
    read_toml,
)
from dxbench.config.runtime_defaults import (
    RUNTIME_DEFAULTS_SCHEMA_VERSION,
    ClientDefaults,
    PoolDefaults,
    RuntimeDefaults,
    StoreDefaults,
    WorkloadDefaults,
    clear_runtime_defaults_cache,
    get_runtime_defaults,
    parse_runtime_defaults,
)

__all__ = [
    "RUNTIME_DEFAULTS_PATH_ENV_VAR",
    "TomlDocument",
    "read_toml",
    "load_packaged_defaults",
    "load_override_defaults",
    "RUNTIME_DEFAULTS_SCHEMA_VERSION",
    "ClientDefaults",
    "PoolDefaults",
    "RuntimeDefaults",
    "StoreDefaults",
    "WorkloadDefaults",
    "parse_runtime_defaults",
    "get_runtime_defaults",
    "clear_runtime_defaults_cache",
]
