from dxbench._version import VERSION, __version__

from importlib import import_module
from typing import Any

__all__ = [
    "VERSION",
    "__version__",
    "IndexClient",
    "WorkloadSpec",
    "load_specs",
    "run_query_command",
    "run_ingest_command",
    "execute_compare",
]

_SYMBOL_TO_MODULE = {
    "IndexClient": "dxbench.client.adapter",
    "WorkloadSpec": "dxbench.workload.specs",
    "load_specs": "dxbench.workload.specs",
    "run_query_command": "dxbench.engine.differential",
    "run_ingest_command": "dxbench.engine.differential",
    "execute_compare": "dxbench.engine.compare",
}


def __getattr__(name: str) -> Any:
    module_name = _SYMBOL_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(name)
    module = import_module(module_name)
    return getattr(module, name)
