from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "WorkerPool",
    "Query",
    "QueryBenchmark",
    "SoloBenchmark",
    "Benchmark",
    "results_equal",
    "compare_solo_benchmarks",
    "execute_compare",
    "write_artifact",
    "read_artifact",
    "delete_artifact",
    "run_query_command",
    "run_ingest_command",
    "run_zipf",
]

_SYMBOL_TO_MODULE = {
    "WorkerPool": "dxbench.engine.pool",
    "Query": "dxbench.engine.records",
    "QueryBenchmark": "dxbench.engine.records",
    "SoloBenchmark": "dxbench.engine.records",
    "Benchmark": "dxbench.engine.records",
    "results_equal": "dxbench.engine.compare",
    "compare_solo_benchmarks": "dxbench.engine.compare",
    "execute_compare": "dxbench.engine.compare",
    "write_artifact": "dxbench.engine.store",
    "read_artifact": "dxbench.engine.store",
    "delete_artifact": "dxbench.engine.store",
    "run_query_command": "dxbench.engine.differential",
    "run_ingest_command": "dxbench.engine.differential",
    "run_zipf": "dxbench.engine.differential",
}


def __getattr__(name: str) -> Any:
    module_name = _SYMBOL_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(name)
    module = import_module(module_name)
    return getattr(module, name)
