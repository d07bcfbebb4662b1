"""Optional third-party packages, imported on first use."""

from __future__ import annotations

from functools import lru_cache
from importlib import import_module

EXTRA_FOR_MODULE = {
    "orjson": "fast",
    "polars": "report",
}
MISSING_DEP_TEMPLATE = "{pkg} is required for {api_name}. Install with: pip install dxbench[{extra}]"


@lru_cache(maxsize=None)
def optional_module(module_name: str):
    """The imported module, or ``None`` when it is not installed."""
    try:
        return import_module(module_name)
    except ImportError:
        return None


def require_module(module_name: str, api_name: str):
    module = optional_module(module_name)
    if module is None:
        extra = EXTRA_FOR_MODULE.get(module_name, module_name)
        raise ImportError(MISSING_DEP_TEMPLATE.format(pkg=module_name, api_name=api_name, extra=extra))
    return module


def require_polars(api_name: str):
    return require_module("polars", api_name)
