from dxbench.workload.holder import FieldRange, Holder, QueryContext, build_holder, other_instance
from dxbench.workload.specs import FieldSpec, IndexSpec, WorkloadSpec, fingerprint, load_specs, parse_specs

__all__ = [
    "FieldRange",
    "Holder",
    "QueryContext",
    "build_holder",
    "other_instance",
    "FieldSpec",
    "IndexSpec",
    "WorkloadSpec",
    "fingerprint",
    "load_specs",
    "parse_specs",
]
