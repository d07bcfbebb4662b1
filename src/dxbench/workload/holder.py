from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from types import MappingProxyType

from dxbench.config.constants import VALID_INSTANCES
from dxbench.errors import ConfigError, SchemaError
from dxbench.util.logging import log_structured_event
from dxbench.workload.specs import WorkloadSpec

_HOLDER_LOG = logging.getLogger("dxbench.workload.holder")


@dataclass(frozen=True)
class FieldRange:
    name: str
    min: int
    max: int


@dataclass(frozen=True)
class QueryContext:
    """A resolved (index, field, min, max) handle; cheap to recreate."""

    index: str
    field: str
    min: int
    max: int


def other_instance(instance: str) -> str:
    if instance == "candidate":
        return "primary"
    if instance == "primary":
        return "candidate"
    raise ConfigError(f"invalid instance {instance!r}; expected one of: {', '.join(sorted(VALID_INSTANCES))}")


class Holder:
    """Schema catalog for one instance.

    Read-only once built; ``random_if`` is the only method that touches
    mutable state (the RNG) and it is serialized with a lock.
    """

    def __init__(self, instance: str, catalog, *, rng: random.Random | None = None):
        other_instance(instance)
        self.instance = instance
        frozen = {}
        for index, fields in catalog.items():
            frozen[index] = MappingProxyType({field.name: field for field in fields})
        self._catalog = MappingProxyType(frozen)
        self._pairs = tuple((index, name) for index, fields in self._catalog.items() for name in fields)
        self._rng = rng or random.Random(0)
        self._rng_lock = threading.Lock()

    @property
    def catalog(self):
        return self._catalog

    def __len__(self):
        return len(self._pairs)

    def pairs(self) -> tuple[tuple[str, str], ...]:
        return self._pairs

    def random_if(self) -> tuple[str, str]:
        if not self._pairs:
            raise SchemaError(f"holder for {self.instance} has no index/field pairs to choose from")
        with self._rng_lock:
            return self._pairs[self._rng.randrange(len(self._pairs))]

    def new_cif(self, index: str, field: str) -> QueryContext:
        fields = self._catalog.get(index)
        if fields is None:
            raise SchemaError(f"index {index!r} is not in the {self.instance} holder")
        entry = fields.get(field)
        if entry is None:
            raise SchemaError(f"field {index}.{field} is not in the {self.instance} holder")
        return QueryContext(index=index, field=field, min=entry.min, max=entry.max)


def build_holder(instance: str, client, specs: WorkloadSpec, *, rng: random.Random | None = None) -> Holder:
    """Create (or reuse) every index and field the specs declare, then catalog them."""
    catalog: dict[str, list[FieldRange]] = {}
    for index in specs.indexes:
        client.ensure_index(index.name)
        ranges = []
        for field in index.fields:
            client.ensure_field(index.name, field.name, field.options())
            ranges.append(FieldRange(name=field.name, min=field.min, max=field.max))
        catalog[index.name] = ranges
    holder = Holder(instance, catalog, rng=rng)
    log_structured_event(
        _HOLDER_LOG,
        logging.INFO,
        "holder_built",
        instance=instance,
        indexes=len(catalog),
        pairs=len(holder),
    )
    return holder
