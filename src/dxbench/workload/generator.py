from __future__ import annotations

import random
from collections.abc import Iterator
from dataclasses import dataclass
from itertools import islice

from dxbench.client.adapter import Mutation
from dxbench.config.constants import (
    DEFAULT_INGEST_BATCH_SIZE,
    DEFAULT_ZIPF_EXPONENT,
    DEFAULT_ZIPF_RATIO,
    OPERATION_CLEAR,
    VALID_OPERATIONS,
)
from dxbench.config.runtime_defaults import VALID_QUERY_MODES, VALID_ROW_DISTRIBUTIONS
from dxbench.engine.records import Query
from dxbench.workload.holder import Holder, QueryContext
from dxbench.workload.rng import UniformSampler, check_seed, derive_seed, make_rng, zipf_from_ratio, zipf_v_from_ratio
from dxbench.workload.specs import WorkloadSpec


@dataclass(frozen=True)
class IngestWorkload:
    """Zipf-distributed set/clear workload against one (index, field)."""

    index: str
    field: str
    base_row: int = 0
    row_range: int = 100_000
    base_column: int = 0
    column_range: int = 100_000
    iterations: int = 100
    seed: int = 1
    row_exponent: float = DEFAULT_ZIPF_EXPONENT
    row_ratio: float = DEFAULT_ZIPF_RATIO
    column_exponent: float = DEFAULT_ZIPF_EXPONENT
    column_ratio: float = DEFAULT_ZIPF_RATIO
    operation: str = "set"

    def __post_init__(self):
        if self.operation not in VALID_OPERATIONS:
            raise ValueError(f"operation must be one of: {', '.join(sorted(VALID_OPERATIONS))}")
        if self.row_range <= 0 or self.column_range <= 0:
            raise ValueError("row and column ranges must be positive")
        if self.iterations < 0:
            raise ValueError("iterations must be non-negative")
        check_seed(self.seed)
        zipf_v_from_ratio(self.row_exponent, self.row_ratio, self.row_range - 1)
        zipf_v_from_ratio(self.column_exponent, self.column_ratio, self.column_range - 1)

    def mutations(self) -> Iterator[Mutation]:
        rng = make_rng(self.seed)
        rows = zipf_from_ratio(rng, self.row_exponent, self.row_ratio, 0, self.row_range - 1)
        columns = zipf_from_ratio(rng, self.column_exponent, self.column_ratio, 0, self.column_range - 1)
        clear = self.operation == OPERATION_CLEAR
        for _ in range(self.iterations):
            yield Mutation(
                index=self.index,
                field=self.field,
                row=self.base_row + rows.sample(),
                column=self.base_column + columns.sample(),
                clear=clear,
            )


def batched(items, size: int):
    if size <= 0:
        raise ValueError("batch size must be positive")
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def ingest_batches(workloads, batch_size: int = DEFAULT_INGEST_BATCH_SIZE):
    for workload in workloads:
        yield from batched(workload.mutations(), batch_size)


def ingest_workloads_from_specs(
    specs: WorkloadSpec,
    *,
    iterations: int,
    seed: int,
    exponent: float = DEFAULT_ZIPF_EXPONENT,
    ratio: float = DEFAULT_ZIPF_RATIO,
    operation: str = "set",
) -> list[IngestWorkload]:
    """One ingest workload per declared field: rows from the field's range, columns from ``[0, columns)``."""
    workloads = []
    salt = 0
    for index in specs.indexes:
        for field in index.fields:
            salt += 1
            workloads.append(
                IngestWorkload(
                    index=index.name,
                    field=field.name,
                    base_row=field.min,
                    row_range=field.row_range,
                    base_column=0,
                    column_range=max(1, index.columns),
                    iterations=iterations,
                    seed=derive_seed(seed, salt),
                    row_exponent=exponent,
                    row_ratio=ratio,
                    column_exponent=exponent,
                    column_ratio=ratio,
                    operation=operation,
                )
            )
    return workloads


def intersect_pql(field: str, rows, *, query_mode: str = "columns") -> str:
    body = "Intersect(" + ", ".join(f"Row({field}={row})" for row in rows) + ")"
    if query_mode == "count":
        return f"Count({body})"
    return body


def generate_random_rows(rng: random.Random, cif: QueryContext, num_rows: int, *, distribution: str = "uniform"):
    """Rows for one intersect; repeats are allowed when ``num_rows`` exceeds the field's range."""
    if distribution == "zipf":
        sampler = zipf_from_ratio(rng, DEFAULT_ZIPF_EXPONENT, DEFAULT_ZIPF_RATIO, cif.min, cif.max)
    else:
        sampler = UniformSampler(rng, cif.min, cif.max)
    return tuple(sampler.sample() for _ in range(num_rows))


class QueryWorkload:
    """Lazily synthesized intersect queries drawn from a holder."""

    def __init__(self, holder: Holder, num_rows: int, *, seed: int, distribution: str = "uniform"):
        if num_rows <= 0:
            raise ValueError("num_rows must be a positive integer")
        if distribution not in VALID_ROW_DISTRIBUTIONS:
            raise ValueError(f"row distribution must be one of: {', '.join(sorted(VALID_ROW_DISTRIBUTIONS))}")
        self.holder = holder
        self.num_rows = int(num_rows)
        self.distribution = distribution
        self._rng = make_rng(seed)

    def next_query(self) -> Query:
        index, field = self.holder.random_if()
        cif = self.holder.new_cif(index, field)
        rows = generate_random_rows(self._rng, cif, self.num_rows, distribution=self.distribution)
        return Query(index=index, field=field, rows=rows)

    def queries(self, count: int) -> Iterator[Query]:
        for _ in range(count):
            yield self.next_query()


def check_query_mode(query_mode: str) -> str:
    if query_mode not in VALID_QUERY_MODES:
        raise ValueError(f"query mode must be one of: {', '.join(sorted(VALID_QUERY_MODES))}")
    return query_mode
