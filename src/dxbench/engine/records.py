"""
Benchmark records and their persisted form
==========================================

A :class:`SoloBenchmark` is one side of a two-phase comparison. Query runs hold
one :class:`QueryBenchmark` per batch size; ingest runs hold one aggregate
duration. The persisted form is a JSON object whose durations are Go-style
strings (``"1.234ms"``) so artifacts stay diffable; the parser also accepts
integer nanoseconds.

Queries are positional: ``queries[i]`` in the first run pairs with
``queries[i]`` in the replay. A position whose first-run execution failed is
kept as ``None`` (``null`` on disk).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from dxbench.client.results import ColumnSet, Count, QueryResult
from dxbench.config.constants import VALID_COMMANDS, VALID_INSTANCES, COMMAND_INGEST, COMMAND_QUERY
from dxbench.errors import ArtifactError
from dxbench.util.json import json_dumps_bytes, json_loads
from dxbench.util.timing import format_duration, parse_duration


@dataclass(frozen=True)
class Query:
    index: str
    field: str
    rows: tuple[int, ...]
    result: QueryResult | None = None
    time: int = 0

    @property
    def has_result(self) -> bool:
        return self.result is not None


@dataclass
class QueryBenchmark:
    num_queries: int
    time: int = 0
    queries: list[Query | None] = field(default_factory=list)


@dataclass
class SoloBenchmark:
    command: str
    instance: str
    thread_count: int
    benchmarks: list[QueryBenchmark] = field(default_factory=list)
    time: int | None = None
    # Ingest only: the flags that shaped the mutation stream (iterations, seed, batchSize).
    workload: dict[str, int] | None = None

    @property
    def num_benchmarks(self) -> int:
        return len(self.benchmarks)


@dataclass(frozen=True)
class Benchmark:
    """Comparison of one batch (or of a whole ingest run) between two instances."""

    size: int
    first_time: int
    second_time: int
    time_delta: float
    accuracy: float = float("nan")
    valid_queries: int = 0
    num_correct: int = 0
    first_instance: str | None = None
    second_instance: str | None = None


def _query_to_payload(query: Query | None):
    if query is None:
        return None
    payload: dict[str, Any] = {
        "index": query.index,
        "field": query.field,
        "rows": list(query.rows),
    }
    if isinstance(query.result, ColumnSet):
        payload["result"] = {"columns": list(query.result.columns)}
    elif isinstance(query.result, Count):
        payload["resultCount"] = query.result.value
    payload["time"] = format_duration(query.time)
    return payload


def to_payload(bench: SoloBenchmark) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": bench.command,
        "instance": bench.instance,
        "threadcount": bench.thread_count,
    }
    if bench.command == COMMAND_INGEST:
        payload["time"] = format_duration(bench.time or 0)
        if bench.workload is not None:
            payload["workload"] = dict(bench.workload)
        return payload
    payload["numBenchmarks"] = bench.num_benchmarks
    payload["benchmarks"] = [
        {
            "numQueries": querybench.num_queries,
            "time": format_duration(querybench.time),
            "queries": [_query_to_payload(query) for query in querybench.queries],
        }
        for querybench in bench.benchmarks
    ]
    return payload


def dumps(bench: SoloBenchmark) -> bytes:
    return json_dumps_bytes(to_payload(bench), indent=True)


def _require(mapping: Mapping[str, Any], key: str, kind, where: str):
    value = mapping.get(key)
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ArtifactError(f"{where}: {key!r} is missing or has the wrong type")
    return value


def _duration(raw, where: str) -> int:
    try:
        return parse_duration(raw)
    except ValueError as exc:
        raise ArtifactError(f"{where}: invalid duration", exc) from exc


def _int_list(raw, where: str) -> tuple[int, ...]:
    if not isinstance(raw, list) or any(isinstance(item, bool) or not isinstance(item, int) for item in raw):
        raise ArtifactError(f"{where}: expected a list of integers")
    return tuple(raw)


def _workload(raw) -> dict[str, int] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ArtifactError("benchmark: 'workload' must be an object")
    return {str(key): _require(raw, key, int, "benchmark.workload") for key in raw}


def _query_from_payload(raw, where: str) -> Query | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ArtifactError(f"{where}: expected an object")
    result: QueryResult | None = None
    if raw.get("result") is not None:
        result_raw = raw["result"]
        if not isinstance(result_raw, Mapping):
            raise ArtifactError(f"{where}: 'result' must be an object")
        result = ColumnSet(_int_list(result_raw.get("columns") or [], f"{where}.result.columns"))
    elif raw.get("resultCount") is not None:
        result = Count(_require(raw, "resultCount", int, where))
    return Query(
        index=_require(raw, "index", str, where),
        field=_require(raw, "field", str, where),
        rows=_int_list(raw.get("rows"), f"{where}.rows"),
        result=result,
        time=_duration(raw.get("time", 0), f"{where}.time"),
    )


def from_payload(payload) -> SoloBenchmark:
    if not isinstance(payload, Mapping):
        raise ArtifactError("benchmark record must be a JSON object")
    command = _require(payload, "type", str, "benchmark")
    if command not in VALID_COMMANDS:
        raise ArtifactError(f"benchmark: unknown command {command!r}")
    instance = _require(payload, "instance", str, "benchmark")
    if instance not in VALID_INSTANCES:
        raise ArtifactError(f"benchmark: unknown instance {instance!r}")
    thread_count = _require(payload, "threadcount", int, "benchmark")
    if thread_count <= 0:
        raise ArtifactError(f"benchmark: threadcount must be positive, got {thread_count}")

    if command == COMMAND_INGEST:
        return SoloBenchmark(
            command=command,
            instance=instance,
            thread_count=thread_count,
            time=_duration(payload.get("time"), "benchmark.time"),
            workload=_workload(payload.get("workload")),
        )

    raw_benchmarks = payload.get("benchmarks") or []
    if not isinstance(raw_benchmarks, list):
        raise ArtifactError("benchmark: 'benchmarks' must be a list")
    benchmarks = []
    for position, raw in enumerate(raw_benchmarks):
        where = f"benchmarks[{position}]"
        if not isinstance(raw, Mapping):
            raise ArtifactError(f"{where}: expected an object")
        raw_queries = raw.get("queries") or []
        if not isinstance(raw_queries, list):
            raise ArtifactError(f"{where}: 'queries' must be a list")
        num_queries = _require(raw, "numQueries", int, where)
        if num_queries < 0:
            raise ArtifactError(f"{where}: numQueries must not be negative, got {num_queries}")
        benchmarks.append(
            QueryBenchmark(
                num_queries=num_queries,
                time=_duration(raw.get("time", 0), f"{where}.time"),
                queries=[
                    _query_from_payload(item, f"{where}.queries[{index}]") for index, item in enumerate(raw_queries)
                ],
            )
        )
    declared = payload.get("numBenchmarks")
    if declared is not None and declared != len(benchmarks):
        raise ArtifactError(f"benchmark: numBenchmarks is {declared} but {len(benchmarks)} benchmarks are present")
    return SoloBenchmark(command=COMMAND_QUERY, instance=instance, thread_count=thread_count, benchmarks=benchmarks)


def loads(raw: bytes | str) -> SoloBenchmark:
    try:
        payload = json_loads(raw)
    except ValueError as exc:
        raise ArtifactError("benchmark record is not valid JSON", exc) from exc
    return from_payload(payload)
