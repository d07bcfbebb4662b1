from __future__ import annotations

import logging
import math
from collections import Counter
from pathlib import Path

from dxbench.client.results import ColumnSet, Count
from dxbench.config.constants import COMMAND_INGEST
from dxbench.engine.records import Benchmark, Query, QueryBenchmark, SoloBenchmark, loads
from dxbench.errors import ArtifactError, ConfigError
from dxbench.util.logging import log_structured_event

_COMPARE_LOG = logging.getLogger("dxbench.engine.compare")


def results_equal(first, second) -> bool:
    """Compare two query results, tolerating a column set against its own count."""
    if isinstance(first, ColumnSet) and isinstance(second, ColumnSet):
        return Counter(first.columns) == Counter(second.columns)
    if isinstance(first, Count) and isinstance(second, Count):
        return first.value == second.value
    if isinstance(first, ColumnSet) and isinstance(second, Count):
        return len(first) == second.value
    if isinstance(first, Count) and isinstance(second, ColumnSet):
        return first.value == len(second)
    return False


def time_delta(first: int, second: int) -> float:
    if not first:
        return float("nan")
    return (second - first) / first


def _at(queries, position: int) -> Query | None:
    if position < len(queries):
        return queries[position]
    return None


def compare_query_benchmarks(
    first: QueryBenchmark,
    second: QueryBenchmark,
    *,
    missing_second_is_valid: bool = True,
    first_instance: str | None = None,
    second_instance: str | None = None,
) -> Benchmark:
    """Pair ``first.queries[i]`` with ``second.queries[i]`` and aggregate.

    A position with no first-run result is never valid. A position with no
    second-run result is valid but incorrect unless ``missing_second_is_valid``
    is false, in which case it is dropped like a first-run miss. Times are
    summed only over positions present in both runs.
    """
    valid = 0
    correct = 0
    first_time = 0
    second_time = 0
    for position in range(first.num_queries):
        query1 = _at(first.queries, position)
        if query1 is None or not query1.has_result:
            continue
        query2 = _at(second.queries, position)
        if query2 is None or not query2.has_result:
            if missing_second_is_valid:
                valid += 1
            continue
        valid += 1
        if results_equal(query1.result, query2.result):
            correct += 1
        first_time += query1.time
        second_time += query2.time

    accuracy = correct / valid if valid else float("nan")
    return Benchmark(
        size=first.num_queries,
        first_time=first_time,
        second_time=second_time,
        time_delta=time_delta(first_time, second_time),
        accuracy=accuracy,
        valid_queries=valid,
        num_correct=correct,
        first_instance=first_instance,
        second_instance=second_instance,
    )


def compare_ingest(first: SoloBenchmark, second: SoloBenchmark) -> Benchmark:
    first_time = first.time or 0
    second_time = second.time or 0
    return Benchmark(
        size=0,
        first_time=first_time,
        second_time=second_time,
        time_delta=time_delta(first_time, second_time),
        first_instance=first.instance,
        second_instance=second.instance,
    )


def compare_solo_benchmarks(first: SoloBenchmark, second: SoloBenchmark) -> list[Benchmark]:
    if first.command != second.command:
        raise ArtifactError(f"kinds differ: cannot compare {first.command} results with {second.command} results")
    if first.command == COMMAND_INGEST:
        return [compare_ingest(first, second)]
    total = min(first.num_benchmarks, second.num_benchmarks)
    return [
        compare_query_benchmarks(
            first.benchmarks[position],
            second.benchmarks[position],
            first_instance=first.instance,
            second_instance=second.instance,
        )
        for position in range(total)
    ]


def read_benchmark_file(path) -> SoloBenchmark:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"benchmark file {str(path)!r} does not exist")
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ArtifactError(f"could not read benchmark file {str(path)!r}", exc) from exc
    try:
        return loads(raw)
    except ArtifactError as exc:
        raise ArtifactError(f"could not parse benchmark file {str(path)!r}", exc) from exc


def execute_compare(file1, file2) -> tuple[str, list[Benchmark]]:
    """Compare two saved benchmark files; returns the shared command and its comparison rows."""
    first = read_benchmark_file(file1)
    second = read_benchmark_file(file2)
    benchmarks = compare_solo_benchmarks(first, second)
    log_structured_event(
        _COMPARE_LOG,
        logging.INFO,
        "compare_finished",
        command=first.command,
        first=str(file1),
        second=str(file2),
        rows=len(benchmarks),
        nan_accuracy=sum(1 for bench in benchmarks if math.isnan(bench.accuracy)),
    )
    return first.command, benchmarks
