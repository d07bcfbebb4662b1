import math

import pytest

from dxbench.client.results import ColumnSet, Count
from dxbench.engine.compare import (
    compare_ingest,
    compare_query_benchmarks,
    compare_solo_benchmarks,
    execute_compare,
    results_equal,
)
from dxbench.engine.records import Query, QueryBenchmark, SoloBenchmark, dumps
from dxbench.errors import ArtifactError, ConfigError


def _q(result, time=1_000):
    return Query("i1", "f1", (1, 2), result, time)


def test_results_equal_compares_column_multisets():
    assert results_equal(ColumnSet((1, 2, 2)), ColumnSet((2, 1, 2)))
    assert not results_equal(ColumnSet((1, 2, 2)), ColumnSet((1, 2)))
    assert results_equal(ColumnSet(()), ColumnSet(()))


def test_results_equal_compares_counts():
    assert results_equal(Count(3), Count(3))
    assert not results_equal(Count(3), Count(4))


def test_results_equal_matches_cardinality_across_shapes():
    columns = ColumnSet((10, 11, 12, 13, 14))

    assert results_equal(columns, Count(5))
    assert results_equal(Count(5), columns)
    assert not results_equal(columns, Count(4))


def test_compare_query_benchmarks_aggregates():
    first = QueryBenchmark(
        num_queries=4,
        queries=[_q(Count(1), 100), None, _q(Count(3), 100), _q(Count(4), 100)],
    )
    second = QueryBenchmark(
        num_queries=4,
        queries=[_q(Count(1), 150), _q(Count(2), 150), _q(Count(9), 150), None],
    )

    bench = compare_query_benchmarks(first, second)

    assert bench.size == 4
    assert bench.valid_queries == 3
    assert bench.num_correct == 1
    assert bench.accuracy == pytest.approx(1 / 3)
    assert (bench.first_time, bench.second_time) == (200, 300)
    assert bench.time_delta == pytest.approx(0.5)


def test_compare_query_benchmarks_can_drop_missing_replays():
    first = QueryBenchmark(num_queries=2, queries=[_q(Count(1)), _q(Count(2))])
    second = QueryBenchmark(num_queries=2, queries=[_q(Count(1)), None])

    bench = compare_query_benchmarks(first, second, missing_second_is_valid=False)

    assert bench.valid_queries == 1
    assert bench.accuracy == 1.0


def test_compare_query_benchmarks_without_valid_queries_is_nan():
    bench = compare_query_benchmarks(QueryBenchmark(num_queries=2, queries=[None, None]), QueryBenchmark(num_queries=2))

    assert bench.valid_queries == 0
    assert math.isnan(bench.accuracy)
    assert math.isnan(bench.time_delta)


def test_compare_ingest_reports_relative_delta():
    first = SoloBenchmark(command="ingest", instance="candidate", thread_count=1, time=1_000_000_000)
    second = SoloBenchmark(command="ingest", instance="primary", thread_count=1, time=1_250_000_000)

    bench = compare_ingest(first, second)

    assert bench.time_delta == pytest.approx(0.25)
    assert (bench.first_instance, bench.second_instance) == ("candidate", "primary")


def test_compare_solo_benchmarks_pairs_the_shorter_run():
    first = SoloBenchmark(
        command="query",
        instance="candidate",
        thread_count=1,
        benchmarks=[QueryBenchmark(1, 0, [_q(Count(1))]), QueryBenchmark(1, 0, [_q(Count(2))])],
    )
    second = SoloBenchmark(
        command="query",
        instance="primary",
        thread_count=1,
        benchmarks=[QueryBenchmark(1, 0, [_q(Count(1))])],
    )

    benchmarks = compare_solo_benchmarks(first, second)

    assert len(benchmarks) == 1
    assert benchmarks[0].accuracy == 1.0


def test_execute_compare_rejects_mixed_kinds(tmp_path):
    query_file = tmp_path / "a-query"
    ingest_file = tmp_path / "a-ingest"
    query_file.write_bytes(dumps(SoloBenchmark(command="query", instance="candidate", thread_count=1)))
    ingest_file.write_bytes(dumps(SoloBenchmark(command="ingest", instance="primary", thread_count=1, time=1)))

    with pytest.raises(ArtifactError, match="kinds differ"):
        execute_compare(query_file, ingest_file)


def test_execute_compare_requires_both_files(tmp_path):
    present = tmp_path / "a-ingest"
    present.write_bytes(dumps(SoloBenchmark(command="ingest", instance="primary", thread_count=1, time=1)))

    with pytest.raises(ConfigError):
        execute_compare(present, tmp_path / "missing")


def test_execute_compare_ingest_files(tmp_path):
    first = tmp_path / "c-ingest"
    second = tmp_path / "p-ingest"
    first.write_bytes(dumps(SoloBenchmark(command="ingest", instance="candidate", thread_count=1, time=1_000_000_000)))
    second.write_bytes(dumps(SoloBenchmark(command="ingest", instance="primary", thread_count=1, time=1_250_000_000)))

    command, benchmarks = execute_compare(first, second)

    assert command == "ingest"
    assert benchmarks[0].time_delta == pytest.approx(0.25)
