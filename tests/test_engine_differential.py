import itertools
import json
import logging
import math
import threading
from collections import Counter

import pytest

from dxbench.engine import differential
from dxbench.engine.differential import (
    PHASE_RECORD,
    PHASE_REPLAY,
    run_ingest_command,
    run_query_command,
    run_zipf,
)
from dxbench.engine.pool import WorkerPool
from dxbench.engine.records import loads
from dxbench.engine.store import artifact_path
from dxbench.errors import ArtifactError, PermanentAdapterError, RunCancelled
from dxbench.workload.generator import IngestWorkload, intersect_pql
from dxbench.workload.specs import parse_specs
from tests.conftest import FakeIndexClient


def _run_query(client, specs, data_dir, instance, **overrides):
    options = dict(batch_sizes=[8], workers=2, num_rows=2, seed=42)
    options.update(overrides)
    return run_query_command(client, specs, instance=instance, data_dir=data_dir, **options)


def _artifact(data_dir, specs, command="query"):
    return artifact_path(data_dir, specs.artifact_name(command))


def test_first_query_run_records_artifact(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()

    outcome = _run_query(client, specs, data_dir, "candidate")

    assert outcome.phase == PHASE_RECORD
    path = _artifact(data_dir, specs)
    assert path.name == specs.fingerprint + "-query"
    assert outcome.artifact == path
    bench = loads(path.read_bytes())
    assert (bench.command, bench.instance, bench.thread_count) == ("query", "candidate", 2)
    assert len(bench.benchmarks) == 1
    queries = bench.benchmarks[0].queries
    assert len(queries) == 8
    for query in queries:
        assert (query.index, query.field) == ("i1", "f1")
        assert len(query.rows) == 2
        assert all(0 <= row <= 99 for row in query.rows)
        assert query.result is not None
    assert bench.benchmarks[0].time == sum(query.time for query in queries)


def test_first_run_is_reproducible_under_seed(specs_bytes, tmp_path):
    specs = parse_specs(specs_bytes)
    _run_query(FakeIndexClient(), specs, tmp_path / "a", "candidate")
    _run_query(FakeIndexClient(), specs, tmp_path / "b", "candidate")

    first = loads(_artifact(tmp_path / "a", specs).read_bytes())
    second = loads(_artifact(tmp_path / "b", specs).read_bytes())
    assert [query.rows for query in first.benchmarks[0].queries] == [
        query.rows for query in second.benchmarks[0].queries
    ]


def test_second_query_run_replays_and_deletes_artifact(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate")
    recorded = Counter(pql for _, pql in client.queries)
    client.queries.clear()

    outcome = _run_query(client, specs, data_dir, "primary")

    assert outcome.phase == PHASE_REPLAY
    assert outcome.delete_error is None
    assert not _artifact(data_dir, specs).exists()
    assert Counter(pql for _, pql in client.queries) == recorded
    [bench] = outcome.benchmarks
    assert bench.valid_queries == 8
    assert bench.num_correct == 8
    assert bench.accuracy == 1.0
    assert (bench.first_instance, bench.second_instance) == ("candidate", "primary")


def _slower_for_earlier_calls(calls: int, step: float = 0.01):
    counter = itertools.count()

    def delay_for(pql):
        return max(calls - next(counter), 0) * step

    return delay_for


def test_replay_pairs_results_by_position_not_completion_order(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    _run_query(FakeIndexClient(), specs, data_dir, "candidate", batch_sizes=[12], workers=4)
    recorded = loads(_artifact(data_dir, specs).read_bytes())
    submitted = [intersect_pql(query.field, query.rows) for query in recorded.benchmarks[0].queries]
    client = FakeIndexClient(delay_for=_slower_for_earlier_calls(12))

    outcome = _run_query(client, specs, data_dir, "primary", batch_sizes=[12])

    completed = [pql for _, pql in client.queries]
    assert completed != submitted
    assert Counter(completed) == Counter(submitted)
    [bench] = outcome.benchmarks
    assert bench.valid_queries == 12
    assert bench.num_correct == bench.valid_queries


def test_collect_keeps_submission_positions(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    _run_query(FakeIndexClient(), specs, data_dir, "candidate", batch_sizes=[12], workers=4)
    recorded = loads(_artifact(data_dir, specs).read_bytes()).benchmarks[0].queries
    client = FakeIndexClient(delay_for=_slower_for_earlier_calls(12))

    replayed = differential._collect(WorkerPool(4), client, recorded, 12, query_mode="columns")

    assert [(query.index, query.field, query.rows) for query in replayed.queries] == [
        (query.index, query.field, query.rows) for query in recorded
    ]
    assert [query.result for query in replayed.queries] == [query.result for query in recorded]


def test_replay_logs_recorded_worker_count(specs_bytes, data_dir, caplog):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate", workers=3)

    with caplog.at_level(logging.INFO, logger="dxbench.engine.differential"):
        _run_query(client, specs, data_dir, "primary", workers=1)

    events = [
        json.loads(record.getMessage()) for record in caplog.records if record.name == "dxbench.engine.differential"
    ]
    [start] = [event for event in events if event["event"] == "query_replay_start"]
    assert (start["workers"], start["recorded_workers"]) == (3, 3)


def test_phases_alternate(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()

    phases = []
    for instance in ("candidate", "primary", "primary", "candidate"):
        phases.append(_run_query(client, specs, data_dir, instance).phase)
        assert _artifact(data_dir, specs).exists() == (phases[-1] == PHASE_RECORD)

    assert phases == [PHASE_RECORD, PHASE_REPLAY, PHASE_RECORD, PHASE_REPLAY]


def test_replay_in_count_mode_matches_recorded_columns(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate", query_mode="columns")

    outcome = _run_query(client, specs, data_dir, "primary", query_mode="count")

    assert all(pql.startswith("Count(") for _, pql in client.queries[8:])
    assert outcome.benchmarks[0].accuracy == 1.0


def test_replay_reports_divergent_results(specs_bytes, data_dir):
    class EmptyClient(FakeIndexClient):
        def _row_columns(self, index, field, row):
            return set()

    specs = parse_specs(specs_bytes)
    _run_query(FakeIndexClient(), specs, data_dir, "candidate")

    outcome = _run_query(EmptyClient(), specs, data_dir, "primary")

    bench = outcome.benchmarks[0]
    assert bench.valid_queries == 8
    assert bench.accuracy < 1.0


def test_transient_replay_failure_drops_one_position(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate")
    recorded = loads(_artifact(data_dir, specs).read_bytes())
    target = recorded.benchmarks[0].queries[3]
    client.fail_pql[intersect_pql(target.field, target.rows)] = 1

    outcome = _run_query(client, specs, data_dir, "primary")

    bench = outcome.benchmarks[0]
    assert bench.valid_queries == 7
    assert bench.num_correct == 7
    assert not _artifact(data_dir, specs).exists()


def test_same_instance_second_run_is_rejected(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate")

    with pytest.raises(ArtifactError):
        _run_query(client, specs, data_dir, "candidate")
    assert _artifact(data_dir, specs).exists()


def test_failed_replay_leaves_artifact(specs_bytes, data_dir):
    class BrokenClient(FakeIndexClient):
        def execute_query(self, index, pql):
            raise PermanentAdapterError("server gone")

    specs = parse_specs(specs_bytes)
    _run_query(FakeIndexClient(), specs, data_dir, "candidate")

    with pytest.raises(PermanentAdapterError):
        _run_query(BrokenClient(), specs, data_dir, "primary")
    assert _artifact(data_dir, specs).exists()


def test_cancelled_first_run_writes_nothing(specs_bytes, data_dir):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RunCancelled):
        _run_query(FakeIndexClient(), parse_specs(specs_bytes), data_dir, "candidate", cancel=cancel)
    assert not data_dir.exists()


def test_delete_failure_keeps_comparison(specs_bytes, data_dir, monkeypatch):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate")

    def refuse(data_dir, name):
        raise ArtifactError("everything ran successfully, but the previous result file could not be deleted")

    monkeypatch.setattr(differential, "delete_artifact", refuse)
    outcome = _run_query(client, specs, data_dir, "primary")

    assert outcome.benchmarks[0].accuracy == 1.0
    assert isinstance(outcome.delete_error, ArtifactError)


def test_replay_with_every_position_missing_reports_nan(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    _run_query(client, specs, data_dir, "candidate")
    recorded = loads(_artifact(data_dir, specs).read_bytes())
    for query in recorded.benchmarks[0].queries:
        client.fail_pql[intersect_pql(query.field, query.rows)] = 8

    outcome = _run_query(client, specs, data_dir, "primary")

    bench = outcome.benchmarks[0]
    assert bench.valid_queries == 0
    assert math.isnan(bench.accuracy)


def test_ingest_record_then_replay(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()

    first = run_ingest_command(
        client, specs, instance="candidate", data_dir=data_dir, workers=2, iterations=50, batch_size=20, seed=3
    )
    assert first.phase == PHASE_RECORD
    assert sum(len(batch) for batch in client.batches) == 50
    recorded = loads(_artifact(data_dir, specs, "ingest").read_bytes())
    assert recorded.command == "ingest"
    assert recorded.time > 0

    second = run_ingest_command(
        client, specs, instance="primary", data_dir=data_dir, workers=2, iterations=50, batch_size=20, seed=3
    )

    assert second.phase == PHASE_REPLAY
    [bench] = second.benchmarks
    assert bench.first_time == recorded.time
    assert (bench.first_instance, bench.second_instance) == ("candidate", "primary")
    assert not _artifact(data_dir, specs, "ingest").exists()
    first_batches = Counter(tuple(batch) for batch in client.batches[:3])
    assert first_batches == Counter(tuple(batch) for batch in client.batches[3:])


def test_ingest_replay_rejects_different_workload_parameters(specs_bytes, data_dir):
    specs = parse_specs(specs_bytes)
    client = FakeIndexClient()
    run_ingest_command(
        client, specs, instance="candidate", data_dir=data_dir, workers=2, iterations=50, batch_size=20, seed=3
    )
    recorded = loads(_artifact(data_dir, specs, "ingest").read_bytes())
    assert recorded.workload == {"iterations": 50, "seed": 3, "batchSize": 20}
    client.batches.clear()

    with pytest.raises(ArtifactError):
        run_ingest_command(
            client, specs, instance="primary", data_dir=data_dir, workers=2, iterations=50, batch_size=20, seed=4
        )
    assert client.batches == []
    assert _artifact(data_dir, specs, "ingest").exists()


def _applied(client):
    return sorted((mutation.row, mutation.column) for batch in client.batches for mutation in batch)


def test_zipf_load_offsets_seed_by_agent():
    workload = IngestWorkload(index="benchindex", field="fbench", iterations=30, seed=1)
    first = FakeIndexClient()
    second = FakeIndexClient()

    outcome = run_zipf(first, workload, agent_num=0, workers=2, batch_size=10)
    run_zipf(second, workload, agent_num=1, workers=2, batch_size=10)

    assert (outcome.mutations, outcome.batches) == (30, 3)
    assert "fbench" in first.indexes["benchindex"]
    assert _applied(first) != _applied(second)
