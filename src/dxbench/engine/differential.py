"""
Two-phase record/replay protocol
================================

The first run against a workload fingerprint records what it did to
``data_dir/<sha256(specs)>-<command>``. The next run, which must target the
other instance, replays the recorded work, compares, and deletes the artifact
only once the comparison is complete. A delete failure does not invalidate a
finished comparison: it is returned on the outcome for the caller to surface
after reporting.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path

from dxbench.config.constants import (
    COMMAND_INGEST,
    COMMAND_QUERY,
    DEFAULT_INGEST_BATCH_SIZE,
    DEFAULT_INGEST_ITERATIONS,
    DEFAULT_QUERY_MODE,
    DEFAULT_ROW_DISTRIBUTION,
    DEFAULT_ROWS_PER_INTERSECT,
    DEFAULT_SEED,
    DEFAULT_WORKERS,
    DEFAULT_ZIPF_EXPONENT,
    DEFAULT_ZIPF_RATIO,
)
from dxbench.engine.compare import compare_ingest, compare_query_benchmarks
from dxbench.engine.pool import WorkerPool
from dxbench.engine.records import Benchmark, Query, QueryBenchmark, SoloBenchmark
from dxbench.engine.store import artifact_path, delete_artifact, is_first_run, read_artifact, write_artifact
from dxbench.errors import ArtifactError
from dxbench.util.logging import log_structured_event, new_job_id
from dxbench.util.timing import format_duration, timed
from dxbench.workload.generator import (
    IngestWorkload,
    QueryWorkload,
    check_query_mode,
    ingest_batches,
    ingest_workloads_from_specs,
    intersect_pql,
)
from dxbench.workload.holder import Holder, build_holder
from dxbench.workload.rng import derive_seed, make_rng
from dxbench.workload.specs import WorkloadSpec

_RUN_LOG = logging.getLogger("dxbench.engine.differential")

PHASE_RECORD = "record"
PHASE_REPLAY = "replay"


@dataclass
class RunOutcome:
    command: str
    phase: str
    instance: str
    artifact: Path
    job_id: str
    solo: SoloBenchmark | None = None
    benchmarks: list[Benchmark] = field(default_factory=list)
    delete_error: ArtifactError | None = None


def _holder_for(instance: str, client, specs: WorkloadSpec, seed: int) -> Holder:
    return build_holder(instance, client, specs, rng=make_rng(derive_seed(seed, 0)))


def _run_query(client, query: Query | None, *, query_mode: str) -> Query | None:
    if query is None:
        return None
    result, elapsed = client.execute_query(query.index, intersect_pql(query.field, query.rows, query_mode=query_mode))
    return Query(index=query.index, field=query.field, rows=query.rows, result=result, time=elapsed)


def _collect(pool: WorkerPool, client, tasks, size: int, *, query_mode: str) -> QueryBenchmark:
    queries: list[Query | None] = [None] * size
    for completed in pool.run(lambda query: _run_query(client, query, query_mode=query_mode), tasks):
        queries[completed.position] = completed.value
    total = sum(query.time for query in queries if query is not None)
    return QueryBenchmark(num_queries=size, time=total, queries=queries)


def run_first_queries(
    holder: Holder,
    client,
    batch_sizes,
    *,
    workers: int = DEFAULT_WORKERS,
    num_rows: int = DEFAULT_ROWS_PER_INTERSECT,
    seed: int = DEFAULT_SEED,
    distribution: str = DEFAULT_ROW_DISTRIBUTION,
    query_mode: str = DEFAULT_QUERY_MODE,
    cancel: threading.Event | None = None,
    job_id: str | None = None,
) -> SoloBenchmark:
    """Generate and run each batch, keeping every query and its result by position."""
    check_query_mode(query_mode)
    pool = WorkerPool(workers, cancel=cancel, job_id=job_id)
    solo = SoloBenchmark(command=COMMAND_QUERY, instance=holder.instance, thread_count=workers)
    for position, size in enumerate(batch_sizes):
        workload = QueryWorkload(holder, num_rows, seed=derive_seed(seed, position + 1), distribution=distribution)
        querybench = _collect(pool, client, workload.queries(size), size, query_mode=query_mode)
        solo.benchmarks.append(querybench)
        log_structured_event(
            _RUN_LOG,
            logging.INFO,
            "query_batch_recorded",
            job_id=job_id,
            instance=holder.instance,
            size=size,
            completed=pool.stats.completed,
            dropped=pool.stats.dropped,
            time=format_duration(querybench.time),
        )
    return solo


def _check_replayable(holder: Holder, recorded: SoloBenchmark) -> None:
    seen = set()
    for querybench in recorded.benchmarks:
        for query in querybench.queries:
            if query is None or (query.index, query.field) in seen:
                continue
            holder.new_cif(query.index, query.field)
            seen.add((query.index, query.field))


def run_second_queries(
    holder: Holder,
    client,
    recorded: SoloBenchmark,
    *,
    workers: int | None = None,
    query_mode: str = DEFAULT_QUERY_MODE,
    cancel: threading.Event | None = None,
    job_id: str | None = None,
) -> list[Benchmark]:
    """Replay every recorded batch position by position and compare with the recording.

    A position that fails during replay is dropped from the valid count. The pool
    runs the recorded thread count unless ``workers`` is given.
    """
    check_query_mode(query_mode)
    _check_replayable(holder, recorded)
    pool_size = workers or recorded.thread_count
    log_structured_event(
        _RUN_LOG,
        logging.INFO,
        "query_replay_start",
        job_id=job_id,
        instance=holder.instance,
        workers=pool_size,
        recorded_workers=recorded.thread_count,
    )
    pool = WorkerPool(pool_size, cancel=cancel, job_id=job_id)
    benchmarks = []
    for querybench in recorded.benchmarks:
        queries = list(querybench.queries[: querybench.num_queries])
        queries.extend([None] * (querybench.num_queries - len(queries)))
        replayed = _collect(pool, client, queries, querybench.num_queries, query_mode=query_mode)
        bench = compare_query_benchmarks(
            querybench,
            replayed,
            missing_second_is_valid=False,
            first_instance=recorded.instance,
            second_instance=holder.instance,
        )
        benchmarks.append(bench)
        log_structured_event(
            _RUN_LOG,
            logging.INFO,
            "query_batch_replayed",
            job_id=job_id,
            instance=holder.instance,
            size=bench.size,
            valid_queries=bench.valid_queries,
            num_correct=bench.num_correct,
            dropped=pool.stats.dropped,
        )
    return benchmarks


def _finish_replay(outcome: RunOutcome, data_dir, name: str) -> RunOutcome:
    try:
        delete_artifact(data_dir, name)
    except ArtifactError as exc:
        outcome.delete_error = exc
    return outcome


def run_query_command(
    client,
    specs: WorkloadSpec,
    *,
    instance: str,
    data_dir,
    batch_sizes,
    workers: int = DEFAULT_WORKERS,
    num_rows: int = DEFAULT_ROWS_PER_INTERSECT,
    seed: int = DEFAULT_SEED,
    distribution: str = DEFAULT_ROW_DISTRIBUTION,
    query_mode: str = DEFAULT_QUERY_MODE,
    cancel: threading.Event | None = None,
) -> RunOutcome:
    name = specs.artifact_name(COMMAND_QUERY)
    job_id = new_job_id(COMMAND_QUERY)
    first = is_first_run(data_dir, name)
    phase = PHASE_RECORD if first else PHASE_REPLAY
    log_structured_event(
        _RUN_LOG,
        logging.INFO,
        "run_start",
        job_id=job_id,
        command=COMMAND_QUERY,
        phase=phase,
        instance=instance,
        artifact=name,
    )
    recorded = None if first else read_artifact(data_dir, name, command=COMMAND_QUERY, instance=instance)
    holder = _holder_for(instance, client, specs, seed)
    outcome = RunOutcome(
        command=COMMAND_QUERY,
        phase=phase,
        instance=instance,
        artifact=artifact_path(data_dir, name),
        job_id=job_id,
    )
    if first:
        outcome.solo = run_first_queries(
            holder,
            client,
            batch_sizes,
            workers=workers,
            num_rows=num_rows,
            seed=seed,
            distribution=distribution,
            query_mode=query_mode,
            cancel=cancel,
            job_id=job_id,
        )
        write_artifact(data_dir, name, outcome.solo)
        return outcome

    outcome.solo = recorded
    outcome.benchmarks = run_second_queries(
        holder,
        client,
        recorded,
        query_mode=query_mode,
        cancel=cancel,
        job_id=job_id,
    )
    return _finish_replay(outcome, data_dir, name)


def run_ingest(
    client,
    workloads,
    *,
    workers: int = DEFAULT_WORKERS,
    batch_size: int = DEFAULT_INGEST_BATCH_SIZE,
    cancel: threading.Event | None = None,
    job_id: str | None = None,
) -> tuple[int, int]:
    """Push every workload's mutations through the pool; returns (wall time ns, applied batches)."""
    pool = WorkerPool(workers, cancel=cancel, job_id=job_id)
    applied = 0
    with timed() as timing:
        for _ in pool.run(client.ingest_batch, ingest_batches(workloads, batch_size)):
            applied += 1
    log_structured_event(
        _RUN_LOG,
        logging.INFO,
        "ingest_finished",
        job_id=job_id,
        batches=applied,
        dropped=pool.stats.dropped,
        time=format_duration(timing["nanoseconds"]),
    )
    return timing["nanoseconds"], applied


def run_ingest_command(
    client,
    specs: WorkloadSpec,
    *,
    instance: str,
    data_dir,
    workers: int = DEFAULT_WORKERS,
    iterations: int = DEFAULT_INGEST_ITERATIONS,
    batch_size: int = DEFAULT_INGEST_BATCH_SIZE,
    seed: int = DEFAULT_SEED,
    exponent: float = DEFAULT_ZIPF_EXPONENT,
    ratio: float = DEFAULT_ZIPF_RATIO,
    cancel: threading.Event | None = None,
) -> RunOutcome:
    name = specs.artifact_name(COMMAND_INGEST)
    job_id = new_job_id(COMMAND_INGEST)
    first = is_first_run(data_dir, name)
    phase = PHASE_RECORD if first else PHASE_REPLAY
    log_structured_event(
        _RUN_LOG,
        logging.INFO,
        "run_start",
        job_id=job_id,
        command=COMMAND_INGEST,
        phase=phase,
        instance=instance,
        artifact=name,
    )
    recorded = None if first else read_artifact(data_dir, name, command=COMMAND_INGEST, instance=instance)
    parameters = {"iterations": iterations, "seed": seed, "batchSize": batch_size}
    if recorded is not None and recorded.workload is not None and recorded.workload != parameters:
        raise ArtifactError(
            f"{name}: recorded ingest workload {recorded.workload} does not match this run's {parameters}"
        )
    _holder_for(instance, client, specs, seed)
    workloads = ingest_workloads_from_specs(specs, iterations=iterations, seed=seed, exponent=exponent, ratio=ratio)
    elapsed, _ = run_ingest(client, workloads, workers=workers, batch_size=batch_size, cancel=cancel, job_id=job_id)
    current = SoloBenchmark(
        command=COMMAND_INGEST,
        instance=instance,
        thread_count=workers,
        time=elapsed,
        workload=parameters,
    )
    outcome = RunOutcome(
        command=COMMAND_INGEST,
        phase=phase,
        instance=instance,
        artifact=artifact_path(data_dir, name),
        job_id=job_id,
        solo=current,
    )
    if first:
        write_artifact(data_dir, name, current)
        return outcome
    outcome.benchmarks = [compare_ingest(recorded, current)]
    return _finish_replay(outcome, data_dir, name)


@dataclass(frozen=True)
class ZipfOutcome:
    index: str
    field: str
    mutations: int
    batches: int
    time: int


def run_zipf(
    client,
    workload: IngestWorkload,
    *,
    agent_num: int = 0,
    workers: int = DEFAULT_WORKERS,
    batch_size: int = DEFAULT_INGEST_BATCH_SIZE,
    cancel: threading.Event | None = None,
) -> ZipfOutcome:
    """Standalone Zipf load for one agent of a fleet; ``agent_num`` offsets the seed."""
    if agent_num < 0:
        raise ValueError("agent_num must be non-negative")
    job_id = new_job_id("zipf")
    client.ensure_index(workload.index)
    client.ensure_field(workload.index, workload.field, {"type": "set"})
    agent = replace(workload, seed=workload.seed + agent_num)
    log_structured_event(
        _RUN_LOG,
        logging.INFO,
        "zipf_start",
        job_id=job_id,
        index=agent.index,
        field=agent.field,
        agent_num=agent_num,
        iterations=agent.iterations,
        operation=agent.operation,
    )
    elapsed, applied = run_ingest(client, [agent], workers=workers, batch_size=batch_size, cancel=cancel, job_id=job_id)
    return ZipfOutcome(
        index=agent.index,
        field=agent.field,
        mutations=agent.iterations,
        batches=applied,
        time=elapsed,
    )
