"""Differential benchmark harness for bitmap-index databases.

``ingest`` and ``query`` alternate between recording a run against one
instance and replaying it against the other; ``compare`` diffs two saved
runs; ``zipf`` drives a standalone Zipf-distributed set/clear load.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import sys
import threading

from dxbench.client.adapter import IndexClient
from dxbench.config.constants import (
    COMMAND_INGEST,
    COMMAND_QUERY,
    DEFAULT_BATCH_SIZES,
    DEFAULT_CLIENT_TYPE,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_DATA_DIR,
    DEFAULT_INGEST_BATCH_SIZE,
    DEFAULT_INGEST_ITERATIONS,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    DEFAULT_PORT,
    DEFAULT_QUERY_MODE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_ROW_DISTRIBUTION,
    DEFAULT_ROWS_PER_INTERSECT,
    DEFAULT_SEED,
    DEFAULT_WORKERS,
    DEFAULT_ZIPF_EXPONENT,
    DEFAULT_ZIPF_RATIO,
    INSTANCE_CANDIDATE,
    INSTANCE_PRIMARY,
    OPERATION_SET,
    VALID_INSTANCES,
    VALID_OPERATIONS,
)
from dxbench.config.runtime_defaults import (
    VALID_CLIENT_TYPES,
    VALID_CONTENT_TYPES,
    VALID_QUERY_MODES,
    VALID_ROW_DISTRIBUTIONS,
)
from dxbench.engine.compare import execute_compare
from dxbench.engine.differential import PHASE_RECORD, run_ingest_command, run_query_command, run_zipf
from dxbench.errors import ConfigError, DxError, RunCancelled
from dxbench.report import emit, render_ingest_report, render_query_report, render_recorded, write_report_parquet
from dxbench.util import parse_csv_tokens, parse_positive_int_csv
from dxbench.util.logging import configure_cli_logging, log_structured_event
from dxbench.util.timing import format_duration
from dxbench.workload.generator import IngestWorkload
from dxbench.workload.rng import check_seed
from dxbench.workload.specs import load_specs

_CLI_LOG = logging.getLogger("dxbench.cli")


def _env_text(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    if not stripped:
        return default
    return stripped


def _env_int(name: str, default: int) -> int:
    value = _env_text(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _csv_from_ints(values) -> str:
    return ",".join(str(value) for value in values)


def determine_instance(
    instance,
    candidate_hosts,
    primary_hosts,
    *,
    candidate_port=DEFAULT_PORT,
    primary_port=DEFAULT_PORT,
):
    """Resolve which instance this run targets and the hosts to use for it.

    ``instance`` wins when given; otherwise exactly one of the host lists must be set.
    """
    candidates = parse_csv_tokens(candidate_hosts)
    primaries = parse_csv_tokens(primary_hosts)
    if instance is None:
        if candidates and primaries:
            raise ConfigError("both --candidate-hosts and --primary-hosts are set; pass --instance to choose one")
        if candidates:
            instance = INSTANCE_CANDIDATE
        elif primaries:
            instance = INSTANCE_PRIMARY
        else:
            raise ConfigError("one of --candidate-hosts or --primary-hosts is required")
    if instance not in VALID_INSTANCES:
        raise ConfigError(f"--instance must be one of: {', '.join(sorted(VALID_INSTANCES))}")
    if instance == INSTANCE_CANDIDATE:
        hosts, port = candidates, candidate_port
    else:
        hosts, port = primaries, primary_port
    if not hosts:
        raise ConfigError(f"--{instance}-hosts is required when running against {instance}")
    return instance, hosts, port


def _base_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--log-level",
        default=_env_text("DXBENCH_LOG_LEVEL", "WARNING"),
        help="Logging level for structured events (DEBUG, INFO, WARNING, ...).",
    )
    return parser


def _client_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--client-type",
        choices=sorted(VALID_CLIENT_TYPES),
        default=DEFAULT_CLIENT_TYPE,
        help="'single' sends every call to the first host; 'round_robin' rotates across hosts.",
    )
    parser.add_argument(
        "--content-type",
        choices=sorted(VALID_CONTENT_TYPES),
        default=DEFAULT_CONTENT_TYPE,
        help="Ingest encoding: protobuf bulk import ('binary') or PQL Set()/Clear() ('textual').",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_env_int("DXBENCH_WORKERS", DEFAULT_WORKERS),
        help="Maximum number of in-flight remote calls. A query replay uses the recorded count.",
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for workload generation.")
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=DEFAULT_CONNECT_TIMEOUT_SECONDS,
        help="Seconds to wait for a connection.",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        help="Seconds to wait for a single response.",
    )
    parser.add_argument(
        "--max-consecutive-failures",
        type=int,
        default=DEFAULT_MAX_CONSECUTIVE_FAILURES,
        help="Consecutive failed calls after which the run is aborted.",
    )
    return parser


def _differential_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--candidate-hosts",
        default=_env_text("DXBENCH_CANDIDATE_HOSTS"),
        help="Comma separated candidate hosts.",
    )
    parser.add_argument(
        "--primary-hosts",
        default=_env_text("DXBENCH_PRIMARY_HOSTS"),
        help="Comma separated primary hosts.",
    )
    parser.add_argument("--candidate-port", type=int, default=DEFAULT_PORT, help="Default candidate port.")
    parser.add_argument("--primary-port", type=int, default=DEFAULT_PORT, help="Default primary port.")
    parser.add_argument(
        "--instance",
        choices=sorted(VALID_INSTANCES),
        default=None,
        help="Instance to run against; inferred from the host flags when omitted.",
    )
    parser.add_argument(
        "--data-dir",
        default=_env_text("DXBENCH_DATA_DIR", DEFAULT_DATA_DIR),
        help="Directory holding first-run artifacts.",
    )
    parser.add_argument(
        "--specs",
        default=_env_text("DXBENCH_SPECS"),
        help="Path to the TOML specs document.",
    )
    parser.add_argument(
        "--report-parquet",
        default=None,
        help="Also write comparison rows to this Parquet file (requires polars).",
    )
    return parser


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dxbench", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)
    base = _base_parser()
    client = _client_parser()
    differential = _differential_parser()

    ingest = subparsers.add_parser(
        COMMAND_INGEST,
        parents=[base, client, differential],
        help="Record or replay an ingest workload derived from the specs.",
    )
    ingest.add_argument(
        "--iterations",
        type=int,
        default=DEFAULT_INGEST_ITERATIONS,
        help="Mutations per (index, field).",
    )
    ingest.add_argument("--batch-size", type=int, default=DEFAULT_INGEST_BATCH_SIZE, help="Mutations per batch.")
    ingest.set_defaults(handler=_run_ingest)

    query = subparsers.add_parser(
        COMMAND_QUERY,
        parents=[base, client, differential],
        help="Record or replay intersect queries derived from the specs.",
    )
    query.add_argument(
        "-q",
        "--batch-sizes",
        default=_csv_from_ints(DEFAULT_BATCH_SIZES),
        help="Comma separated number of queries per batch.",
    )
    query.add_argument(
        "-r",
        "--rows",
        type=int,
        default=DEFAULT_ROWS_PER_INTERSECT,
        help="Rows per intersect query.",
    )
    query.add_argument("--query-mode", choices=sorted(VALID_QUERY_MODES), default=DEFAULT_QUERY_MODE)
    query.add_argument("--row-distribution", choices=sorted(VALID_ROW_DISTRIBUTIONS), default=DEFAULT_ROW_DISTRIBUTION)
    query.set_defaults(handler=_run_query)

    compare = subparsers.add_parser("compare", parents=[base], help="Compare two saved benchmark files.")
    compare.add_argument("file1")
    compare.add_argument("file2")
    compare.add_argument("--report-parquet", default=None, help="Also write comparison rows to this Parquet file.")
    compare.set_defaults(handler=_run_compare)

    zipf = subparsers.add_parser(
        "zipf",
        parents=[base, client],
        help="Set or clear bits with Zipf-distributed row and column ids.",
    )
    zipf.add_argument("--hosts", default=_env_text("DXBENCH_HOSTS", "localhost:10101"), help="Comma separated hosts.")
    zipf.add_argument("--port", type=int, default=DEFAULT_PORT, help="Default port for hosts without one.")
    zipf.add_argument("--agent-num", type=int, default=0, help="Agent number; offsets the seed.")
    zipf.add_argument("--base-row-id", type=int, default=0, help="Rows being set will all be greater than this.")
    zipf.add_argument("--row-id-range", type=int, default=100_000, help="Number of possible row ids.")
    zipf.add_argument("--base-column-id", type=int, default=0, help="Columns being set will all be greater than this.")
    zipf.add_argument("--column-id-range", type=int, default=100_000, help="Number of possible column ids.")
    zipf.add_argument("--iterations", type=int, default=100, help="Number of bits to set.")
    zipf.add_argument("--batch-size", type=int, default=DEFAULT_INGEST_BATCH_SIZE, help="Mutations per batch.")
    zipf.add_argument("--index", default="benchindex", help="Index to set bits in.")
    zipf.add_argument("--field", default="fbench", help="Field to set bits in.")
    zipf.add_argument("--row-exponent", type=float, default=DEFAULT_ZIPF_EXPONENT, help="Zipf exponent for row ids.")
    zipf.add_argument("--row-ratio", type=float, default=DEFAULT_ZIPF_RATIO, help="Zipf ratio for row ids.")
    zipf.add_argument(
        "--column-exponent",
        type=float,
        default=DEFAULT_ZIPF_EXPONENT,
        help="Zipf exponent for column ids.",
    )
    zipf.add_argument("--column-ratio", type=float, default=DEFAULT_ZIPF_RATIO, help="Zipf ratio for column ids.")
    zipf.add_argument("--operation", choices=sorted(VALID_OPERATIONS), default=OPERATION_SET)
    zipf.set_defaults(handler=_run_zipf)
    return parser


def _make_client(args, hosts, port, client_factory):
    _require_positive_seconds("--connect-timeout", args.connect_timeout)
    _require_positive_seconds("--request-timeout", args.request_timeout)
    return client_factory(
        hosts,
        port,
        client_type=args.client_type,
        content_type=args.content_type,
        connect_timeout=args.connect_timeout,
        request_timeout=args.request_timeout,
        max_consecutive_failures=args.max_consecutive_failures,
    )


def _require_positive(name: str, value: int) -> int:
    if value <= 0:
        raise ConfigError(f"{name} must be a positive integer")
    return value


def _require_positive_seconds(name: str, value: float) -> float:
    if not value > 0 or math.isinf(value):
        raise ConfigError(f"{name} must be a positive number of seconds")
    return value


def _load_run_inputs(args):
    if not args.specs:
        raise ConfigError("--specs is required")
    _require_positive("--workers", args.workers)
    instance, hosts, port = determine_instance(
        args.instance,
        args.candidate_hosts,
        args.primary_hosts,
        candidate_port=args.candidate_port,
        primary_port=args.primary_port,
    )
    return instance, hosts, port, load_specs(args.specs)


def _export(args, command, benchmarks) -> None:
    if not args.report_parquet or not benchmarks:
        return
    try:
        target = write_report_parquet(args.report_parquet, command, benchmarks)
    except ImportError as exc:
        raise ConfigError("--report-parquet needs the report extra", exc) from exc
    log_structured_event(_CLI_LOG, logging.INFO, "report_exported", path=str(target), rows=len(benchmarks))


def _emit_outcome(args, outcome, stream) -> None:
    if outcome.phase == PHASE_RECORD:
        emit(render_recorded(outcome.solo, outcome.artifact), stream)
    elif outcome.command == COMMAND_INGEST:
        emit(render_ingest_report(outcome.benchmarks[0]), stream)
    else:
        emit(render_query_report(outcome.benchmarks), stream)
    _export(args, outcome.command, outcome.benchmarks)
    if outcome.delete_error is not None:
        raise outcome.delete_error


def _run_query(args, *, client_factory, stream, cancel) -> int:
    try:
        batch_sizes = parse_positive_int_csv(args.batch_sizes, name="--batch-sizes")
    except ValueError as exc:
        raise ConfigError(str(exc)) from None
    if not batch_sizes:
        raise ConfigError("--batch-sizes must contain at least one positive value")
    _require_positive("--rows", args.rows)
    instance, hosts, port, specs = _load_run_inputs(args)
    with _make_client(args, hosts, port, client_factory) as client:
        outcome = run_query_command(
            client,
            specs,
            instance=instance,
            data_dir=args.data_dir,
            batch_sizes=batch_sizes,
            workers=args.workers,
            num_rows=args.rows,
            seed=args.seed,
            distribution=args.row_distribution,
            query_mode=args.query_mode,
            cancel=cancel,
        )
    _emit_outcome(args, outcome, stream)
    return 0


def _run_ingest(args, *, client_factory, stream, cancel) -> int:
    _require_positive("--iterations", args.iterations)
    _require_positive("--batch-size", args.batch_size)
    instance, hosts, port, specs = _load_run_inputs(args)
    with _make_client(args, hosts, port, client_factory) as client:
        outcome = run_ingest_command(
            client,
            specs,
            instance=instance,
            data_dir=args.data_dir,
            workers=args.workers,
            iterations=args.iterations,
            batch_size=args.batch_size,
            seed=args.seed,
            cancel=cancel,
        )
    _emit_outcome(args, outcome, stream)
    return 0


def _run_compare(args, *, client_factory, stream, cancel) -> int:
    command, benchmarks = execute_compare(args.file1, args.file2)
    if command == COMMAND_INGEST:
        emit(render_ingest_report(benchmarks[0]), stream)
    else:
        emit(render_query_report(benchmarks), stream)
    _export(args, command, benchmarks)
    return 0


def _run_zipf(args, *, client_factory, stream, cancel) -> int:
    _require_positive("--workers", args.workers)
    _require_positive("--batch-size", args.batch_size)
    if args.agent_num < 0:
        raise ConfigError("--agent-num must be non-negative")
    hosts = parse_csv_tokens(args.hosts)
    if not hosts:
        raise ConfigError("--hosts is required")
    try:
        check_seed(args.seed + args.agent_num)
        workload = IngestWorkload(
            index=args.index,
            field=args.field,
            base_row=args.base_row_id,
            row_range=args.row_id_range,
            base_column=args.base_column_id,
            column_range=args.column_id_range,
            iterations=args.iterations,
            seed=args.seed,
            row_exponent=args.row_exponent,
            row_ratio=args.row_ratio,
            column_exponent=args.column_exponent,
            column_ratio=args.column_ratio,
            operation=args.operation,
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from None
    with _make_client(args, hosts, args.port, client_factory) as client:
        outcome = run_zipf(
            client,
            workload,
            agent_num=args.agent_num,
            workers=args.workers,
            batch_size=args.batch_size,
            cancel=cancel,
        )
    emit(
        f"zipf index={outcome.index} field={outcome.field} mutations={outcome.mutations} "
        f"batches={outcome.batches} time={format_duration(outcome.time)}\n",
        stream,
    )
    return 0


def main(argv=None, *, client_factory=IndexClient, stream=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        configure_cli_logging(args.log_level)
    except ValueError as exc:
        parser.error(str(exc))
    cancel = threading.Event()
    try:
        return args.handler(args, client_factory=client_factory, stream=stream or sys.stdout, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        error: DxError = RunCancelled("interrupted")
    except DxError as exc:
        error = exc
    log_structured_event(
        _CLI_LOG,
        logging.ERROR,
        "command_failed",
        command=args.command,
        error=str(error),
        exit_code=error.exit_code,
    )
    print(f"dxbench {args.command}: {error}", file=sys.stderr)
    return error.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
