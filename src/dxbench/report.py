"""
Comparison reports
==================

Fixed-column text tables for ingest and query comparisons. Column order and
number formatting never change between runs so reports can be diffed.
Optional DataFrame/Parquet export needs the ``report`` extra (polars).
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

from dxbench.engine.records import Benchmark, SoloBenchmark
from dxbench.util.deps import require_polars
from dxbench.util.timing import format_duration

QUERY_COLUMNS = ("size", "valid", "correct", "accuracy", "first_time", "second_time", "time_delta")
INGEST_COLUMNS = ("instance", "time")
NAN_TEXT = "NaN"


def format_ratio(value: float) -> str:
    if value is None or math.isnan(value):
        return NAN_TEXT
    return f"{value:.4f}"


def format_delta(value: float) -> str:
    if value is None or math.isnan(value):
        return NAN_TEXT
    return f"{value:+.4f}"


def _render(header, rows) -> str:
    table = [tuple(header)] + [tuple(str(cell) for cell in row) for row in rows]
    widths = [max(len(row[column]) for row in table) for column in range(len(header))]
    lines = ["  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in table]
    return "\n".join(lines) + "\n"


def query_rows(benchmarks):
    for bench in benchmarks:
        yield (
            bench.size,
            bench.valid_queries,
            bench.num_correct,
            format_ratio(bench.accuracy),
            format_duration(bench.first_time),
            format_duration(bench.second_time),
            format_delta(bench.time_delta),
        )


def render_query_report(benchmarks: list[Benchmark]) -> str:
    text = _render(QUERY_COLUMNS, query_rows(benchmarks))
    if benchmarks and benchmarks[0].first_instance:
        text = f"first={benchmarks[0].first_instance} second={benchmarks[0].second_instance}\n" + text
    return text


def render_ingest_report(bench: Benchmark) -> str:
    rows = [
        (bench.first_instance or "first", format_duration(bench.first_time)),
        (bench.second_instance or "second", format_duration(bench.second_time)),
        ("delta", format_delta(bench.time_delta)),
    ]
    return _render(INGEST_COLUMNS, rows)


def render_recorded(solo: SoloBenchmark, artifact) -> str:
    if solo.num_benchmarks:
        rows = []
        for querybench in solo.benchmarks:
            answered = sum(1 for query in querybench.queries if query is not None)
            rows.append((querybench.num_queries, answered, format_duration(querybench.time)))
        text = _render(("size", "answered", "time"), rows)
    else:
        text = _render(INGEST_COLUMNS, [(solo.instance, format_duration(solo.time or 0))])
    return f"recorded {solo.command} run on {solo.instance} to {artifact}\n" + text


def emit(text: str, stream=None) -> None:
    stream = stream or sys.stdout
    stream.write(text)
    stream.flush()


def benchmarks_frame(command: str, benchmarks: list[Benchmark]):
    """Comparison rows as a polars DataFrame, one row per benchmark."""
    pl = require_polars("benchmarks_frame")
    return pl.DataFrame(
        {
            "command": [command] * len(benchmarks),
            "first_instance": [bench.first_instance for bench in benchmarks],
            "second_instance": [bench.second_instance for bench in benchmarks],
            "size": [bench.size for bench in benchmarks],
            "valid_queries": [bench.valid_queries for bench in benchmarks],
            "num_correct": [bench.num_correct for bench in benchmarks],
            "accuracy": [float(bench.accuracy) for bench in benchmarks],
            "first_time_ns": [bench.first_time for bench in benchmarks],
            "second_time_ns": [bench.second_time for bench in benchmarks],
            "time_delta": [float(bench.time_delta) for bench in benchmarks],
        }
    )


def write_report_parquet(path, command: str, benchmarks: list[Benchmark]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    benchmarks_frame(command, benchmarks).write_parquet(str(target))
    return target
