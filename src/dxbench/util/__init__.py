from __future__ import annotations

from dxbench.util.core import ReadableException, parse_csv_tokens, parse_positive_int_csv
from dxbench.util.logging import log_structured_event, new_job_id
from dxbench.util.timing import format_duration, parse_duration, timed

__all__ = [
    "ReadableException",
    "parse_csv_tokens",
    "parse_positive_int_csv",
    "new_job_id",
    "log_structured_event",
    "timed",
    "format_duration",
    "parse_duration",
]
