"""
Structured log events
=====================

Every event is one JSON object per log record, ``{"event": ..., **fields}``,
so a run's pool, store and comparison activity can be grepped by ``job_id``.
Credentials never reach the log: sensitive keys are redacted and user info is
stripped from host URLs.
"""

from __future__ import annotations

import json
import logging
import math
import re
from pathlib import PurePath
from uuid import uuid4

from dxbench.util.deps import optional_module

_orjson = optional_module("orjson")

_SENSITIVE_FIELD_TOKENS = (
    "authorization",
    "token",
    "secret",
    "password",
    "api_key",
    "apikey",
)
_URL_USERINFO = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@", re.IGNORECASE)
_TRUNCATED_SUFFIX = "...<truncated>"
_MAX_LOG_STRING_CHARS = 2048
JOB_ID_LEN = 12
CLI_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _is_sensitive_key(key: str) -> bool:
    lowered = str(key).strip().lower()
    return any(token in lowered for token in _SENSITIVE_FIELD_TOKENS)


def _sanitize_log_value(key: str, value):
    if _is_sensitive_key(key):
        return "<redacted>"
    if isinstance(value, PurePath):
        value = str(value)
    if isinstance(value, float) and math.isnan(value):
        # Accuracy and deltas are NaN when undefined; keep them valid JSON.
        return "NaN"
    if isinstance(value, str):
        value = _URL_USERINFO.sub(r"\g<scheme>", value)
        if len(value) > _MAX_LOG_STRING_CHARS:
            return value[:_MAX_LOG_STRING_CHARS] + _TRUNCATED_SUFFIX
    return value


def _serialize_structured_payload(payload: dict[str, object]) -> str:
    if _orjson is not None:
        try:
            return _orjson.dumps(payload, default=str).decode("utf-8")
        except TypeError:
            # orjson rejects very large ints; stdlib json does not.
            pass
    return json.dumps(payload, default=str, ensure_ascii=False, separators=(",", ":"))


def new_job_id(prefix: str | None = None) -> str:
    token = uuid4().hex[:JOB_ID_LEN]
    cleaned = str(prefix or "").strip()
    if cleaned:
        return f"{cleaned}_{token}"
    return token


def log_structured_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields,
) -> dict[str, object]:
    """Log ``event`` with ``fields`` as one JSON line and return the sanitized payload.

    ``None`` fields are omitted. Nothing is serialized when ``level`` is disabled.
    """
    payload: dict[str, object] = {"event": str(event)}
    payload.update({k: _sanitize_log_value(k, v) for k, v in fields.items() if v is not None})
    if logger.isEnabledFor(level):
        logger.log(level, _serialize_structured_payload(payload))
    return payload


def configure_cli_logging(level: str | int = "INFO") -> None:
    """Install a root handler for command-line runs; library code never calls this."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"unknown log level: {level!r}")
        level = resolved
    logging.basicConfig(level=level, format=CLI_LOG_FORMAT)
