"""JSON for artifacts and request bodies; orjson when the ``fast`` extra is installed."""

from __future__ import annotations

import json as _stdlib_json
import logging

from dxbench.util.deps import optional_module

LOG = logging.getLogger(__name__)

_orjson = optional_module("orjson")
JSON_BACKEND = "json" if _orjson is None else "orjson"


def json_loads(payload):
    """Decode ``str`` or ``bytes``; malformed input raises ``ValueError`` on either backend."""
    if _orjson is not None:
        return _orjson.loads(payload)
    if isinstance(payload, (bytes, bytearray, memoryview)):
        payload = bytes(payload).decode("utf-8")
    return _stdlib_json.loads(payload)


def json_dumps_bytes(payload, *, indent: bool = False) -> bytes:
    """Encode with sorted keys so persisted artifacts diff cleanly between runs."""
    if _orjson is not None:
        option = _orjson.OPT_SORT_KEYS
        if indent:
            option |= _orjson.OPT_INDENT_2
        return _orjson.dumps(payload, option=option)
    text = _stdlib_json.dumps(
        payload,
        indent=2 if indent else None,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ": ") if indent else (",", ":"),
    )
    return text.encode("utf-8")


def json_dumps(payload) -> str:
    return json_dumps_bytes(payload).decode("utf-8")


LOG.debug("dxbench.util.json backend=%s", JSON_BACKEND)
