from __future__ import annotations

import re
from contextlib import contextmanager
from time import perf_counter_ns

NANOSECOND = 1
MICROSECOND = 1_000 * NANOSECOND
MILLISECOND = 1_000 * MICROSECOND
SECOND = 1_000 * MILLISECOND
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE

_UNIT_NANOS = {
    "ns": NANOSECOND,
    "us": MICROSECOND,
    "µs": MICROSECOND,  # micro sign
    "μs": MICROSECOND,  # greek mu
    "ms": MILLISECOND,
    "s": SECOND,
    "m": MINUTE,
    "h": HOUR,
}
_COMPONENT_PATTERN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@contextmanager
def timed():
    start = perf_counter_ns()
    payload = {"nanoseconds": 0, "seconds": 0.0}
    try:
        yield payload
    finally:
        elapsed = perf_counter_ns() - start
        payload["nanoseconds"] = elapsed
        payload["seconds"] = elapsed / SECOND


def _format_fraction(value: int, precision: int) -> str:
    whole, frac = divmod(value, 10**precision)
    text = str(whole)
    if frac:
        text += "." + f"{frac:0{precision}d}".rstrip("0")
    return text


def format_duration(nanoseconds: int) -> str:
    """Render nanoseconds the way Go's time.Duration prints, e.g. ``1.5ms`` or ``1h2m3.5s``."""
    value = int(nanoseconds)
    if value == 0:
        return "0s"
    sign = "-" if value < 0 else ""
    value = abs(value)
    if value < SECOND:
        if value < MICROSECOND:
            return f"{sign}{value}ns"
        if value < MILLISECOND:
            return sign + _format_fraction(value, 3) + "µs"
        return sign + _format_fraction(value, 6) + "ms"

    seconds, frac = divmod(value, SECOND)
    text = str(seconds % 60)
    if frac:
        text += "." + f"{frac:09d}".rstrip("0")
    text += "s"
    minutes = seconds // 60
    if minutes:
        text = f"{minutes % 60}m" + text
        hours = minutes // 60
        if hours:
            text = f"{hours}h" + text
    return sign + text


def parse_duration(raw) -> int:
    """Parse a Go-style duration string, or integer nanoseconds, into nanoseconds."""
    if isinstance(raw, bool):
        raise ValueError(f"invalid duration: {raw!r}")
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"invalid duration: {raw!r}")

    text = raw.strip()
    sign = 1
    if text[:1] in ("-", "+"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0
    if text.isdigit():
        return sign * int(text)
    if not text:
        raise ValueError(f"invalid duration: {raw!r}")

    total = 0
    pos = 0
    while pos < len(text):
        match = _COMPONENT_PATTERN.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {raw!r}")
        number, unit = match.groups()
        scale = _UNIT_NANOS[unit]
        whole_text, _, frac_text = number.partition(".")
        total += int(whole_text or "0") * scale
        if frac_text:
            total += int(frac_text) * scale // 10 ** len(frac_text)
        pos = match.end()
    return sign * total
