from __future__ import annotations

from collections.abc import Iterable


class ReadableException(Exception):
    def __init__(self, message, cause=None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    def __str__(self):
        if self.cause is None:
            return str(self.message)
        else:
            return f"{self.message}: {self.cause}"


def parse_csv_tokens(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable = raw.split(",")
    else:
        items = raw
    return [str(item).strip() for item in items if str(item).strip()]


def parse_positive_int_csv(raw, *, name: str) -> list[int]:
    values = []
    for token in parse_csv_tokens(raw):
        try:
            value = int(token)
        except ValueError:
            raise ValueError(f"{name} must be a comma separated list of integers, got {token!r}") from None
        if value <= 0:
            raise ValueError(f"{name} values must be positive integers, got {value}")
        values.append(value)
    return values
