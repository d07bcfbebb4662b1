from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class ColumnSet:
    """Columns returned by a row-producing query; order is not significant, duplicates are."""

    columns: tuple[int, ...]

    def __len__(self):
        return len(self.columns)


@dataclass(frozen=True)
class Count:
    value: int


QueryResult = Union[ColumnSet, Count]


def result_from_payload(payload) -> QueryResult:
    """Interpret one entry of a query response's ``results`` array."""
    if isinstance(payload, bool):
        raise ValueError(f"unexpected query result: {payload!r}")
    if isinstance(payload, int):
        return Count(payload)
    if isinstance(payload, dict):
        if "columns" in payload:
            columns = payload.get("columns") or []
            return ColumnSet(tuple(int(column) for column in columns))
        if "count" in payload:
            return Count(int(payload["count"]))
    raise ValueError(f"unexpected query result: {payload!r}")
