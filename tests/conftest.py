from __future__ import annotations

import re
import threading
import time
from pathlib import Path

import pytest

from dxbench.client.results import ColumnSet, Count
from dxbench.errors import SchemaError, TransientAdapterError
from tests.live_test_config import LIVE_TESTS_ENABLED

SPECS_TOML = b"""
[indexes.i1]
columns = 1000

[[indexes.i1.fields]]
name = "f1"
min = 0
max = 99
cardinality = 100
"""

_ROW_PATTERN = re.compile(r"Row\((\w+)=(\d+)\)")


def pytest_ignore_collect(collection_path, config):  # pragma: no cover - pytest hook
    del config
    if LIVE_TESTS_ENABLED:
        return False
    path = Path(str(collection_path))
    return path.name.startswith("live_")


def default_columns(field: str, row: int) -> set[int]:
    """Stable synthetic bitmap so intersects of nearby rows overlap."""
    return {column for column in range(64) if (column * 7 + row) % 5 != 0 or column % (row % 4 + 2) == 0}


class FakeIndexClient:
    """In-memory stand-in for ``IndexClient`` with the same call surface.

    ``fail_pql`` maps a PQL string to the number of times it should fail before
    succeeding; ``schema_error`` makes schema calls fail. ``delay_for`` maps a
    PQL string to the seconds that query should take, overriding ``delay``.
    """

    def __init__(
        self,
        hosts=None,
        port=None,
        *,
        elapsed_ns=1_000_000,
        delay=0.0,
        delay_for=None,
        schema_error=False,
        **options,
    ):
        self.hosts = hosts
        self.port = port
        self.options = options
        self.elapsed_ns = elapsed_ns
        self.delay = delay
        self.delay_for = delay_for
        self.schema_error = schema_error
        self.indexes: dict[str, dict[str, dict]] = {}
        self.bits: dict[tuple[str, str, int], set[int]] = {}
        self.fail_pql: dict[str, int] = {}
        self.count_override: dict[str, int] = {}
        self.queries: list[tuple[str, str]] = []
        self.batches: list[list] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self._lock = threading.Lock()

    def ensure_index(self, name):
        if self.schema_error:
            raise SchemaError(f"could not create index {name!r}")
        created = name not in self.indexes
        self.indexes.setdefault(name, {})
        return created

    def ensure_field(self, index, name, options=None):
        if self.schema_error:
            raise SchemaError(f"could not create field {index}.{name}")
        fields = self.indexes.setdefault(index, {})
        created = name not in fields
        fields.setdefault(name, dict(options or {}))
        return created

    def _enter(self):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _leave(self):
        with self._lock:
            self.in_flight -= 1

    def _row_columns(self, index, field, row):
        stored = self.bits.get((index, field, row))
        if stored is not None:
            return stored
        return default_columns(field, row)

    def execute_query(self, index, pql):
        self._enter()
        try:
            pause = self.delay_for(pql) if self.delay_for is not None else self.delay
            if pause:
                time.sleep(pause)
            with self._lock:
                self.queries.append((index, pql))
                remaining = self.fail_pql.get(pql, 0)
                if remaining:
                    self.fail_pql[pql] = remaining - 1
            if remaining:
                raise TransientAdapterError(f"query on index {index!r} failed: injected")
            rows = [(field, int(row)) for field, row in _ROW_PATTERN.findall(pql)]
            columns = None
            for field, row in rows:
                current = self._row_columns(index, field, row)
                columns = set(current) if columns is None else columns & current
            columns = columns or set()
            if pql.startswith("Count("):
                return Count(self.count_override.get(pql, len(columns))), self.elapsed_ns
            return ColumnSet(tuple(sorted(columns))), self.elapsed_ns
        finally:
            self._leave()

    def ingest_batch(self, mutations):
        batch = list(mutations)
        self._enter()
        try:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                self.batches.append(batch)
                for mutation in batch:
                    key = (mutation.index, mutation.field, mutation.row)
                    columns = self.bits.setdefault(key, set())
                    if mutation.clear:
                        columns.discard(mutation.column)
                    else:
                        columns.add(mutation.column)
            return self.elapsed_ns
        finally:
            self._leave()

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


@pytest.fixture
def specs_bytes():
    return SPECS_TOML


@pytest.fixture
def specs_path(tmp_path):
    path = tmp_path / "specs.toml"
    path.write_bytes(SPECS_TOML)
    return path


@pytest.fixture
def fake_client():
    return FakeIndexClient()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"
