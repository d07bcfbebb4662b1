from __future__ import annotations

import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from time import perf_counter_ns
from urllib.parse import quote

import requests

from dxbench.client.results import QueryResult, result_from_payload
from dxbench.client.transport import build_session, normalize_host_url
from dxbench.client.wire import PROTOBUF_CONTENT_TYPE, SHARD_WIDTH, encode_import_request
from dxbench.config.constants import (
    DEFAULT_CLIENT_TYPE,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_RETRY_TOTAL,
)
from dxbench.config.runtime_defaults import VALID_CLIENT_TYPES, VALID_CONTENT_TYPES
from dxbench.errors import ConfigError, PermanentAdapterError, SchemaError, TransientAdapterError
from dxbench.util.json import json_dumps, json_loads
from dxbench.util.logging import log_structured_event

_ADAPTER_LOG = logging.getLogger("dxbench.client.adapter")
_HTTP_CONFLICT = 409
_MAX_ERROR_PREVIEW = 300


@dataclass(frozen=True)
class Mutation:
    index: str
    field: str
    row: int
    column: int
    clear: bool = False

    def pql(self) -> str:
        call = "Clear" if self.clear else "Set"
        return f"{call}({self.column}, {self.field}={self.row})"


def _preview(response) -> str:
    text = getattr(response, "text", "") or ""
    return text.strip()[:_MAX_ERROR_PREVIEW]


class IndexClient:
    """Narrow HTTP adapter over the database: schema upserts, queries and ingest batches.

    ``client_type="single"`` sends every call to the first host;
    ``"round_robin"`` rotates calls across the host list.
    """

    def __init__(
        self,
        hosts,
        port: int = DEFAULT_PORT,
        *,
        client_type: str = DEFAULT_CLIENT_TYPE,
        content_type: str = DEFAULT_CONTENT_TYPE,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        retry_total: int = DEFAULT_RETRY_TOTAL,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        pool_size: int = 32,
        session: requests.Session | None = None,
    ):
        if isinstance(hosts, str):
            hosts = [hosts]
        self.hosts = [normalize_host_url(host, port) for host in hosts]
        if not self.hosts:
            raise ConfigError("at least one host is required")
        if client_type not in VALID_CLIENT_TYPES:
            raise ConfigError(f"client type must be one of: {', '.join(sorted(VALID_CLIENT_TYPES))}")
        if content_type not in VALID_CONTENT_TYPES:
            raise ConfigError(f"content type must be one of: {', '.join(sorted(VALID_CONTENT_TYPES))}")
        if max_consecutive_failures <= 0:
            raise ConfigError("max_consecutive_failures must be a positive integer")
        self.client_type = client_type
        self.content_type = content_type
        self.timeout = (float(connect_timeout), float(request_timeout))
        self.max_consecutive_failures = int(max_consecutive_failures)
        self._session = session or build_session(
            pool_size=pool_size,
            retry_total=retry_total,
            retry_backoff_seconds=retry_backoff_seconds,
        )
        # Timed calls never retry: a failure is counted once and the position dropped.
        self._timed_session = session or build_session(pool_size=pool_size, retry_total=0)
        self._host_cycle = itertools.cycle(self.hosts)
        self._lock = threading.Lock()
        self._consecutive_failures = 0

    def _base_url(self) -> str:
        if self.client_type == "single":
            return self.hosts[0]
        with self._lock:
            return next(self._host_cycle)

    def _post(self, path: str, *, data: bytes, content_type: str, params=None, timed: bool = False):
        url = self._base_url() + path
        session = self._timed_session if timed else self._session
        return session.post(
            url,
            data=data,
            params=params,
            headers={"Content-Type": content_type, "Accept": "application/json"},
            timeout=self.timeout,
        )

    def _record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0

    def _record_failure(self, message: str, cause=None):
        with self._lock:
            self._consecutive_failures += 1
            failures = self._consecutive_failures
        if failures >= self.max_consecutive_failures:
            return PermanentAdapterError(
                f"{message} ({failures} consecutive failures, limit {self.max_consecutive_failures})",
                cause,
            )
        return TransientAdapterError(message, cause)

    # Schema

    def _ensure(self, path: str, body: dict, what: str) -> bool:
        try:
            response = self._post(path, data=json_dumps(body).encode("utf-8"), content_type="application/json")
        except requests.RequestException as exc:
            raise SchemaError(f"could not create {what}", exc) from exc
        with response:
            if response.status_code == _HTTP_CONFLICT:
                return False
            if response.status_code >= 400:
                raise SchemaError(f"could not create {what}: HTTP {response.status_code} {_preview(response)}")
        return True

    def ensure_index(self, name: str) -> bool:
        """Create ``name`` unless it exists; returns whether it was created."""
        created = self._ensure(f"/index/{quote(name, safe='')}", {"options": {}}, f"index {name!r}")
        log_structured_event(_ADAPTER_LOG, logging.DEBUG, "ensure_index", index=name, created=created)
        return created

    def ensure_field(self, index: str, name: str, options: dict | None = None) -> bool:
        field_options = dict(options or {})
        if field_options.get("type") == "time":
            field_options.setdefault("timeQuantum", "YMD")
        path = f"/index/{quote(index, safe='')}/field/{quote(name, safe='')}"
        created = self._ensure(path, {"options": field_options}, f"field {index}.{name}")
        log_structured_event(_ADAPTER_LOG, logging.DEBUG, "ensure_field", index=index, field=name, created=created)
        return created

    # Queries

    def execute_query(self, index: str, pql: str) -> tuple[QueryResult, int]:
        path = f"/index/{quote(index, safe='')}/query"
        started = perf_counter_ns()
        try:
            response = self._post(path, data=pql.encode("utf-8"), content_type="text/plain", timed=True)
            with response:
                elapsed = perf_counter_ns() - started
                if response.status_code >= 400:
                    raise self._record_failure(
                        f"query on index {index!r} failed: HTTP {response.status_code} {_preview(response)}"
                    )
                payload = json_loads(response.content)
        except requests.RequestException as exc:
            raise self._record_failure(f"query on index {index!r} failed", exc) from exc
        except ValueError as exc:
            raise self._record_failure(f"query on index {index!r} returned invalid JSON", exc) from exc

        try:
            if payload.get("error"):
                raise ValueError(payload["error"])
            results = payload.get("results") or []
            if not results:
                raise ValueError("response carried no results")
            result = result_from_payload(results[0])
        except (AttributeError, TypeError, ValueError) as exc:
            raise self._record_failure(f"query on index {index!r} returned an unusable response", exc) from exc
        self._record_success()
        return result, elapsed

    # Ingest

    def ingest_batch(self, mutations) -> int:
        """Apply an unordered batch of set/clear mutations; returns elapsed nanoseconds."""
        batch = list(mutations)
        if not batch:
            return 0
        if self.content_type == "binary":
            requests_to_send = list(self._binary_requests(batch))
        else:
            requests_to_send = list(self._textual_requests(batch))

        elapsed = 0
        for path, data, content_type, params in requests_to_send:
            started = perf_counter_ns()
            try:
                response = self._post(path, data=data, content_type=content_type, params=params, timed=True)
                with response:
                    elapsed += perf_counter_ns() - started
                    if response.status_code >= 400:
                        raise self._record_failure(
                            f"ingest to {path} failed: HTTP {response.status_code} {_preview(response)}"
                        )
            except requests.RequestException as exc:
                raise self._record_failure(f"ingest to {path} failed", exc) from exc
        self._record_success()
        return elapsed

    def _textual_requests(self, batch):
        by_index: dict[str, list[str]] = defaultdict(list)
        for mutation in batch:
            by_index[mutation.index].append(mutation.pql())
        for index, calls in by_index.items():
            yield f"/index/{quote(index, safe='')}/query", " ".join(calls).encode("utf-8"), "text/plain", None

    def _binary_requests(self, batch):
        groups: dict[tuple[str, str, int, bool], tuple[list[int], list[int]]] = {}
        for mutation in batch:
            key = (mutation.index, mutation.field, mutation.column // SHARD_WIDTH, mutation.clear)
            rows, columns = groups.setdefault(key, ([], []))
            rows.append(mutation.row)
            columns.append(mutation.column)
        for (index, field, shard, clear), (rows, columns) in groups.items():
            data = encode_import_request(index, field, shard, rows, columns)
            path = f"/index/{quote(index, safe='')}/field/{quote(field, safe='')}/import"
            params = {"clear": "true"} if clear else None
            yield path, data, PROTOBUF_CONTENT_TYPE, params

    def close(self) -> None:
        self._session.close()
        if self._timed_session is not self._session:
            self._timed_session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


__all__ = ["IndexClient", "Mutation"]
