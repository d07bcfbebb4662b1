from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from dxbench.config.constants import DEFAULT_THREAD_NAME_PREFIX
from dxbench.errors import PermanentAdapterError, RunCancelled, TransientAdapterError
from dxbench.util.logging import log_structured_event

_POOL_LOG = logging.getLogger("dxbench.engine.pool")
_CANCELLED = object()


@dataclass(frozen=True)
class Completed:
    """A finished task tagged with the position it was submitted at."""

    position: int
    value: Any


@dataclass
class PoolStats:
    submitted: int = 0
    completed: int = 0
    dropped: int = 0
    max_in_flight: int = 0


class WorkerPool:
    """Run tasks across at most ``workers`` threads and yield results as they complete.

    At most ``workers`` tasks are submitted and unfinished at any time, so the
    task source is consumed lazily. A task raising
    :class:`TransientAdapterError` is logged and dropped; a
    :class:`PermanentAdapterError` stops submission and is re-raised once the
    in-flight tasks drain. Setting ``cancel`` (or a ``KeyboardInterrupt`` in the
    consuming thread) stops submission, suppresses any further results and
    raises :class:`RunCancelled`.
    """

    def __init__(
        self,
        workers: int,
        *,
        cancel: threading.Event | None = None,
        thread_name_prefix: str = DEFAULT_THREAD_NAME_PREFIX,
        job_id: str | None = None,
    ):
        if isinstance(workers, bool) or not isinstance(workers, int) or workers <= 0:
            raise ValueError("workers must be a positive integer")
        self.workers = workers
        self.cancel = cancel or threading.Event()
        self.thread_name_prefix = thread_name_prefix
        self.job_id = job_id
        self.stats = PoolStats()

    def _guard(self, fn: Callable[[Any], Any], task):
        if self.cancel.is_set():
            return _CANCELLED
        value = fn(task)
        if self.cancel.is_set():
            return _CANCELLED
        return value

    def run(self, fn: Callable[[Any], Any], tasks: Iterable[Any]) -> Iterator[Completed]:
        self.stats = PoolStats()
        task_iter = enumerate(tasks)
        fatal: BaseException | None = None
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=self.thread_name_prefix) as executor:
            pending: dict = {}

            def fill():
                while len(pending) < self.workers and fatal is None and not self.cancel.is_set():
                    try:
                        position, task = next(task_iter)
                    except StopIteration:
                        return
                    pending[executor.submit(self._guard, fn, task)] = position
                    self.stats.submitted += 1
                    self.stats.max_in_flight = max(self.stats.max_in_flight, len(pending))

            try:
                fill()
                while pending:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        position = pending.pop(future)
                        try:
                            value = future.result()
                        except TransientAdapterError as exc:
                            self.stats.dropped += 1
                            log_structured_event(
                                _POOL_LOG,
                                logging.WARNING,
                                "task_dropped",
                                job_id=self.job_id,
                                position=position,
                                error=str(exc),
                            )
                            continue
                        except PermanentAdapterError as exc:
                            self.stats.dropped += 1
                            if fatal is None:
                                fatal = exc
                            continue
                        if value is _CANCELLED or self.cancel.is_set():
                            continue
                        self.stats.completed += 1
                        yield Completed(position=position, value=value)
                    fill()
            except KeyboardInterrupt:
                self.cancel.set()
                for future in pending:
                    future.cancel()
                raise RunCancelled("interrupted") from None
            finally:
                if fatal is not None or self.cancel.is_set():
                    for future in pending:
                        future.cancel()

        log_structured_event(
            _POOL_LOG,
            logging.DEBUG,
            "pool_stats",
            job_id=self.job_id,
            workers=self.workers,
            submitted=self.stats.submitted,
            completed=self.stats.completed,
            dropped=self.stats.dropped,
            max_in_flight=self.stats.max_in_flight,
        )
        if fatal is not None:
            raise fatal
        if self.cancel.is_set():
            raise RunCancelled("run cancelled")
