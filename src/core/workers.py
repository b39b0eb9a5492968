"""Worker pools for asynchronous rules.

``WorkerPool`` wraps a ``ThreadPoolExecutor`` with an optional bound on
pending tasks and an explicit drain-then-stop shutdown. ``InlineWorkerPool``
runs every task during ``submit`` and is meant for deterministic tests.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, Set

from core.errors import PoolRejectedError

LOGGER = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 100


class WorkerPool:
    """Bounded set of worker threads.

    ``max_pending=None`` queues any number of tasks. With an integer bound,
    ``submit`` raises ``PoolRejectedError`` instead of blocking once that many
    tasks are queued or running.
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_POOL_SIZE,
        max_pending: Optional[int] = None,
        thread_name_prefix: str = "fansrouter-worker",
    ) -> None:
        if max_pending is not None and max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._max_pending = max_pending
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        with self._lock:
            if self._closed:
                raise PoolRejectedError("Worker pool is shut down")
            if self._max_pending is not None and len(self._pending) >= self._max_pending:
                raise PoolRejectedError(f"Worker pool is full ({self._max_pending} pending tasks)")
            try:
                future = self._executor.submit(fn, *args, **kwargs)
            except RuntimeError as exc:
                raise PoolRejectedError(str(exc)) from exc
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None, cancel_pending: bool = False) -> None:
        """Stop accepting tasks, drain what is pending, then stop the threads.

        ``timeout`` bounds the drain; tasks still pending after it are
        cancelled when ``cancel_pending`` is set (running ones cannot be).
        """

        with self._lock:
            self._closed = True
            pending = set(self._pending)

        if wait and pending:
            LOGGER.info("Waiting for %s pending tasks (timeout: %s)", len(pending), timeout)
            _, not_done = concurrent.futures.wait(pending, timeout=timeout)
            if not_done:
                LOGGER.warning("%s tasks did not complete within timeout", len(not_done))
                if cancel_pending:
                    for future in not_done:
                        future.cancel()
        elif cancel_pending:
            for future in pending:
                future.cancel()

        self._executor.shutdown(wait=wait and timeout is None)
        LOGGER.info("Worker pool shut down")


class InlineWorkerPool:
    """Runs each task on the submitting thread and returns a finished future."""

    def __init__(self) -> None:
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        if self._closed:
            raise PoolRejectedError("Worker pool is shut down")
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None, cancel_pending: bool = False) -> None:
        self._closed = True
