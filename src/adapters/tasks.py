"""
Background task dispatchers.

ThreadPoolTaskDispatcher runs fire-and-forget side effects (goal
evaluation, visitor profile upserts) on a bounded worker pool so the
collect response never waits on them. InlineTaskDispatcher runs tasks
synchronously for tests and scripts.

Both wrap every task in run_isolated(): exceptions are logged with the
task name and converted to a failure TaskResult, never re-raised.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from src.core.ports.jobs import TaskResult, TaskStatus

logger = logging.getLogger(__name__)


def run_isolated(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> TaskResult:
    """Run a task inside a catch-and-log sink."""
    start_time = time.monotonic()
    try:
        fn(*args, **kwargs)
    except Exception as e:
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.exception("Background task %s failed", name)
        return TaskResult(
            name=name,
            status=TaskStatus.FAILURE,
            error=str(e),
            execution_time_ms=elapsed_ms,
        )

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    return TaskResult(name=name, status=TaskStatus.SUCCESS, execution_time_ms=elapsed_ms)


class InlineTaskDispatcher:
    """Runs tasks synchronously; keeps results for inspection."""

    def __init__(self) -> None:
        self.results: list[TaskResult] = []

    def dispatch(self, name: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> None:
        self.results.append(run_isolated(name, fn, *args, **kwargs))

    def shutdown(self, wait: bool = True) -> None:
        return None


class ThreadPoolTaskDispatcher:
    """
    Thread-pool dispatcher for production.

    Tasks submitted after shutdown are dropped with a warning.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="sitepulse-task",
        )
        self._lock = threading.Lock()
        self._closed = False

    def dispatch(self, name: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            if self._closed:
                logger.warning("Dispatcher closed; dropping task %s", name)
                return
            self._executor.submit(run_isolated, name, fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("Task dispatcher stopped")
