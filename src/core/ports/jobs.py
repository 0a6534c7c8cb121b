"""
Background task dispatch interface.

Goal evaluation and visitor profile upserts run fire-and-forget relative
to the collect response. Dispatchers must run every task inside an
isolated catch-and-log sink: a failing task is logged and dropped, never
retried and never propagated to the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class TaskStatus(Enum):
    """Outcome of a dispatched task."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class TaskResult:
    """Result of one background task run."""

    name: str
    status: TaskStatus
    error: str | None = None
    execution_time_ms: int = 0


class TaskDispatcherPort(Protocol):
    """Fire-and-forget task dispatcher."""

    def dispatch(self, name: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> None:
        """
        Schedule fn(*args, **kwargs) without blocking the caller.

        Notes:
            - Must not raise for task failures
            - name is used for logging only
        """
        ...

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks, optionally waiting for in-flight ones."""
        ...
