"""
Time port.

All timestamps handled by the engine are timezone-aware UTC.
Injecting the clock keeps the session timeout and sync frequency gates
deterministic under test.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
