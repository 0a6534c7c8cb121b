from datetime import UTC, datetime

from src.adapters.clock import SystemClock


def test_system_clock():
    now = SystemClock().now_utc()
    assert isinstance(now, datetime)
    assert now.tzinfo is not None
    diff = abs((datetime.now(UTC) - now).total_seconds())
    assert diff < 1.0
