from datetime import UTC, datetime


class SystemClock:
    """Production clock; satisfies TimePort."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)
