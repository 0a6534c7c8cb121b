"""
Visitor hash generation.

Derives a stable, non-reversible pseudo-identifier from request facts
(IP, user agent, screen, language, timezone) plus a salt that rotates
every UTC day. No raw IP or user agent is stored.

Key behaviors:
- Same inputs on the same UTC day produce the same hash
- The salt changes at UTC midnight, so hashes cannot be joined across days
- Salt is HMAC(secret, YYYY-MM-DD); no salt table is needed
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import date, datetime

from src.core.ports.time import TimePort


class DailySaltProvider:
    """Derives the per-day hashing salt from a server secret."""

    def __init__(self, secret: str, time_port: TimePort) -> None:
        if not secret:
            raise ValueError("Salt secret must not be empty")
        self._secret = secret.encode()
        self._time = time_port

    def salt_for(self, day: date) -> str:
        return hmac.new(self._secret, day.isoformat().encode(), hashlib.sha256).hexdigest()

    def current_salt(self) -> str:
        return self.salt_for(self._time.now_utc().date())


def format_screen(width: int | None, height: int | None) -> str:
    return f"{width or 0}x{height or 0}"


def generate_visitor_hash(
    ip: str,
    user_agent: str,
    screen: str,
    language: str,
    timezone: str,
    salt: str,
) -> str:
    """Hash request facts with the salt (sha256 hex)."""
    data = f"{ip}|{user_agent}|{screen}|{language}|{timezone}|{salt}"
    return hashlib.sha256(data.encode()).hexdigest()


class VisitorHasher:
    """Binds a salt provider to generate_visitor_hash."""

    def __init__(self, salt_provider: DailySaltProvider) -> None:
        self._salts = salt_provider

    def hash(
        self,
        ip: str,
        user_agent: str,
        screen_width: int | None = None,
        screen_height: int | None = None,
        language: str | None = None,
        timezone: str | None = None,
        at: datetime | None = None,
    ) -> str:
        salt = self._salts.salt_for(at.date()) if at else self._salts.current_salt()
        return generate_visitor_hash(
            ip=ip,
            user_agent=user_agent,
            screen=format_screen(screen_width, screen_height),
            language=language or "",
            timezone=timezone or "",
            salt=salt,
        )
