"""
Tests for shared core services: bot filter, visitor hash, path matching.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from src.core.services.bot_filter import (
    BotFilterConfig,
    UAClass,
    classify_user_agent,
    is_bot_ua,
    with_extra_patterns,
)
from src.core.services.path_match import match_path, match_value
from src.core.services.visitor_hash import (
    DailySaltProvider,
    VisitorHasher,
    format_screen,
    generate_visitor_hash,
)

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class MockTimePort:
    """Mock time provider."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2025, 6, 2, 23, 59, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def set_now(self, now: datetime) -> None:
        self._now = now


# --- Bot filter ---


class TestBotFilter:
    @pytest.mark.parametrize(
        "user_agent",
        [
            "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
            "Mozilla/5.0 (X11; Linux x86_64) HeadlessChrome/120.0 Safari/537.36",
            "curl/8.4.0",
            "facebookexternalhit/1.1",
        ],
    )
    def test_bots(self, user_agent: str) -> None:
        assert classify_user_agent(user_agent) == UAClass.BOT
        assert is_bot_ua(user_agent)

    @pytest.mark.parametrize("user_agent", [None, "", "   "])
    def test_missing_user_agent_is_bot(self, user_agent: str | None) -> None:
        assert is_bot_ua(user_agent)

    def test_real_browser(self) -> None:
        assert classify_user_agent(CHROME_UA) == UAClass.REAL
        assert not is_bot_ua(CHROME_UA)

    def test_unknown_follows_config(self) -> None:
        assert classify_user_agent("SomeEmbeddedClient/1.0") == UAClass.UNKNOWN
        assert not is_bot_ua("SomeEmbeddedClient/1.0")
        assert is_bot_ua("SomeEmbeddedClient/1.0", BotFilterConfig(treat_unknown_as="bot"))

    def test_extra_patterns(self) -> None:
        config = with_extra_patterns(["SynthCheck"])
        assert is_bot_ua(CHROME_UA + " SynthCheck/2", config)
        assert with_extra_patterns([]).bot_patterns == BotFilterConfig().bot_patterns


# --- Visitor hash ---


class TestVisitorHash:
    def test_same_inputs_same_hash(self) -> None:
        a = generate_visitor_hash("1.2.3.4", "ua", "1x1", "en", "UTC", "salt")
        b = generate_visitor_hash("1.2.3.4", "ua", "1x1", "en", "UTC", "salt")
        assert a == b
        assert len(a) == 64

    def test_any_input_changes_hash(self) -> None:
        base = generate_visitor_hash("1.2.3.4", "ua", "1x1", "en", "UTC", "salt")
        assert base != generate_visitor_hash("1.2.3.5", "ua", "1x1", "en", "UTC", "salt")
        assert base != generate_visitor_hash("1.2.3.4", "ua", "1x1", "en", "UTC", "pepper")

    def test_format_screen(self) -> None:
        assert format_screen(1920, 1080) == "1920x1080"
        assert format_screen(None, None) == "0x0"

    def test_salt_rotates_daily(self) -> None:
        clock = MockTimePort()
        hasher = VisitorHasher(DailySaltProvider("secret", clock))

        today = hasher.hash(ip="1.2.3.4", user_agent=CHROME_UA)
        again = hasher.hash(ip="1.2.3.4", user_agent=CHROME_UA)
        clock.set_now(clock.now_utc() + timedelta(minutes=2))
        tomorrow = hasher.hash(ip="1.2.3.4", user_agent=CHROME_UA)

        assert today == again
        assert today != tomorrow

    def test_explicit_timestamp_selects_salt(self) -> None:
        clock = MockTimePort()
        salts = DailySaltProvider("secret", clock)
        hasher = VisitorHasher(salts)
        at = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)

        expected = generate_visitor_hash("ip", "ua", "0x0", "", "", salts.salt_for(date(2025, 1, 1)))
        assert hasher.hash(ip="ip", user_agent="ua", at=at) == expected

    def test_salt_depends_on_secret(self) -> None:
        clock = MockTimePort()
        day = date(2025, 6, 2)
        assert DailySaltProvider("a", clock).salt_for(day) != DailySaltProvider("b", clock).salt_for(day)

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            DailySaltProvider("", MockTimePort())


# --- Path matching ---


class TestPathMatch:
    def test_exact(self) -> None:
        assert match_path("/pricing", "/pricing")
        assert not match_path("/pricing", "/pricing/")

    def test_glob(self) -> None:
        assert match_path("/blog/*", "/blog/hello")
        assert match_path("/blog/*", "/blog/")
        assert match_path("*/thanks", "/checkout/thanks")
        assert not match_path("/blog/*", "/docs/blog/x")

    def test_glob_is_literal_otherwise(self) -> None:
        assert not match_path("/a.b*", "/axb")
        assert match_path("/a.b*", "/a.bc")

    @pytest.mark.parametrize(
        "mode,expected,actual,result",
        [
            ("exact", "/a", "/a", True),
            (None, "/a", "/a/", False),
            ("contains", "check", "/checkout", True),
            ("regex", r"^/p/\d+$", "/p/12", True),
            ("regex", "[", "[", False),
        ],
    )
    def test_match_value(self, mode: str | None, expected: str, actual: str, result: bool) -> None:
        assert match_value(mode, expected, actual) is result
