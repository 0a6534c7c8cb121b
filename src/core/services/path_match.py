"""
String matching helpers shared by goals, funnels and report filters.

Glob patterns only support `*` (any run of characters); everything else
is literal. Invalid regular expressions never match.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache

logger = logging.getLogger(__name__)


@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts = [re.escape(chunk) for chunk in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$")


@lru_cache(maxsize=512)
def _compile_regex(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        logger.debug("Ignoring invalid regex pattern %r", pattern)
        return None


def match_path(pattern: str, path: str) -> bool:
    """Exact match, or glob match when the pattern contains `*`."""
    if "*" in pattern:
        return _compile_glob(pattern).match(path) is not None
    return pattern == path


def match_value(mode: str | None, expected: str, actual: str) -> bool:
    """
    Compare actual against expected using a match mode.

    Modes: exact (default), contains, regex (search semantics).
    """
    if mode == "contains":
        return expected in actual
    if mode == "regex":
        compiled = _compile_regex(expected)
        return compiled is not None and compiled.search(actual) is not None
    return actual == expected
