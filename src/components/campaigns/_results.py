"""
Meta "Results" semantics.

Meta reports one conversion under several overlapping action types
(e.g. "lead" and "offsite_conversion.fb_pixel_lead" are the same leads).
Each objective maps to a priority-ordered list; only the first action type
present in a row counts. Values are never summed across the list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_LEAD_ACTIONS = (
    "lead",
    "offsite_conversion.fb_pixel_lead",
    "onsite_web_lead",
    "leadgen_grouped",
    "onsite_conversion.lead_grouped",
)
_PURCHASE_RESULTS = ("purchase", "offsite_conversion.fb_pixel_purchase", "omni_purchase")

OBJECTIVE_RESULT_MAP: dict[str, tuple[str, ...]] = {
    "LEAD_GENERATION": _LEAD_ACTIONS,
    "OUTCOME_LEADS": _LEAD_ACTIONS,
    "OUTCOME_SALES": _PURCHASE_RESULTS,
    "CONVERSIONS": _PURCHASE_RESULTS + ("lead", "offsite_conversion.fb_pixel_lead"),
    "PRODUCT_CATALOG_SALES": _PURCHASE_RESULTS,
    "LINK_CLICKS": ("link_click",),
    "OUTCOME_TRAFFIC": ("landing_page_view", "link_click"),
    "OUTCOME_ENGAGEMENT": ("post_engagement", "page_engagement", "video_view", "landing_page_view"),
    "POST_ENGAGEMENT": ("post_engagement", "page_engagement"),
    "OUTCOME_AWARENESS": ("reach",),
    "BRAND_AWARENESS": ("reach",),
    "REACH": ("reach",),
    "OUTCOME_APP_PROMOTION": ("app_install", "mobile_app_install"),
    "APP_INSTALLS": ("app_install", "mobile_app_install"),
    "VIDEO_VIEWS": ("video_view",),
    "MESSAGES": (
        "messaging_conversation_started_7d",
        "onsite_conversion.messaging_conversation_started_7d",
    ),
}

# Purchase action types for conversions/conversion_value, first match wins
PURCHASE_ACTIONS: tuple[str, ...] = _PURCHASE_RESULTS


@dataclass(frozen=True)
class ResultMatch:
    """The single action type chosen as a row's results."""

    value: float
    action_type: str | None


def _to_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _find_action(actions: list[dict[str, Any]], action_type: str) -> dict[str, Any] | None:
    for action in actions:
        if action.get("action_type") == action_type:
            return action
    return None


def pick_result(actions: list[dict[str, Any]], objective: str | None) -> ResultMatch:
    """
    Choose the results value for a row.

    Without a known objective: "lead" first, then a pixel purchase.
    """
    priority = OBJECTIVE_RESULT_MAP.get((objective or "").upper(), ())

    if priority:
        for action_type in priority:
            match = _find_action(actions, action_type)
            if match is not None:
                return ResultMatch(value=_to_number(match.get("value")), action_type=action_type)
        return ResultMatch(value=0.0, action_type=None)

    lead = _find_action(actions, "lead")
    if lead is not None:
        return ResultMatch(value=_to_number(lead.get("value")), action_type="lead")
    for action_type in ("purchase", "offsite_conversion.fb_pixel_purchase"):
        purchase = _find_action(actions, action_type)
        if purchase is not None:
            return ResultMatch(value=_to_number(purchase.get("value")), action_type=action_type)
    return ResultMatch(value=0.0, action_type=None)


def cost_per_result(
    result: ResultMatch,
    cost_per_action_type: list[dict[str, Any]],
    spend: float,
) -> float:
    """Provider cost for the matched action type, else spend / results (2dp)."""
    cost = 0.0
    if result.action_type:
        match = _find_action(cost_per_action_type, result.action_type)
        if match is not None:
            cost = _to_number(match.get("value"))
    if cost == 0 and result.value > 0:
        cost = spend / result.value
    return round(cost, 2)


def first_action_value(actions: list[dict[str, Any]], priority: tuple[str, ...]) -> float:
    """Value of the first action type in priority order present in actions."""
    for action_type in priority:
        match = _find_action(actions, action_type)
        if match is not None:
            return _to_number(match.get("value"))
    return 0.0


def sum_actions(actions: list[dict[str, Any]]) -> float:
    return sum(_to_number(a.get("value")) for a in actions)
