"""
Tests for provider adapters against mocked HTTP transports.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any

import httpx
import pytest

from src.components.campaigns import (
    GoogleAdsAdapter,
    MailchimpAdapter,
    MetaAdsAdapter,
    ProviderConfig,
    ProviderError,
    ResultMatch,
    cost_per_result,
    date_chunks,
    pick_result,
)

START = date(2025, 5, 1)
END = date(2025, 5, 3)


def client_for(handler: Any) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# --- Results ---


class TestPickResult:
    def test_objective_priority_first_match_only(self) -> None:
        actions = [
            {"action_type": "offsite_conversion.fb_pixel_lead", "value": "3"},
            {"action_type": "lead", "value": "3"},
        ]
        result = pick_result(actions, "OUTCOME_LEADS")
        assert result == ResultMatch(value=3.0, action_type="lead")

    def test_objective_without_matching_action(self) -> None:
        assert pick_result([{"action_type": "link_click", "value": "9"}], "OUTCOME_SALES").value == 0

    def test_unknown_objective_falls_back_to_lead_then_purchase(self) -> None:
        assert pick_result([{"action_type": "purchase", "value": "2"}], None).action_type == "purchase"
        both = [{"action_type": "purchase", "value": "2"}, {"action_type": "lead", "value": "5"}]
        assert pick_result(both, "SOMETHING_NEW").value == 5

    def test_cost_per_result_prefers_provider_value(self) -> None:
        result = ResultMatch(value=3, action_type="lead")
        assert cost_per_result(result, [{"action_type": "lead", "value": "4.5"}], 30.0) == 4.5
        assert cost_per_result(result, [], 30.0) == 10.0
        assert cost_per_result(ResultMatch(value=0, action_type=None), [], 30.0) == 0


class TestDateChunks:
    def test_inclusive_windows(self) -> None:
        chunks = list(date_chunks(date(2025, 5, 1), date(2025, 5, 10), 7))
        assert chunks == [(date(2025, 5, 1), date(2025, 5, 7)), (date(2025, 5, 8), date(2025, 5, 10))]


# --- Meta ---


def meta_handler(insights: list[dict[str, Any]], fail_first_insights_with: int | None = None) -> Any:
    state = {"insight_calls": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/me"):
            return httpx.Response(200, json={"id": "1", "name": "Tester"})
        if path.endswith("/me/permissions"):
            return httpx.Response(200, json={"data": [{"permission": "ads_read", "status": "granted"}]})
        if path.endswith("/campaigns"):
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "c1",
                            "objective": "OUTCOME_LEADS",
                            "effective_status": "ACTIVE",
                            "daily_budget": "2500",
                            "stop_time": "2025-12-31",
                        }
                    ]
                },
            )
        if path.endswith("/insights"):
            state["insight_calls"] += 1
            if fail_first_insights_with is not None and state["insight_calls"] == 1:
                return httpx.Response(
                    400, json={"error": {"code": fail_first_insights_with, "message": "try later"}}
                )
            return httpx.Response(200, json={"data": insights})
        if path.endswith("/act_123"):
            return httpx.Response(200, json={"name": "Acct", "account_status": 1, "currency": "USD"})
        return httpx.Response(404, json={"error": {"code": 803, "message": "unknown"}})

    handler.state = state  # type: ignore[attr-defined]
    return handler


META_INSIGHT = {
    "campaign_id": "c1",
    "campaign_name": "Lead Gen",
    "date_start": "2025-05-01",
    "impressions": "1000",
    "clicks": "40",
    "spend": "30.00",
    "reach": "800",
    "inline_link_clicks": "25",
    "outbound_clicks": [{"action_type": "outbound_click", "value": "7"}],
    "actions": [
        {"action_type": "lead", "value": "3"},
        {"action_type": "offsite_conversion.fb_pixel_lead", "value": "3"},
        {"action_type": "purchase", "value": "1"},
    ],
    "action_values": [{"action_type": "purchase", "value": "99.5"}],
    "cost_per_action_type": [{"action_type": "lead", "value": "10.0"}],
}


class TestMetaAdsAdapter:
    def test_fetch_maps_rows(self) -> None:
        adapter = MetaAdsAdapter(client=client_for(meta_handler([META_INSIGHT])))
        rows = adapter.fetch({"access_token": "tok", "ad_account_id": "123"}, START, END)

        assert len(rows) == 1
        row = rows[0]
        assert row.campaign_id == "c1"
        assert row.date == date(2025, 5, 1)
        assert row.impressions == 1000
        assert row.cost == 30.0
        assert row.currency == "USD"
        assert row.conversions == 1
        assert row.conversion_value == 99.5
        assert row.campaign_status == "ACTIVE"
        assert row.extra_metrics["results"] == 3
        assert row.extra_metrics["result_action_type"] == "lead"
        assert row.extra_metrics["cost_per_result"] == 10.0
        assert row.extra_metrics["daily_budget"] == 25.0
        assert row.extra_metrics["link_clicks"] == 25
        assert row.extra_metrics["outbound_clicks"] == 7
        assert row.extra_metrics["objective"] == "OUTCOME_LEADS"

    def test_missing_credentials(self) -> None:
        adapter = MetaAdsAdapter(client=client_for(meta_handler([])))
        with pytest.raises(ProviderError, match="missing credentials"):
            adapter.fetch({"access_token": "tok"}, START, END)

    def test_transient_error_retried_once(self) -> None:
        handler = meta_handler([META_INSIGHT], fail_first_insights_with=17)
        sleeps: list[float] = []
        adapter = MetaAdsAdapter(
            ProviderConfig(retry_backoff_seconds=3.0),
            client=client_for(handler),
            sleep=sleeps.append,
        )

        rows = adapter.fetch({"access_token": "tok", "ad_account_id": "act_123"}, START, END)

        assert len(rows) == 1
        assert sleeps == [3.0]
        assert handler.state["insight_calls"] == 2

    def test_permanent_error_not_retried(self) -> None:
        handler = meta_handler([META_INSIGHT], fail_first_insights_with=190)
        sleeps: list[float] = []
        adapter = MetaAdsAdapter(client=client_for(handler), sleep=sleeps.append)

        with pytest.raises(ProviderError) as excinfo:
            adapter.fetch({"access_token": "tok", "ad_account_id": "123"}, START, END)

        assert excinfo.value.code == 190
        assert excinfo.value.transient is False
        assert sleeps == []

    def test_missing_ads_read_permission(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/me/permissions"):
                return httpx.Response(200, json={"data": [{"permission": "email", "status": "granted"}]})
            return httpx.Response(200, json={"id": "1"})

        adapter = MetaAdsAdapter(client=client_for(handler))
        with pytest.raises(ProviderError, match="ads_read"):
            adapter.fetch({"access_token": "tok", "ad_account_id": "123"}, START, END)


# --- Google Ads ---


def google_handler(manager: bool = False) -> Any:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "access"})
        body = json.loads(request.content)
        if "customer.manager" in body["query"]:
            return httpx.Response(200, json={"results": [{"customer": {"id": "1", "manager": manager}}]})
        assert request.headers["developer-token"] == "dev"
        assert request.headers["login-customer-id"] == "9998887777"
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "campaign": {"id": "55", "name": "Search", "status": "ENABLED"},
                        "segments": {"date": "2025-05-02"},
                        "metrics": {
                            "impressions": "200",
                            "clicks": "10",
                            "costMicros": "12500000",
                            "conversions": 2,
                            "conversionsValue": 80,
                            "averageCpc": "1250000",
                            "searchImpressionShare": 0.42,
                        },
                    }
                ]
            },
        )

    return handler


GOOGLE_CONFIG = ProviderConfig(google_client_id="id", google_client_secret="secret", google_developer_token="dev")
GOOGLE_CREDENTIALS = {
    "refresh_token": "refresh",
    "customer_id": "123-456-7890",
    "login_customer_id": "999-888-7777",
}


class TestGoogleAdsAdapter:
    def test_fetch_maps_micros(self) -> None:
        adapter = GoogleAdsAdapter(GOOGLE_CONFIG, client=client_for(google_handler()))
        rows = adapter.fetch(GOOGLE_CREDENTIALS, START, END)

        assert len(rows) == 1
        row = rows[0]
        assert row.campaign_id == "55"
        assert row.campaign_status == "enabled"
        assert row.cost == 12.5
        assert row.conversions == 2
        assert row.extra_metrics["avg_cpc"] == 1.25
        assert row.extra_metrics["search_impression_share"] == 0.42

    def test_manager_account_rejected(self) -> None:
        adapter = GoogleAdsAdapter(GOOGLE_CONFIG, client=client_for(google_handler(manager=True)))
        with pytest.raises(ProviderError, match="manager"):
            adapter.fetch(GOOGLE_CREDENTIALS, START, END)

    def test_invalid_customer_id(self) -> None:
        adapter = GoogleAdsAdapter(GOOGLE_CONFIG, client=client_for(google_handler()))
        with pytest.raises(ProviderError, match="invalid customer id"):
            adapter.fetch({"refresh_token": "r", "customer_id": "abc"}, START, END)

    def test_missing_developer_token(self) -> None:
        config = ProviderConfig(google_client_id="id", google_client_secret="secret")
        adapter = GoogleAdsAdapter(config, client=client_for(google_handler()))
        with pytest.raises(ProviderError, match="developer token"):
            adapter.fetch(GOOGLE_CREDENTIALS, START, END)

    def test_oauth_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token revoked"})

        adapter = GoogleAdsAdapter(GOOGLE_CONFIG, client=client_for(handler))
        with pytest.raises(ProviderError, match="Token revoked"):
            adapter.fetch(GOOGLE_CREDENTIALS, START, END)


# --- Mailchimp ---


class TestMailchimpAdapter:
    def test_fetch_reports(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "us5.api.mailchimp.com"
            if request.url.path.endswith("/campaigns"):
                assert request.url.params["status"] == "sent"
                return httpx.Response(
                    200,
                    json={
                        "campaigns": [
                            {
                                "id": "m1",
                                "status": "sent",
                                "send_time": "2025-05-02T09:00:00Z",
                                "settings": {"subject_line": "May News", "title": "may"},
                            }
                        ]
                    },
                )
            return httpx.Response(
                200,
                json={
                    "emails_sent": 1000,
                    "list_name": "Customers",
                    "opens": {"opens_total": 400, "unique_opens": 300, "open_rate": 0.3},
                    "clicks": {"clicks_total": 50, "unique_clicks": 40, "click_rate": 0.04},
                    "bounces": {"hard_bounces": 2, "soft_bounces": 3},
                    "unsubscribed": 4,
                },
            )

        adapter = MailchimpAdapter(client=client_for(handler))
        rows = adapter.fetch({"api_key": "key-us5", "server_prefix": "us5"}, START, END)

        assert len(rows) == 1
        row = rows[0]
        assert row.campaign_name == "May News"
        assert row.date == date(2025, 5, 2)
        assert row.impressions == 400
        assert row.clicks == 50
        assert row.cost == 0
        assert row.extra_metrics["unique_opens"] == 300
        assert row.extra_metrics["bounces_hard"] == 2
        assert row.extra_metrics["list_name"] == "Customers"

    def test_api_error(self) -> None:
        adapter = MailchimpAdapter(client=client_for(lambda request: httpx.Response(401, text="bad key")))
        with pytest.raises(ProviderError, match="401"):
            adapter.fetch({"api_key": "k", "server_prefix": "us1"}, START, END)
