"""
Provider adapters: Google Ads, Meta Ads, Mailchimp.

Each adapter turns one provider's payload shape into CampaignRowData.
Campaign filters are not applied here; the sync engine filters.

Error handling:
- Transport failures and non-2xx responses raise ProviderError
- Meta error codes in the transient set are retried once after a fixed
  backoff; anything else fails the fetch immediately
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

import httpx

from ._results import (
    PURCHASE_ACTIONS,
    cost_per_result,
    first_action_value,
    pick_result,
    sum_actions,
)
from .models import CampaignRowData, ProviderError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ADS_BASE_URL = "https://googleads.googleapis.com/v23"
META_GRAPH_BASE_URL = "https://graph.facebook.com/v25.0"
MAILCHIMP_URL_TEMPLATE = "https://{server_prefix}.api.mailchimp.com/3.0"

_CUSTOMER_ID_RE = re.compile(r"^\d{3,}$")


# --- Configuration ---


@dataclass(frozen=True)
class ProviderConfig:
    """Shared provider settings."""

    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_developer_token: str | None = None
    transient_error_codes: frozenset[int] = frozenset({1, 2, 17})
    retry_backoff_seconds: float = 3.0
    insight_chunk_days: int = 7
    timeout_seconds: float = 30.0
    default_currency: str = "EUR"


DEFAULT_CONFIG = ProviderConfig()


# --- Helpers ---


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _int(value: Any) -> int:
    return int(_number(value))


def date_chunks(start: date, end: date, days: int) -> Iterator[tuple[date, date]]:
    """Split [start, end] into consecutive inclusive windows of `days`."""
    current = start
    while current <= end:
        chunk_end = min(current + timedelta(days=days - 1), end)
        yield current, chunk_end
        current = chunk_end + timedelta(days=1)


class _HttpAdapter:
    """Owns (or borrows) an httpx client and maps transport errors."""

    provider = ""

    def __init__(self, config: ProviderConfig | None = None, client: httpx.Client | None = None):
        self.config = config or DEFAULT_CONFIG
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout_seconds)
        return self._client

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(self.provider, f"request failed: {e}", transient=True) from e

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                self.provider,
                f"unexpected response: {response.text[:300]}",
            ) from e
        return data if isinstance(data, dict) else {}

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


# --- Google Ads ---


class GoogleAdsAdapter(_HttpAdapter):
    """
    Google Ads via the REST search endpoint.

    Credentials: refresh_token, customer_id, optional login_customer_id.
    OAuth client id/secret and developer token come from server settings,
    falling back to client_id/client_secret in the credentials.
    """

    provider = "google_ads"

    QUERY = (
        "SELECT campaign.id, campaign.name, campaign.status, segments.date, "
        "metrics.impressions, metrics.clicks, metrics.cost_micros, "
        "metrics.conversions, metrics.conversions_value, metrics.ctr, "
        "metrics.average_cpc, metrics.search_impression_share "
        "FROM campaign "
        "WHERE segments.date BETWEEN '{start}' AND '{end}' "
        "AND campaign.status != 'REMOVED' "
        "ORDER BY segments.date DESC"
    )
    MANAGER_QUERY = "SELECT customer.id, customer.descriptive_name, customer.manager FROM customer LIMIT 1"

    def _access_token(self, client_id: str, client_secret: str, refresh_token: str) -> str:
        response = self._send(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code >= 400:
            detail = response.text
            try:
                body = response.json()
                detail = body.get("error_description") or body.get("error") or detail
            except ValueError:
                pass
            raise ProviderError(self.provider, f"OAuth error: {detail}")

        token = self._json(response).get("access_token")
        if not token:
            raise ProviderError(self.provider, "OAuth returned no access_token; check refresh_token")
        return str(token)

    def _search(self, customer_id: str, headers: dict[str, str], query: str) -> list[dict[str, Any]]:
        url = f"{GOOGLE_ADS_BASE_URL}/customers/{customer_id}/googleAds:search"
        results: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            body: dict[str, Any] = {"query": query}
            if page_token:
                body["pageToken"] = page_token
            response = self._send("POST", url, headers=headers, json=body)
            if response.status_code >= 400:
                raise ProviderError(
                    self.provider,
                    f"API error: {self._error_detail(response)}",
                    transient=response.status_code >= 500,
                )
            data = self._json(response)
            results.extend(data.get("results", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return results

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return f"HTTP {response.status_code}"
        detail = f"{error.get('code')} {error.get('status')}: {error.get('message')}"
        try:
            detail += f" ({error['details'][0]['errors'][0]['message']})"
        except (KeyError, IndexError, TypeError):
            pass
        return detail

    def _ensure_not_manager(self, customer_id: str, headers: dict[str, str], display_id: str) -> None:
        url = f"{GOOGLE_ADS_BASE_URL}/customers/{customer_id}/googleAds:search"
        response = self._send("POST", url, headers=headers, json={"query": self.MANAGER_QUERY})
        if response.status_code >= 400:
            # The metrics query reports real API errors
            return
        results = self._json(response).get("results") or [{}]
        if (results[0].get("customer") or {}).get("manager") is True:
            raise ProviderError(
                self.provider,
                f"customer id {display_id} is a manager (MCC) account; "
                "use a client account id and put the MCC id in login_customer_id",
            )

    def fetch(self, credentials: dict[str, str], start: date, end: date) -> list[CampaignRowData]:
        client_id = self.config.google_client_id or credentials.get("client_id")
        client_secret = self.config.google_client_secret or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise ProviderError(self.provider, "OAuth client id/secret are not configured")

        refresh_token = credentials.get("refresh_token")
        raw_customer_id = credentials.get("customer_id")
        if not refresh_token or not raw_customer_id:
            raise ProviderError(self.provider, "missing credentials: refresh_token and customer_id")

        customer_id = raw_customer_id.replace("-", "")
        if not _CUSTOMER_ID_RE.match(customer_id):
            raise ProviderError(self.provider, f"invalid customer id {raw_customer_id!r}")

        developer_token = self.config.google_developer_token
        if not developer_token:
            raise ProviderError(self.provider, "developer token is not configured")

        access_token = self._access_token(client_id, client_secret, refresh_token)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": developer_token,
        }
        login_customer_id = (credentials.get("login_customer_id") or "").replace("-", "")
        if login_customer_id:
            headers["login-customer-id"] = login_customer_id

        self._ensure_not_manager(customer_id, headers, raw_customer_id)

        query = self.QUERY.format(start=start.isoformat(), end=end.isoformat())
        results = self._search(customer_id, headers, query)
        return [self.to_row(r) for r in results]

    def to_row(self, result: dict[str, Any]) -> CampaignRowData:
        campaign = result.get("campaign") or {}
        metrics = result.get("metrics") or {}
        segments = result.get("segments") or {}
        avg_cpc = metrics.get("averageCpc")
        return CampaignRowData(
            campaign_id=str(campaign.get("id")),
            campaign_name=str(campaign.get("name") or "Unknown"),
            campaign_status=str(campaign.get("status") or "").lower() or None,
            date=date.fromisoformat(segments["date"]),
            impressions=_int(metrics.get("impressions")),
            clicks=_int(metrics.get("clicks")),
            cost=_number(metrics.get("costMicros")) / 1_000_000,
            conversions=_number(metrics.get("conversions")),
            conversion_value=_number(metrics.get("conversionsValue")),
            currency=self.config.default_currency,
            extra_metrics={
                "ctr": metrics.get("ctr"),
                "avg_cpc": _number(avg_cpc) / 1_000_000 if avg_cpc else None,
                "search_impression_share": metrics.get("searchImpressionShare"),
            },
        )


# --- Meta Ads ---


class MetaAdsAdapter(_HttpAdapter):
    """
    Meta Marketing API insights at campaign level, one row per day.

    Credentials: access_token, ad_account_id (with or without "act_").
    """

    provider = "meta_ads"

    INSIGHT_FIELDS = ",".join(
        [
            "campaign_id",
            "campaign_name",
            "impressions",
            "clicks",
            "spend",
            "actions",
            "action_values",
            "cost_per_action_type",
            "reach",
            "frequency",
            "cpm",
            "cpc",
            "ctr",
            "inline_link_clicks",
            "cost_per_inline_link_click",
            "inline_link_click_ctr",
            "unique_clicks",
            "unique_ctr",
            "outbound_clicks",
        ]
    )
    CAMPAIGN_FIELDS = (
        "id,name,status,effective_status,daily_budget,lifetime_budget,"
        "budget_remaining,start_time,stop_time,objective"
    )

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(config, client)
        self._sleep = sleep

    @staticmethod
    def _error(response: httpx.Response) -> tuple[int | None, str]:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return None, response.text[:400]
        code = error.get("code")
        message = f"[{code}] {error.get('message')}"
        if error.get("error_user_msg"):
            message += f" ({error['error_user_msg']})"
        return code, message

    def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET with a single retry for transient Meta error codes."""
        response = self._send("GET", url, params=params)
        if response.status_code < 400:
            return self._json(response)

        code, message = self._error(response)
        if code not in self.config.transient_error_codes:
            raise ProviderError(self.provider, f"API error ({response.status_code}): {message}", code=code)

        logger.warning("Meta transient error %s; retrying in %.1fs", code, self.config.retry_backoff_seconds)
        self._sleep(self.config.retry_backoff_seconds)
        retry = self._send("GET", url, params=params)
        if retry.status_code < 400:
            return self._json(retry)

        code, message = self._error(retry)
        raise ProviderError(
            self.provider,
            f"API error after retry ({retry.status_code}): {message}",
            transient=True,
            code=code,
        )

    def _paged(self, url: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params: dict[str, Any] | None = params
        while next_url:
            data = self._get(next_url, next_params)
            rows.extend(data.get("data", []))
            next_url = (data.get("paging") or {}).get("next")
            # paging.next already carries every query parameter
            next_params = None
        return rows

    def _verify_access(self, token: str, account_id: str) -> str:
        """Check token, ads_read permission and account access; returns currency."""
        me = self._send("GET", f"{META_GRAPH_BASE_URL}/me", params={"fields": "id,name", "access_token": token})
        if me.status_code >= 400:
            raise ProviderError(self.provider, f"access token invalid or expired: {self._error(me)[1]}")

        perms = self._send("GET", f"{META_GRAPH_BASE_URL}/me/permissions", params={"access_token": token})
        if perms.status_code < 400:
            granted = [
                p.get("permission")
                for p in self._json(perms).get("data", [])
                if p.get("status") == "granted"
            ]
            if "ads_read" not in granted:
                raise ProviderError(
                    self.provider,
                    f"token lacks the ads_read permission (granted: {', '.join(granted) or 'none'})",
                )

        account = self._send(
            "GET",
            f"{META_GRAPH_BASE_URL}/{account_id}",
            params={"fields": "name,account_status,currency", "access_token": token},
        )
        if account.status_code >= 400:
            raise ProviderError(
                self.provider,
                f"cannot reach ad account {account_id}: {self._error(account)[1]}",
            )
        return str(self._json(account).get("currency") or self.config.default_currency)

    def _campaign_metadata(self, token: str, account_id: str) -> dict[str, dict[str, Any]]:
        response = self._send(
            "GET",
            f"{META_GRAPH_BASE_URL}/{account_id}/campaigns",
            params={"fields": self.CAMPAIGN_FIELDS, "limit": 500, "access_token": token},
        )
        if response.status_code >= 400:
            logger.warning("Meta campaign metadata unavailable for %s", account_id)
            return {}
        return {str(c.get("id")): c for c in self._json(response).get("data", [])}

    def fetch(self, credentials: dict[str, str], start: date, end: date) -> list[CampaignRowData]:
        token = credentials.get("access_token")
        ad_account_id = credentials.get("ad_account_id")
        if not token or not ad_account_id:
            raise ProviderError(self.provider, "missing credentials: access_token and ad_account_id")

        account_id = ad_account_id if ad_account_id.startswith("act_") else f"act_{ad_account_id}"
        currency = self._verify_access(token, account_id)
        metadata = self._campaign_metadata(token, account_id)

        insights: list[dict[str, Any]] = []
        for since, until in date_chunks(start, end, self.config.insight_chunk_days):
            params = {
                "access_token": token,
                "fields": self.INSIGHT_FIELDS,
                "time_range": json.dumps({"since": since.isoformat(), "until": until.isoformat()}),
                "time_increment": 1,
                "level": "campaign",
                "limit": 500,
            }
            insights.extend(self._paged(f"{META_GRAPH_BASE_URL}/{account_id}/insights", params))

        return [
            self.to_row(row, metadata.get(str(row.get("campaign_id")), {}), currency)
            for row in insights
        ]

    def to_row(self, row: dict[str, Any], meta: dict[str, Any], currency: str) -> CampaignRowData:
        actions = row.get("actions") or []
        action_values = row.get("action_values") or []
        spend = _number(row.get("spend"))

        objective = meta.get("objective")
        result = pick_result(actions, objective)

        # Budgets are reported in minor units
        daily_budget = _number(meta.get("daily_budget")) / 100
        lifetime_budget = _number(meta.get("lifetime_budget")) / 100
        delivery = meta.get("effective_status") or "unknown"

        return CampaignRowData(
            campaign_id=str(row.get("campaign_id")),
            campaign_name=str(row.get("campaign_name") or "Unknown"),
            campaign_status=delivery,
            date=date.fromisoformat(str(row.get("date_start"))),
            impressions=_int(row.get("impressions")),
            clicks=_int(row.get("clicks")),
            cost=spend,
            conversions=first_action_value(actions, PURCHASE_ACTIONS),
            conversion_value=first_action_value(action_values, PURCHASE_ACTIONS),
            currency=currency,
            extra_metrics={
                "delivery": delivery,
                "results": result.value,
                "result_action_type": result.action_type,
                "cost_per_result": cost_per_result(result, row.get("cost_per_action_type") or [], spend),
                "budget": lifetime_budget or daily_budget,
                "daily_budget": daily_budget,
                "lifetime_budget": lifetime_budget,
                "reach": _int(row.get("reach")),
                "frequency": _number(row.get("frequency")),
                "cpm": _number(row.get("cpm")),
                "cpc": _number(row.get("cpc")),
                "ctr": _number(row.get("ctr")),
                "link_clicks": _int(row.get("inline_link_clicks")),
                "cost_per_link_click": _number(row.get("cost_per_inline_link_click")),
                "link_click_ctr": _number(row.get("inline_link_click_ctr")),
                "unique_clicks": _int(row.get("unique_clicks")),
                "unique_ctr": _number(row.get("unique_ctr")),
                "outbound_clicks": sum_actions(row.get("outbound_clicks") or []),
                "end_time": meta.get("stop_time"),
                "objective": objective,
            },
        )


# --- Mailchimp ---


class MailchimpAdapter(_HttpAdapter):
    """
    Mailchimp sent campaigns and their reports.

    Credentials: api_key, server_prefix, optional list_id. Email has no
    cost; opens are reported as impressions.
    """

    provider = "mailchimp"

    def fetch(self, credentials: dict[str, str], start: date, end: date) -> list[CampaignRowData]:
        api_key = credentials.get("api_key")
        server_prefix = credentials.get("server_prefix")
        if not api_key or not server_prefix:
            raise ProviderError(self.provider, "missing credentials: api_key and server_prefix")

        base_url = MAILCHIMP_URL_TEMPLATE.format(server_prefix=server_prefix)
        auth = ("anystring", api_key)
        params: dict[str, Any] = {
            "count": 300,
            "sort_field": "send_time",
            "sort_dir": "DESC",
            "since_send_time": f"{start.isoformat()}T00:00:00+00:00",
            "before_send_time": f"{end.isoformat()}T23:59:59+00:00",
            "status": "sent",
        }
        if credentials.get("list_id"):
            params["list_id"] = credentials["list_id"]

        response = self._send("GET", f"{base_url}/campaigns", params=params, auth=auth)
        if response.status_code >= 400:
            raise ProviderError(self.provider, f"API error ({response.status_code}): {response.text[:300]}")

        rows: list[CampaignRowData] = []
        for campaign in self._json(response).get("campaigns", []):
            report_response = self._send("GET", f"{base_url}/reports/{campaign.get('id')}", auth=auth)
            if report_response.status_code >= 400:
                logger.warning("Mailchimp report unavailable for campaign %s", campaign.get("id"))
                continue
            rows.append(self.to_row(campaign, self._json(report_response)))
        return rows

    def to_row(self, campaign: dict[str, Any], report: dict[str, Any]) -> CampaignRowData:
        settings = campaign.get("settings") or {}
        opens = report.get("opens") or {}
        clicks = report.get("clicks") or {}
        bounces = report.get("bounces") or {}

        send_time = campaign.get("send_time")
        sent_on = (
            datetime.fromisoformat(send_time.replace("Z", "+00:00")).date()
            if send_time
            else date.today()
        )

        return CampaignRowData(
            campaign_id=str(campaign.get("id")),
            campaign_name=settings.get("subject_line") or settings.get("title") or "Unknown",
            campaign_status=campaign.get("status"),
            date=sent_on,
            impressions=_int(opens.get("opens_total")),
            clicks=_int(clicks.get("clicks_total")),
            currency=self.config.default_currency,
            extra_metrics={
                "sends": _int(report.get("emails_sent")),
                "opens": _int(opens.get("opens_total")),
                "unique_opens": _int(opens.get("unique_opens")),
                "open_rate": _number(opens.get("open_rate")),
                "clicks_total": _int(clicks.get("clicks_total")),
                "unique_clicks": _int(clicks.get("unique_clicks")),
                "click_rate": _number(clicks.get("click_rate")),
                "unsubscribes": _int(report.get("unsubscribed")),
                "bounces_hard": _int(bounces.get("hard_bounces")),
                "bounces_soft": _int(bounces.get("soft_bounces")),
                "list_name": report.get("list_name"),
                "subject_line": settings.get("subject_line"),
            },
        )


def build_adapters(
    config: ProviderConfig | None = None,
    client: httpx.Client | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, _HttpAdapter]:
    """One adapter per supported provider, sharing an optional client."""
    return {
        "google_ads": GoogleAdsAdapter(config, client),
        "meta_ads": MetaAdsAdapter(config, client, sleep=sleep),
        "mailchimp": MailchimpAdapter(config, client),
    }
