"""
Campaigns component models and error types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

# --- Provider Rows ---


@dataclass(frozen=True)
class CampaignRowData:
    """
    One normalized (campaign, ad group, day) row as returned by a provider.

    Every provider adapter produces this shape; dedup, filtering and
    sibling copies never look at raw provider payloads.
    """

    campaign_id: str
    campaign_name: str
    date: date
    campaign_status: str | None = None
    ad_group_id: str = "_"
    impressions: int = 0
    clicks: int = 0
    cost: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    currency: str = "EUR"
    extra_metrics: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive date range a sync replaces."""

    start: date
    end: date


# --- Summary ---


@dataclass(frozen=True)
class SyncErrorRecord:
    """One integration's failure within a sync run."""

    integration_id: UUID
    provider: str
    error: str


@dataclass
class SyncSummary:
    """Counters for one sync run."""

    processed: int = 0
    skipped: int = 0
    api_calls: int = 0
    groups: int = 0
    errors: list[SyncErrorRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


# --- Error Types ---


class CampaignSyncError(Exception):
    """Base campaign sync error."""

    pass


class ProviderError(CampaignSyncError):
    """A provider API call failed."""

    def __init__(
        self,
        provider: str,
        message: str,
        transient: bool = False,
        code: int | None = None,
    ) -> None:
        self.provider = provider
        self.message = message
        self.transient = transient
        self.code = code
        super().__init__(f"{provider}: {message}")


class CampaignStorageError(CampaignSyncError):
    """Writing campaign rows failed; later chunks were not attempted."""

    def __init__(self, integration_id: UUID, chunk_index: int, reason: str) -> None:
        self.integration_id = integration_id
        self.chunk_index = chunk_index
        self.reason = reason
        super().__init__(f"Storage error for {integration_id} at chunk {chunk_index}: {reason}")


class IntegrationNotFoundError(CampaignSyncError):
    """No integration with the requested id."""

    def __init__(self, integration_id: UUID) -> None:
        self.integration_id = integration_id
        super().__init__(f"Integration not found: {integration_id}")


class IntegrationDisabledError(CampaignSyncError):
    """The integration exists but is disabled."""

    def __init__(self, integration_id: UUID) -> None:
        self.integration_id = integration_id
        super().__init__(f"Integration is disabled: {integration_id}")


# --- Credential Sets ---


@dataclass(frozen=True)
class CampaignValidationError:
    """Credential set validation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class CredentialSetInput:
    """Create/update payload for a credential set."""

    provider: str
    name: str
    credentials: dict[str, Any] = field(default_factory=dict)
