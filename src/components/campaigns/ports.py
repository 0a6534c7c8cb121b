"""
Campaigns component port definitions.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from src.core.entities import CampaignDataRow, CampaignIntegration, CredentialSet

from .models import CampaignRowData


class CampaignStorePort(Protocol):
    """Integration state and campaign_data rows."""

    def list_sync_candidates(self) -> list[CampaignIntegration]:
        """Enabled, non-manual integrations in creation order."""
        ...

    def get_integration(self, integration_id: UUID) -> CampaignIntegration | None:
        """Get one integration, or None."""
        ...

    def list_credential_group(
        self,
        credential_set_id: UUID,
        provider: str,
    ) -> list[CampaignIntegration]:
        """Enabled integrations sharing a credential set for one provider."""
        ...

    def get_credential_set(self, credential_set_id: UUID) -> CredentialSet | None:
        """Get a credential set, or None."""
        ...

    def mark_sync_status(
        self,
        integration_ids: list[UUID],
        status: str,
        at: datetime,
        error: str | None = None,
    ) -> None:
        """
        Record sync status for integrations.

        "success" also stamps last_synced_at and clears last_sync_error.
        """
        ...

    def delete_campaign_rows(self, integration_id: UUID, start: date, end: date) -> int:
        """Delete an integration's rows in [start, end]. Returns rows removed."""
        ...

    def upsert_campaign_rows(self, rows: list[CampaignDataRow]) -> int:
        """Upsert on (integration_id, campaign_id, date, ad_group_id)."""
        ...

    def list_campaign_rows(
        self,
        integration_id: UUID,
        start: date,
        end: date,
    ) -> list[CampaignDataRow]:
        """An integration's stored rows in [start, end]."""
        ...


class CredentialSetStorePort(Protocol):
    """CRUD over reusable credential bundles."""

    def list_credential_sets(self, provider: str | None = None) -> list[CredentialSet]:
        ...

    def get_credential_set(self, credential_set_id: UUID) -> CredentialSet | None:
        ...

    def save_credential_set(self, credential_set: CredentialSet) -> CredentialSet:
        ...

    def delete_credential_set(self, credential_set_id: UUID) -> bool:
        ...


class ProviderAdapterPort(Protocol):
    """Fetches normalized campaign rows from one provider."""

    provider: str

    def fetch(
        self,
        credentials: dict[str, str],
        start: date,
        end: date,
    ) -> list[CampaignRowData]:
        """Fetch rows for [start, end]. Raises ProviderError on failure."""
        ...
