"""
Tests for credential set CRUD and masking.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from src.adapters.memory import InMemoryStore
from src.components.campaigns import (
    CredentialSetInput,
    CredentialSetService,
    mask_credentials,
    validate_credential_set,
)
from src.core.entities import CampaignIntegration


class MockTimePort:
    """Mock time provider."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2025, 6, 2, 12, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def set_now(self, now: datetime) -> None:
        self._now = now


@pytest.fixture
def clock() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def service(store: InMemoryStore, clock: MockTimePort) -> CredentialSetService:
    return CredentialSetService(store=store, time_port=clock)


class TestMasking:
    def test_long_values_keep_prefix(self) -> None:
        masked = mask_credentials({"access_token": "EAAB1234567890"})
        assert masked["access_token"] == "EAAB" + "*" * 10

    def test_mask_is_capped(self) -> None:
        masked = mask_credentials({"token": "x" * 100})
        assert masked["token"] == "xxxx" + "*" * 20

    def test_short_and_empty_values(self) -> None:
        assert mask_credentials({"a": "abc", "b": ""}) == {"a": "****", "b": ""}

    def test_lists_pass_through(self) -> None:
        assert mask_credentials({"scopes": ["ads_read"]}) == {"scopes": ["ads_read"]}


class TestValidation:
    def test_invalid_provider(self) -> None:
        errors = validate_credential_set(CredentialSetInput(provider="tiktok", name="x"))
        assert [e.code for e in errors] == ["invalid_provider"]

    def test_name_required(self) -> None:
        errors = validate_credential_set(CredentialSetInput(provider="meta_ads", name="   "))
        assert [e.code for e in errors] == ["name_required"]
        assert errors[0].field_name == "name"


class TestCredentialSetService:
    def test_create(self, service: CredentialSetService, clock: MockTimePort) -> None:
        created, errors = service.create(
            CredentialSetInput(provider="meta_ads", name=" Agency ", credentials={"access_token": "tok"})
        )
        assert errors == []
        assert created is not None
        assert created.name == "Agency"
        assert created.created_at == clock.now_utc()

    def test_create_invalid(self, service: CredentialSetService, store: InMemoryStore) -> None:
        created, errors = service.create(CredentialSetInput(provider="bogus", name=""))
        assert created is None
        assert len(errors) == 2
        assert store.credential_sets == {}

    def test_update_merges_non_empty_values(self, service: CredentialSetService) -> None:
        created, _ = service.create(
            CredentialSetInput(
                provider="mailchimp",
                name="MC",
                credentials={"api_key": "secret-key", "server_prefix": "us5"},
            )
        )
        assert created is not None

        updated, errors = service.update(
            created.id,
            CredentialSetInput(provider="google_ads", name="Renamed", credentials={"api_key": "", "server_prefix": "us9"}),
        )

        assert errors == []
        assert updated is not None
        assert updated.provider == "mailchimp"
        assert updated.name == "Renamed"
        assert updated.credentials == {"api_key": "secret-key", "server_prefix": "us9"}

    def test_update_missing(self, service: CredentialSetService) -> None:
        updated, errors = service.update(uuid4(), CredentialSetInput(provider="meta_ads", name="x"))
        assert updated is None
        assert errors[0].code == "not_found"

    def test_list_filters_by_provider(self, service: CredentialSetService) -> None:
        service.create(CredentialSetInput(provider="meta_ads", name="A"))
        service.create(CredentialSetInput(provider="mailchimp", name="B"))
        assert [s.name for s in service.list_sets("meta_ads")] == ["A"]
        assert len(service.list_sets()) == 2
        assert len(service.list_sets("unknown")) == 2

    def test_delete_unlinks_integrations(self, service: CredentialSetService, store: InMemoryStore) -> None:
        created, _ = service.create(CredentialSetInput(provider="meta_ads", name="A"))
        assert created is not None
        integration = store.save_integration(
            CampaignIntegration(site_id=uuid4(), provider="meta_ads", credential_set_id=created.id)
        )

        assert service.delete(created.id) is True
        assert service.get(created.id) is None
        assert store.get_integration(integration.id).credential_set_id is None  # type: ignore[union-attr]
        assert service.delete(created.id) is False
