"""
CredentialSetService - reusable provider credential bundles.

Key behaviors:
- Provider must be one of the supported providers; name is required
- Updates merge credentials: only non-empty string values overwrite
- Deleting a set unlinks every integration that referenced it
- Responses mask secrets (first 4 characters kept)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import UUID

from src.core.entities import CredentialSet
from src.core.ports.time import TimePort

from .models import CampaignValidationError, CredentialSetInput
from .ports import CredentialSetStorePort

logger = logging.getLogger(__name__)

VALID_PROVIDERS: frozenset[str] = frozenset({"google_ads", "meta_ads", "mailchimp"})
MAX_NAME_LENGTH = 255


def mask_credentials(credentials: dict[str, Any]) -> dict[str, Any]:
    """Mask secret values for API responses; lists pass through."""
    masked: dict[str, Any] = {}
    for key, value in credentials.items():
        if isinstance(value, list):
            masked[key] = value
        elif isinstance(value, str) and len(value) > 4:
            masked[key] = value[:4] + "*" * min(len(value) - 4, 20)
        else:
            masked[key] = "****" if value else ""
    return masked


def validate_credential_set(inp: CredentialSetInput) -> list[CampaignValidationError]:
    errors: list[CampaignValidationError] = []
    if inp.provider not in VALID_PROVIDERS:
        errors.append(
            CampaignValidationError(
                code="invalid_provider",
                message=f"Provider must be one of: {', '.join(sorted(VALID_PROVIDERS))}",
                field_name="provider",
            )
        )
    name = inp.name.strip() if isinstance(inp.name, str) else ""
    if not name:
        errors.append(
            CampaignValidationError(code="name_required", message="Name is required", field_name="name")
        )
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(
            CampaignValidationError(
                code="name_too_long",
                message=f"Name must be at most {MAX_NAME_LENGTH} characters",
                field_name="name",
            )
        )
    if not isinstance(inp.credentials, dict):
        errors.append(
            CampaignValidationError(
                code="invalid_credentials",
                message="Credentials must be an object",
                field_name="credentials",
            )
        )
    return errors


class CredentialSetService:
    """CRUD over credential sets."""

    def __init__(self, store: CredentialSetStorePort, time_port: TimePort) -> None:
        self._store = store
        self._time = time_port

    def list_sets(self, provider: str | None = None) -> list[CredentialSet]:
        if provider is not None and provider not in VALID_PROVIDERS:
            provider = None
        return self._store.list_credential_sets(provider)

    def get(self, credential_set_id: UUID) -> CredentialSet | None:
        return self._store.get_credential_set(credential_set_id)

    def create(
        self, inp: CredentialSetInput
    ) -> tuple[CredentialSet | None, list[CampaignValidationError]]:
        errors = validate_credential_set(inp)
        if errors:
            return None, errors

        now: datetime = self._time.now_utc()
        credential_set = CredentialSet(
            provider=inp.provider,
            name=inp.name.strip(),
            credentials={k: str(v) for k, v in inp.credentials.items() if v is not None},
            created_at=now,
            updated_at=now,
        )
        saved = self._store.save_credential_set(credential_set)
        logger.info("Credential set %s created for %s", saved.id, saved.provider)
        return saved, []

    def update(
        self,
        credential_set_id: UUID,
        inp: CredentialSetInput,
    ) -> tuple[CredentialSet | None, list[CampaignValidationError]]:
        existing = self._store.get_credential_set(credential_set_id)
        if existing is None:
            return None, [
                CampaignValidationError(code="not_found", message="Credential set not found")
            ]

        # Provider is fixed at creation
        errors = validate_credential_set(replace(inp, provider=existing.provider))
        if errors:
            return None, errors

        merged = dict(existing.credentials)
        merged.update({k: v for k, v in inp.credentials.items() if isinstance(v, str) and v})

        updated = existing.model_copy(
            update={
                "name": inp.name.strip(),
                "credentials": merged,
                "updated_at": self._time.now_utc(),
            }
        )
        return self._store.save_credential_set(updated), []

    def delete(self, credential_set_id: UUID) -> bool:
        deleted = self._store.delete_credential_set(credential_set_id)
        if deleted:
            logger.info("Credential set %s deleted", credential_set_id)
        return deleted
