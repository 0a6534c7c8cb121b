"""
Credential set API routes.

Secrets never leave the server unmasked.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.api.deps import get_credential_set_service
from src.components.campaigns import (
    CampaignValidationError,
    CredentialSetInput,
    CredentialSetService,
    mask_credentials,
)
from src.core.entities import CredentialSet

router = APIRouter()


# --- Request/Response Models ---


class CredentialSetRequest(BaseModel):
    provider: str = ""
    name: str = ""
    credentials: dict[str, Any] = Field(default_factory=dict)


class CredentialSetResponse(BaseModel):
    id: UUID
    provider: str
    name: str
    credentials: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class CredentialSetListResponse(BaseModel):
    credential_sets: list[CredentialSetResponse]


def to_response(credential_set: CredentialSet) -> CredentialSetResponse:
    return CredentialSetResponse(
        id=credential_set.id,
        provider=credential_set.provider,
        name=credential_set.name,
        credentials=mask_credentials(credential_set.credentials),
        created_at=credential_set.created_at,
        updated_at=credential_set.updated_at,
    )


def validation_failed(errors: list[CampaignValidationError]) -> HTTPException:
    if any(e.code == "not_found" for e in errors):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential set not found")
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=[{"code": e.code, "message": e.message, "field": e.field_name} for e in errors],
    )


# --- Routes ---


@router.get("", response_model=CredentialSetListResponse)
def list_credential_sets(
    provider: str | None = Query(None),
    service: CredentialSetService = Depends(get_credential_set_service),
) -> Any:
    return CredentialSetListResponse(
        credential_sets=[to_response(s) for s in service.list_sets(provider)]
    )


@router.post("", response_model=CredentialSetResponse, status_code=status.HTTP_201_CREATED)
def create_credential_set(
    body: CredentialSetRequest,
    service: CredentialSetService = Depends(get_credential_set_service),
) -> Any:
    created, errors = service.create(
        CredentialSetInput(provider=body.provider, name=body.name, credentials=body.credentials)
    )
    if created is None:
        raise validation_failed(errors)
    return to_response(created)


@router.get("/{credential_set_id}", response_model=CredentialSetResponse)
def get_credential_set(
    credential_set_id: UUID,
    service: CredentialSetService = Depends(get_credential_set_service),
) -> Any:
    credential_set = service.get(credential_set_id)
    if credential_set is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential set not found")
    return to_response(credential_set)


@router.put("/{credential_set_id}", response_model=CredentialSetResponse)
def update_credential_set(
    credential_set_id: UUID,
    body: CredentialSetRequest,
    service: CredentialSetService = Depends(get_credential_set_service),
) -> Any:
    """Rename and merge credentials; empty values keep the stored secret."""
    updated, errors = service.update(
        credential_set_id,
        CredentialSetInput(provider=body.provider, name=body.name, credentials=body.credentials),
    )
    if updated is None:
        raise validation_failed(errors)
    return to_response(updated)


@router.delete("/{credential_set_id}")
def delete_credential_set(
    credential_set_id: UUID,
    service: CredentialSetService = Depends(get_credential_set_service),
) -> dict[str, bool]:
    if not service.delete(credential_set_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential set not found")
    return {"success": True}
