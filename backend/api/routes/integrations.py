"""
Account Integration API Routes
==============================

Admin endpoints for binding trading credentials to external accounts.

Flow:
1. Admin links a credential to a provider account (token is encrypted at rest)
2. Sync routes pick up every active integration
3. History endpoint shows the audit trail of attempts
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.models import AccountIntegration, IntegrationProvider, SyncHistory
from backend.services.sync.integration_store import (
    CredentialNotFoundError,
    IntegrationNotFoundError,
    IntegrationStore,
    IntegrationValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["Integrations"])


def get_provider(provider: str) -> IntegrationProvider:
    try:
        return IntegrationProvider.from_slug(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")


# Pydantic models for API
class LinkIntegrationRequest(BaseModel):
    credential_id: int
    account_id: str
    api_token: Optional[str] = None
    server_endpoint: Optional[str] = None
    platform: Optional[str] = None
    system_id: Optional[str] = None


class UpdateIntegrationRequest(BaseModel):
    account_id: Optional[str] = None
    api_token: Optional[str] = None
    server_endpoint: Optional[str] = None
    platform: Optional[str] = None
    system_id: Optional[str] = None


class IntegrationResponse(BaseModel):
    id: int
    provider: str
    credential_id: int
    account_id: str
    has_api_token: bool
    server_endpoint: Optional[str]
    platform: Optional[str]
    system_id: Optional[str]
    sync_status: str
    last_sync: Optional[datetime]
    last_error: Optional[str]
    is_active: bool
    created_at: Optional[datetime]


class SyncHistoryResponse(BaseModel):
    id: int
    integration_id: int
    sync_type: str
    status: str
    records_updated: int
    error_message: Optional[str]
    data_source: Optional[str]
    synced_at: datetime
    completed_at: Optional[datetime]


def _to_response(integration: AccountIntegration) -> IntegrationResponse:
    return IntegrationResponse(
        id=integration.id,
        provider=integration.provider.slug,
        credential_id=integration.credential_id,
        account_id=integration.account_id,
        has_api_token=integration.has_api_token,
        server_endpoint=integration.server_endpoint,
        platform=integration.platform,
        system_id=integration.system_id,
        sync_status=integration.sync_status.value,
        last_sync=integration.last_sync,
        last_error=integration.last_error,
        is_active=integration.is_active,
        created_at=integration.created_at,
    )


def _history_response(row: SyncHistory) -> SyncHistoryResponse:
    return SyncHistoryResponse(
        id=row.id,
        integration_id=row.integration_id,
        sync_type=row.sync_type.value,
        status=row.status.value,
        records_updated=row.records_updated,
        error_message=row.error_message,
        data_source=row.data_source.value if row.data_source else None,
        synced_at=row.synced_at,
        completed_at=row.completed_at,
    )


@router.post("/{provider}", response_model=IntegrationResponse)
async def link_integration(
    request: LinkIntegrationRequest,
    provider: IntegrationProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Create or replace the active binding for a credential."""
    try:
        integration = IntegrationStore(db).link_integration(
            provider,
            request.credential_id,
            request.account_id,
            api_token=request.api_token,
            server_endpoint=request.server_endpoint,
            platform=request.platform,
            system_id=request.system_id,
        )
    except CredentialNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except IntegrationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(integration)


@router.get("/{provider}", response_model=List[IntegrationResponse])
async def list_integrations(
    provider: IntegrationProvider = Depends(get_provider),
    credential_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
):
    integrations = IntegrationStore(db).list_integrations(
        provider, credential_id=credential_id, include_inactive=include_inactive
    )
    return [_to_response(i) for i in integrations]


@router.patch("/{provider}/{integration_id}", response_model=IntegrationResponse)
async def update_integration(
    integration_id: int,
    request: UpdateIntegrationRequest,
    provider: IntegrationProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    try:
        integration = IntegrationStore(db).update_integration(
            provider, integration_id, **request.model_dump(exclude_none=True)
        )
    except IntegrationNotFoundError:
        raise HTTPException(status_code=404, detail="Integration not found")
    except IntegrationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(integration)


@router.delete("/{provider}/{integration_id}")
async def delete_integration(
    integration_id: int,
    provider: IntegrationProvider = Depends(get_provider),
    db: Session = Depends(get_db),
):
    """Soft delete: history rows stay attached."""
    try:
        IntegrationStore(db).deactivate_integration(provider, integration_id)
    except IntegrationNotFoundError:
        raise HTTPException(status_code=404, detail="Integration not found")
    return {"success": True, "message": f"{provider.label} integration {integration_id} deactivated"}


@router.get("/{provider}/{integration_id}/history", response_model=List[SyncHistoryResponse])
async def integration_history(
    integration_id: int,
    provider: IntegrationProvider = Depends(get_provider),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    store = IntegrationStore(db)
    try:
        store.get_integration(provider, integration_id, active_only=False)
    except IntegrationNotFoundError:
        raise HTTPException(status_code=404, detail="Integration not found")
    return [_history_response(row) for row in store.recent_sync_history(integration_id, limit=limit)]
