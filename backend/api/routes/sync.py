"""
Performance Sync API Routes
===========================

On-demand triggers for external account syncs. Everything runs inside the
request: the response is sent once every integration in the batch resolved.

Per provider (MyFXBook uses the bare /api/sync prefix):
- POST {prefix}/trigger                   sync all active integrations
- POST {prefix}/trigger/{integration_id}  sync one integration
- GET  {prefix}/status                    sync status of active integrations
- POST {prefix}/test                      test unsaved credentials
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.models import IntegrationProvider, SyncType
from backend.services.clients.base import AccountCredentials
from backend.services.sync.forex_factory_import import ForexFactoryManualImporter
from backend.services.sync.integration_store import (
    IntegrationNotFoundError,
    IntegrationStore,
)
from backend.services.sync.sync_orchestrator import SyncOrchestrator, sync_orchestrator
from backend.utils.sync_logging import new_request_id, sync_logger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])


def get_sync_orchestrator() -> SyncOrchestrator:
    return sync_orchestrator


# Pydantic models for API
class SyncResponse(BaseModel):
    success: bool
    message: str
    synced: Optional[int] = None
    failed: Optional[int] = None
    errors: Optional[List[str]] = None


class IntegrationStatus(BaseModel):
    id: int
    account_id: str
    sync_status: str
    last_sync: Optional[str] = None
    last_error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    success: bool
    integrations: List[IntegrationStatus]
    total: int


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class MyFXBookTestRequest(BaseModel):
    myfxbook_account_id: Optional[str] = None
    myfxbook_password: Optional[str] = None


class MT4TestRequest(BaseModel):
    mt4_account_id: Optional[str] = None
    mt4_api_token: Optional[str] = None
    mt4_server_endpoint: Optional[str] = None
    mt4_platform: Optional[str] = "mt4"


class MT5TestRequest(BaseModel):
    mt5_account_id: Optional[str] = None
    mt5_api_token: Optional[str] = None
    mt5_server_endpoint: Optional[str] = None


class ForexFactoryTestRequest(BaseModel):
    ff_account_username: Optional[str] = None
    ff_api_key: Optional[str] = None
    ff_system_id: Optional[str] = None


class ManualUploadRequest(BaseModel):
    csv_text: str


class ManualUploadResponse(BaseModel):
    success: bool
    updated: int
    errors: List[str]


# ---------------------------------------------------------------------------
# Shared handlers
# ---------------------------------------------------------------------------


async def _trigger_all(
    provider: IntegrationProvider,
    db: Session,
    orchestrator: SyncOrchestrator,
    sync_type: SyncType,
    request_id: Optional[str],
) -> SyncResponse:
    request_id = new_request_id(request_id)
    try:
        batch = await orchestrator.sync_all(db, provider, sync_type=sync_type, request_id=request_id)
    except Exception as e:
        logger.error(f"❌ [{request_id}] {provider.label} batch sync failed: {e}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {e}")

    if batch.total == 0:
        return SyncResponse(
            success=True,
            message=f"No active {provider.label} integrations to sync",
            synced=0,
        )
    return SyncResponse(
        success=True,
        message=f"{provider.label} sync complete: {batch.synced} success, {batch.failed} failed",
        synced=batch.synced,
        failed=batch.failed,
        errors=batch.errors or None,
    )


async def _trigger_one(
    provider: IntegrationProvider,
    integration_id: int,
    db: Session,
    orchestrator: SyncOrchestrator,
    sync_type: SyncType,
    request_id: Optional[str],
) -> SyncResponse:
    request_id = new_request_id(request_id)
    try:
        outcome = await orchestrator.sync_one(
            db, provider, integration_id, sync_type=sync_type, request_id=request_id
        )
    except IntegrationNotFoundError:
        raise HTTPException(status_code=404, detail=f"{provider.label} integration not found")
    except Exception as e:
        logger.error(f"❌ [{request_id}] {provider.label} sync of {integration_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {e}")

    if outcome.success:
        return SyncResponse(success=True, message=f"{provider.label} sync successful", synced=1)
    return SyncResponse(
        success=False,
        message=f"{provider.label} sync failed: {outcome.error}",
        synced=0,
    )


def _status(provider: IntegrationProvider, db: Session) -> SyncStatusResponse:
    try:
        integrations = IntegrationStore(db).active_integrations(provider)
    except Exception as e:
        logger.error(f"❌ Failed to load {provider.label} sync status: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get status: {e}")

    items = [
        IntegrationStatus(
            id=i.id,
            account_id=i.account_id,
            sync_status=i.sync_status.value,
            last_sync=i.last_sync.isoformat() if i.last_sync else None,
            last_error=i.last_error,
        )
        for i in integrations
    ]
    return SyncStatusResponse(success=True, integrations=items, total=len(items))


async def _test_connection(
    provider: IntegrationProvider,
    credentials: AccountCredentials,
    orchestrator: SyncOrchestrator,
    request_id: Optional[str],
) -> ConnectionTestResponse:
    log = sync_logger(__name__, provider=provider.value, request_id=new_request_id(request_id))
    log.info(f"🔌 Testing {provider.label} connection for account {credentials.account_id}")
    result = await orchestrator.get_adapter(provider).test_connection(credentials, log)
    return ConnectionTestResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# MyFXBook
# ---------------------------------------------------------------------------


@router.post("/trigger", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_myfxbook_sync_all(
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Sync every active MyFXBook integration."""
    return await _trigger_all(IntegrationProvider.MYFXBOOK, db, orchestrator, sync_type, x_request_id)


@router.post("/trigger/{integration_id}", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_myfxbook_sync_one(
    integration_id: int,
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_one(
        IntegrationProvider.MYFXBOOK, integration_id, db, orchestrator, sync_type, x_request_id
    )


@router.get("/status", response_model=SyncStatusResponse)
async def myfxbook_sync_status(db: Session = Depends(get_db)):
    return _status(IntegrationProvider.MYFXBOOK, db)


@router.post("/test", response_model=ConnectionTestResponse)
async def test_myfxbook_connection(
    request: MyFXBookTestRequest,
    x_request_id: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    credentials = AccountCredentials(
        account_id=request.myfxbook_account_id,
        api_token=request.myfxbook_password,
    )
    return await _test_connection(IntegrationProvider.MYFXBOOK, credentials, orchestrator, x_request_id)


# ---------------------------------------------------------------------------
# MT4
# ---------------------------------------------------------------------------


@router.post("/mt4/trigger", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_mt4_sync_all(
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_all(IntegrationProvider.MT4, db, orchestrator, sync_type, x_request_id)


@router.post("/mt4/trigger/{integration_id}", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_mt4_sync_one(
    integration_id: int,
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_one(IntegrationProvider.MT4, integration_id, db, orchestrator, sync_type, x_request_id)


@router.get("/mt4/status", response_model=SyncStatusResponse)
async def mt4_sync_status(db: Session = Depends(get_db)):
    return _status(IntegrationProvider.MT4, db)


@router.post("/mt4/test", response_model=ConnectionTestResponse)
async def test_mt4_connection(
    request: MT4TestRequest,
    x_request_id: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    credentials = AccountCredentials(
        account_id=request.mt4_account_id,
        api_token=request.mt4_api_token,
        server_endpoint=request.mt4_server_endpoint,
        platform=request.mt4_platform,
    )
    return await _test_connection(IntegrationProvider.MT4, credentials, orchestrator, x_request_id)


# ---------------------------------------------------------------------------
# MT5
# ---------------------------------------------------------------------------


@router.post("/mt5/trigger", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_mt5_sync_all(
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_all(IntegrationProvider.MT5, db, orchestrator, sync_type, x_request_id)


@router.post("/mt5/trigger/{integration_id}", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_mt5_sync_one(
    integration_id: int,
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_one(IntegrationProvider.MT5, integration_id, db, orchestrator, sync_type, x_request_id)


@router.get("/mt5/status", response_model=SyncStatusResponse)
async def mt5_sync_status(db: Session = Depends(get_db)):
    return _status(IntegrationProvider.MT5, db)


@router.post("/mt5/test", response_model=ConnectionTestResponse)
async def test_mt5_connection(
    request: MT5TestRequest,
    x_request_id: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    credentials = AccountCredentials(
        account_id=request.mt5_account_id,
        api_token=request.mt5_api_token,
        server_endpoint=request.mt5_server_endpoint,
        platform="mt5",
    )
    return await _test_connection(IntegrationProvider.MT5, credentials, orchestrator, x_request_id)


# ---------------------------------------------------------------------------
# Forex Factory
# ---------------------------------------------------------------------------


@router.post("/forex-factory/trigger", response_model=SyncResponse, response_model_exclude_none=True)
async def trigger_forex_factory_sync_all(
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_all(IntegrationProvider.FOREX_FACTORY, db, orchestrator, sync_type, x_request_id)


@router.post(
    "/forex-factory/trigger/{integration_id}",
    response_model=SyncResponse,
    response_model_exclude_none=True,
)
async def trigger_forex_factory_sync_one(
    integration_id: int,
    sync_type: SyncType = Query(SyncType.MANUAL),
    x_request_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await _trigger_one(
        IntegrationProvider.FOREX_FACTORY, integration_id, db, orchestrator, sync_type, x_request_id
    )


@router.get("/forex-factory/status", response_model=SyncStatusResponse)
async def forex_factory_sync_status(db: Session = Depends(get_db)):
    return _status(IntegrationProvider.FOREX_FACTORY, db)


@router.post("/forex-factory/test", response_model=ConnectionTestResponse)
async def test_forex_factory_connection(
    request: ForexFactoryTestRequest,
    x_request_id: Optional[str] = Header(default=None),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    credentials = AccountCredentials(
        account_id=request.ff_account_username,
        api_token=request.ff_api_key,
        system_id=request.ff_system_id,
    )
    return await _test_connection(IntegrationProvider.FOREX_FACTORY, credentials, orchestrator, x_request_id)


@router.post("/forex-factory/manual-upload", response_model=ManualUploadResponse)
async def forex_factory_manual_upload(request: ManualUploadRequest, db: Session = Depends(get_db)):
    """Apply a pasted Forex Factory leaderboard CSV to trader performance."""
    if not request.csv_text.strip():
        raise HTTPException(status_code=400, detail="csv_text is empty")
    result = ForexFactoryManualImporter(db).import_csv(request.csv_text)
    return ManualUploadResponse(success=result.success, updated=result.updated, errors=result.errors)
