"""
Performance Sync Orchestrator
=============================

Refreshes trader performance from external trading accounts.

One attempt per integration:
1. Validate provider fields (fail fast, no network call)
2. Record an in_progress history row
3. Resolve the trader bound to the integration's credential
4. Fetch + normalize the account through the provider adapter
5. Compute profit against the trader's starting balance
6. Write the performance row
7. Close the history row and the integration status (success or error)

Batches run serially and never abort on a single integration's failure.
No retries: the caller (admin click or cron) re-triggers.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models import (
    AccountIntegration,
    IntegrationProvider,
    IntegrationSyncStatus,
    PerformanceDataSource,
    SyncDataSource,
    SyncHistory,
    SyncHistoryStatus,
    SyncType,
)
from backend.services.clients.base import AccountDataAdapter
from backend.services.clients.registry import build_adapter
from backend.services.sync.integration_store import IntegrationStore
from backend.services.sync.profit import profit_percentage
from backend.utils.sync_logging import SyncLogAdapter, sync_logger

logger = logging.getLogger(__name__)

NO_TRADER_MESSAGE = "No trader associated with this credential"

PERFORMANCE_SOURCES = {
    IntegrationProvider.MYFXBOOK: PerformanceDataSource.MYFXBOOK,
    IntegrationProvider.MT4: PerformanceDataSource.MT4,
    IntegrationProvider.MT5: PerformanceDataSource.MT5,
    IntegrationProvider.FOREX_FACTORY: PerformanceDataSource.FOREX_FACTORY,
}


@dataclass
class SyncOutcome:
    integration_id: int
    success: bool
    error: Optional[str] = None
    balance: Optional[float] = None
    profit_percentage: Optional[float] = None
    data_source: Optional[SyncDataSource] = None


@dataclass
class BatchSyncResult:
    provider: IntegrationProvider
    outcomes: List[SyncOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def synced(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return self.total - self.synced


class SyncOrchestrator:
    """Routes each integration to its provider adapter and records the outcome."""

    def __init__(self, adapters: Optional[Dict[IntegrationProvider, AccountDataAdapter]] = None):
        # DI registry (instances) – tests can override per provider
        self._adapters: Dict[IntegrationProvider, AccountDataAdapter] = dict(adapters or {})

    def get_adapter(self, provider: IntegrationProvider) -> AccountDataAdapter:
        if provider not in self._adapters:
            self._adapters[provider] = build_adapter(provider)
        return self._adapters[provider]

    async def sync_integration(
        self,
        db: Session,
        integration: AccountIntegration,
        sync_type: SyncType = SyncType.MANUAL,
        request_id: Optional[str] = None,
    ) -> SyncOutcome:
        provider = integration.provider
        integration_id = integration.id
        log = sync_logger(
            __name__,
            provider=provider.value,
            integration_id=integration_id,
            request_id=request_id,
        )
        store = IntegrationStore(db)
        adapter = self.get_adapter(provider)

        # Step 1: configuration check, no provider contact
        try:
            credentials = store.credentials_for(integration)
            config_error = None
            missing = adapter.missing_fields(credentials)
            if missing:
                config_error = (
                    f"Missing required {provider.label} configuration: "
                    f"{', '.join(name.replace('_', ' ') for name in missing)}"
                )
        except ValueError as e:
            config_error = str(e)
        if config_error:
            log.error(f"❌ {config_error}")
            store.record_failed_attempt(integration, sync_type, config_error)
            return SyncOutcome(integration_id, False, error=config_error)

        log.info(f"🚀 Starting {sync_type.value} {provider.label} sync")

        # Step 2
        history = store.start_sync_history(integration, sync_type)

        try:
            # Step 3
            trader = store.get_trader_for_credential(integration.credential_id)
            if trader is None:
                return self._fail(store, integration, history, NO_TRADER_MESSAGE, log)
            log.info(f"👤 Syncing for trader {trader.full_name} ({trader.id})")
            starting_balance = store.get_starting_balance(trader.id)
            credentials.starting_balance = starting_balance

            # Step 4
            result = await adapter.fetch_account(credentials, log)
            if not result.ok:
                message = result.error or f"Failed to fetch account data from {provider.label}"
                return self._fail(store, integration, history, message, log)
            data = result.data

            # Step 5
            pct = profit_percentage(data.balance, starting_balance)

            # Step 6
            try:
                store.update_performance(
                    trader.id,
                    data.balance,
                    pct,
                    PERFORMANCE_SOURCES[provider],
                    starting_balance=starting_balance,
                )
            except SQLAlchemyError as e:
                message = (
                    f"Fetched balance {data.balance:.2f} {data.currency} from {provider.label} "
                    f"but failed to update performance data: {e}"
                )
                return self._fail(store, integration, history, message, log)

            # Step 7
            store.finish_sync_history(
                history,
                SyncHistoryStatus.SUCCESS,
                records_updated=1,
                data_source=data.source,
            )
            store.update_sync_status(integration, IntegrationSyncStatus.SUCCESS)
        except Exception as e:
            db.rollback()
            log.exception(f"❌ Unexpected error during sync: {e}")
            return self._fail(store, integration, history, f"Unexpected sync error: {e}", log)

        if data.is_fallback:
            log.warning(f"⚠️ Performance written from placeholder data (balance={data.balance})")
        log.info(f"✅ Synced balance={data.balance} profit={pct:.2f}% (start {starting_balance})")
        return SyncOutcome(
            integration_id,
            True,
            balance=data.balance,
            profit_percentage=pct,
            data_source=data.source,
        )

    def _fail(
        self,
        store: IntegrationStore,
        integration: AccountIntegration,
        history: SyncHistory,
        message: str,
        log: SyncLogAdapter,
    ) -> SyncOutcome:
        log.error(f"❌ {message}")
        if not history.status.is_terminal:
            store.finish_sync_history(history, SyncHistoryStatus.ERROR, error_message=message)
        store.update_sync_status(integration, IntegrationSyncStatus.ERROR, message)
        return SyncOutcome(integration.id, False, error=message)

    async def sync_one(
        self,
        db: Session,
        provider: IntegrationProvider,
        integration_id: int,
        sync_type: SyncType = SyncType.MANUAL,
        request_id: Optional[str] = None,
    ) -> SyncOutcome:
        """Raises IntegrationNotFoundError before touching anything when the id is unknown."""
        integration = IntegrationStore(db).get_integration(provider, integration_id)
        return await self.sync_integration(db, integration, sync_type, request_id)

    async def sync_all(
        self,
        db: Session,
        provider: IntegrationProvider,
        sync_type: SyncType = SyncType.AUTOMATIC,
        request_id: Optional[str] = None,
    ) -> BatchSyncResult:
        log = sync_logger(__name__, provider=provider.value, request_id=request_id)
        integrations = IntegrationStore(db).active_integrations(provider)
        batch = BatchSyncResult(provider=provider)
        log.info(f"🔄 Found {len(integrations)} active {provider.label} integration(s)")

        for integration in integrations:
            integration_id = integration.id
            try:
                outcome = await self.sync_integration(db, integration, sync_type, request_id)
            except Exception as e:
                # Bookkeeping itself failed (store unavailable); keep the batch going
                db.rollback()
                log.error(f"❌ Integration {integration_id} could not be recorded: {e}")
                outcome = SyncOutcome(integration_id, False, error=str(e))
            batch.outcomes.append(outcome)
            if not outcome.success:
                batch.errors.append(f"Integration {integration_id}: {outcome.error}")

        log.info(f"🏁 {provider.label} sync complete. Synced: {batch.synced}, Failed: {batch.failed}")
        return batch


# Global instance
sync_orchestrator = SyncOrchestrator()
