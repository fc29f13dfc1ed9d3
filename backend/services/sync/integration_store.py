"""
Integration Store
=================

Row-level persistence for account integrations, their sync history and the
trader performance rows the sync writes. Every mutating method commits, so
each step of a sync attempt is durable on its own.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from backend.config import settings
from backend.models import (
    AccountIntegration,
    CredentialAssignment,
    IntegrationProvider,
    IntegrationSyncStatus,
    PerformanceData,
    PerformanceDataSource,
    SyncDataSource,
    SyncHistory,
    SyncHistoryStatus,
    SyncType,
    Trader,
    TradingCredential,
)
from backend.services.clients.base import AccountCredentials
from backend.services.clients.metatrader_client import (
    CONFIGURATION_PAGE_MESSAGE,
    is_configuration_page,
)
from backend.services.clients.registry import required_fields
from backend.services.security.credential_vault import CredentialVault, credential_vault

logger = logging.getLogger(__name__)

ACCOUNT_FIELDS = ("account_id", "api_token", "server_endpoint", "platform", "system_id")


class IntegrationStoreError(Exception):
    pass


class IntegrationNotFoundError(IntegrationStoreError):
    pass


class CredentialNotFoundError(IntegrationStoreError):
    pass


class IntegrationValidationError(IntegrationStoreError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IntegrationStore:
    def __init__(self, db: Session, vault: Optional[CredentialVault] = None):
        self.db = db
        self.vault = vault or credential_vault

    # ------------------------------------------------------------------
    # Admin CRUD
    # ------------------------------------------------------------------

    def _validate(self, provider: IntegrationProvider, fields: dict) -> None:
        missing = [name for name in required_fields(provider) if not fields.get(name)]
        if missing:
            raise IntegrationValidationError(
                f"Missing required fields for {provider.label}: {', '.join(missing)}"
            )
        if is_configuration_page(fields.get("server_endpoint")):
            raise IntegrationValidationError(CONFIGURATION_PAGE_MESSAGE)

    def link_integration(
        self,
        provider: IntegrationProvider,
        credential_id: int,
        account_id: str,
        api_token: Optional[str] = None,
        server_endpoint: Optional[str] = None,
        platform: Optional[str] = None,
        system_id: Optional[str] = None,
    ) -> AccountIntegration:
        """
        Insert-or-replace keyed by (provider, credential_id) among active rows.
        Replacing an existing binding resets it to pending.
        """
        credential = self.db.get(TradingCredential, credential_id)
        if credential is None:
            raise CredentialNotFoundError(f"Trading credential {credential_id} not found")

        fields = {
            "account_id": _clean(account_id),
            "api_token": _clean(api_token),
            "server_endpoint": _clean(server_endpoint),
            "platform": _clean(platform),
            "system_id": _clean(system_id),
        }
        self._validate(provider, fields)
        if provider in (IntegrationProvider.MT4, IntegrationProvider.MT5) and not fields["platform"]:
            fields["platform"] = provider.value

        integration = (
            self.db.query(AccountIntegration)
            .filter(
                AccountIntegration.provider == provider,
                AccountIntegration.credential_id == credential_id,
                AccountIntegration.is_active.is_(True),
            )
            .order_by(AccountIntegration.id.desc())
            .first()
        )
        if integration is None:
            integration = AccountIntegration(provider=provider, credential_id=credential_id)
            self.db.add(integration)
            logger.info(f"🔗 Linking credential {credential_id} to {provider.label} account {fields['account_id']}")
        else:
            logger.info(f"🔁 Replacing {provider.label} binding {integration.id} for credential {credential_id}")

        integration.account_id = fields["account_id"]
        integration.api_token_encrypted = self.vault.encrypt_secret(fields["api_token"])
        integration.server_endpoint = fields["server_endpoint"]
        integration.platform = fields["platform"]
        integration.system_id = fields["system_id"]
        integration.sync_status = IntegrationSyncStatus.PENDING
        integration.last_error = None
        integration.is_active = True
        self.db.commit()
        self.db.refresh(integration)
        return integration

    def list_integrations(
        self,
        provider: IntegrationProvider,
        credential_id: Optional[int] = None,
        include_inactive: bool = False,
    ) -> List[AccountIntegration]:
        query = self.db.query(AccountIntegration).filter(AccountIntegration.provider == provider)
        if credential_id is not None:
            query = query.filter(AccountIntegration.credential_id == credential_id)
        if not include_inactive:
            query = query.filter(AccountIntegration.is_active.is_(True))
        return query.order_by(AccountIntegration.created_at.desc(), AccountIntegration.id.desc()).all()

    def active_integrations(self, provider: IntegrationProvider) -> List[AccountIntegration]:
        """Batch order: oldest binding first."""
        return (
            self.db.query(AccountIntegration)
            .filter(
                AccountIntegration.provider == provider,
                AccountIntegration.is_active.is_(True),
            )
            .order_by(AccountIntegration.id.asc())
            .all()
        )

    def get_integration(
        self, provider: IntegrationProvider, integration_id: int, active_only: bool = True
    ) -> AccountIntegration:
        query = self.db.query(AccountIntegration).filter(
            AccountIntegration.id == integration_id,
            AccountIntegration.provider == provider,
        )
        if active_only:
            query = query.filter(AccountIntegration.is_active.is_(True))
        integration = query.first()
        if integration is None:
            raise IntegrationNotFoundError(f"{provider.label} integration {integration_id} not found")
        return integration

    def update_integration(
        self, provider: IntegrationProvider, integration_id: int, **changes
    ) -> AccountIntegration:
        """Account fields only; an omitted/None api_token keeps the stored secret."""
        unknown = set(changes) - set(ACCOUNT_FIELDS)
        if unknown:
            raise IntegrationValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        integration = self.get_integration(provider, integration_id)
        merged = {
            "account_id": integration.account_id,
            "api_token": None,
            "server_endpoint": integration.server_endpoint,
            "platform": integration.platform,
            "system_id": integration.system_id,
        }
        if changes.get("api_token") is None:
            # Stored token is kept, so it must still be readable
            try:
                merged["api_token"] = self.vault.decrypt_secret(integration.api_token_encrypted)
            except ValueError as e:
                raise IntegrationValidationError(f"{e}; supply a new API token") from e
        for name, value in changes.items():
            if value is None:
                continue
            merged[name] = _clean(value)
        self._validate(provider, merged)

        integration.account_id = merged["account_id"]
        if changes.get("api_token") is not None:
            integration.api_token_encrypted = self.vault.encrypt_secret(merged["api_token"])
        integration.server_endpoint = merged["server_endpoint"]
        integration.platform = merged["platform"]
        integration.system_id = merged["system_id"]
        self.db.commit()
        self.db.refresh(integration)
        return integration

    def deactivate_integration(self, provider: IntegrationProvider, integration_id: int) -> AccountIntegration:
        integration = self.get_integration(provider, integration_id)
        integration.is_active = False
        self.db.commit()
        logger.info(f"🗑️ Deactivated {provider.label} integration {integration_id}")
        return integration

    def credentials_for(self, integration: AccountIntegration) -> AccountCredentials:
        return AccountCredentials(
            account_id=integration.account_id,
            api_token=self.vault.decrypt_secret(integration.api_token_encrypted),
            server_endpoint=integration.server_endpoint,
            platform=integration.platform,
            system_id=integration.system_id,
        )

    # ------------------------------------------------------------------
    # Traders & performance
    # ------------------------------------------------------------------

    def get_trader_for_credential(self, credential_id: int) -> Optional[Trader]:
        assignment = (
            self.db.query(CredentialAssignment)
            .filter(CredentialAssignment.credential_id == credential_id)
            .first()
        )
        return assignment.trader if assignment else None

    def get_starting_balance(self, trader_id: int) -> float:
        performance = (
            self.db.query(PerformanceData).filter(PerformanceData.trader_id == trader_id).first()
        )
        if performance and performance.starting_balance and performance.starting_balance > 0:
            return float(performance.starting_balance)
        return settings.DEFAULT_STARTING_BALANCE

    def update_performance(
        self,
        trader_id: int,
        current_balance: float,
        profit_percentage: float,
        data_source: PerformanceDataSource,
        starting_balance: Optional[float] = None,
    ) -> PerformanceData:
        try:
            performance = (
                self.db.query(PerformanceData).filter(PerformanceData.trader_id == trader_id).first()
            )
            if performance is None:
                performance = PerformanceData(
                    trader_id=trader_id,
                    starting_balance=starting_balance or settings.DEFAULT_STARTING_BALANCE,
                )
                self.db.add(performance)
            performance.current_balance = current_balance
            performance.profit_percentage = profit_percentage
            performance.data_source = data_source
            performance.last_updated = utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return performance

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def start_sync_history(self, integration: AccountIntegration, sync_type: SyncType) -> SyncHistory:
        history = SyncHistory(
            integration_id=integration.id,
            sync_type=sync_type,
            status=SyncHistoryStatus.IN_PROGRESS,
            records_updated=0,
            synced_at=utcnow(),
        )
        self.db.add(history)
        integration.sync_status = IntegrationSyncStatus.SYNCING
        self.db.commit()
        return history

    def finish_sync_history(
        self,
        history: SyncHistory,
        status: SyncHistoryStatus,
        records_updated: int = 0,
        error_message: Optional[str] = None,
        data_source: Optional[SyncDataSource] = None,
    ) -> SyncHistory:
        if history.status.is_terminal:
            raise IntegrationStoreError(f"Sync history {history.id} is already {history.status.value}")
        if not status.is_terminal:
            raise IntegrationStoreError(f"{status.value} is not a terminal sync status")
        history.status = status
        history.records_updated = records_updated
        history.error_message = error_message
        history.data_source = data_source
        history.completed_at = utcnow()
        self.db.commit()
        return history

    def record_failed_attempt(
        self, integration: AccountIntegration, sync_type: SyncType, error_message: str
    ) -> SyncHistory:
        """Single terminal error row for attempts that never reach the provider."""
        now = utcnow()
        history = SyncHistory(
            integration_id=integration.id,
            sync_type=sync_type,
            status=SyncHistoryStatus.ERROR,
            records_updated=0,
            error_message=error_message,
            synced_at=now,
            completed_at=now,
        )
        self.db.add(history)
        self.db.commit()
        self.update_sync_status(integration, IntegrationSyncStatus.ERROR, error_message)
        return history

    def update_sync_status(
        self,
        integration: AccountIntegration,
        status: IntegrationSyncStatus,
        error_message: Optional[str] = None,
    ) -> AccountIntegration:
        """Failed attempts still count as checked: last_sync moves either way."""
        integration.sync_status = status
        integration.last_sync = utcnow()
        integration.last_error = error_message if status == IntegrationSyncStatus.ERROR else None
        self.db.commit()
        return integration

    def recent_sync_history(self, integration_id: int, limit: int = 10) -> List[SyncHistory]:
        return (
            self.db.query(SyncHistory)
            .filter(SyncHistory.integration_id == integration_id)
            .order_by(SyncHistory.synced_at.desc(), SyncHistory.id.desc())
            .limit(limit)
            .all()
        )
