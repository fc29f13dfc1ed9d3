#!/usr/bin/env python3
"""
FXComp - Sync Orchestrator Tests
================================

Tests for sync_orchestrator.py:
- One attempt end to end (history row, status, performance write)
- Failure isolation inside a batch
- Configuration errors short-circuit before any provider call
- Placeholder (fallback) data is tagged on the history row
"""

import json
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from backend.models import (
    IntegrationProvider,
    IntegrationSyncStatus,
    PerformanceData,
    PerformanceDataSource,
    SyncDataSource,
    SyncHistory,
    SyncHistoryStatus,
    SyncType,
)
from backend.services.clients.forex_factory_client import ForexFactoryClient, fallback_account_data
from backend.services.clients.metatrader_client import MT5Client
from backend.services.sync.integration_store import IntegrationNotFoundError, IntegrationStore
from backend.services.sync.sync_orchestrator import NO_TRADER_MESSAGE, SyncOrchestrator

MT5 = IntegrationProvider.MT5


class RecordingTransport:
    """Serves a JSON body per account id and remembers what was requested."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        account_id = request.url.path.rsplit("/", 1)[-1]
        status, payload = self.responses.get(account_id, (404, {"error": "unknown account"}))
        return httpx.Response(status, content=json.dumps(payload), headers={"Content-Type": "application/json"})


@pytest.fixture
def transport():
    return RecordingTransport({"acc-1": (200, {"account": {"balance": "1234.50", "currency": "USD"}})})


@pytest.fixture
def orchestrator(transport):
    return SyncOrchestrator(adapters={MT5: MT5Client(transport=httpx.MockTransport(transport))})


def _link(db_session, credential_id, account_id="acc-1", **overrides):
    fields = {
        "api_token": "token",
        "server_endpoint": "https://bridge.example.com/accounts",
    }
    fields.update(overrides)
    return IntegrationStore(db_session).link_integration(MT5, credential_id, account_id, **fields)


def _history(db_session, integration_id):
    return (
        db_session.query(SyncHistory)
        .filter(SyncHistory.integration_id == integration_id)
        .order_by(SyncHistory.id)
        .all()
    )


class TestSingleSync:
    @pytest.mark.asyncio
    async def test_successful_sync_updates_performance(self, db_session, assigned_credential, trader, orchestrator):
        integration = _link(db_session, assigned_credential.id)

        outcome = await orchestrator.sync_one(db_session, MT5, integration.id)

        assert outcome.success is True
        assert outcome.balance == pytest.approx(1234.50)
        assert outcome.profit_percentage == pytest.approx(23.45)

        performance = db_session.query(PerformanceData).filter_by(trader_id=trader.id).one()
        assert performance.current_balance == pytest.approx(1234.50)
        assert performance.profit_percentage == pytest.approx(23.45)
        assert performance.data_source == PerformanceDataSource.MT5

        rows = _history(db_session, integration.id)
        assert len(rows) == 1
        assert rows[0].status == SyncHistoryStatus.SUCCESS
        assert rows[0].records_updated == 1
        assert rows[0].sync_type == SyncType.MANUAL
        assert rows[0].data_source == SyncDataSource.LIVE
        assert rows[0].completed_at is not None

        db_session.refresh(integration)
        assert integration.sync_status == IntegrationSyncStatus.SUCCESS
        assert integration.last_sync is not None
        assert integration.last_error is None

    @pytest.mark.asyncio
    async def test_profit_uses_trader_starting_balance(self, db_session, make_credential, transport, orchestrator):
        credential = make_credential(starting_balance=2000.0)
        integration = _link(db_session, credential.id)
        transport.responses["acc-1"] = (200, {"balance": 2500})

        outcome = await orchestrator.sync_one(db_session, MT5, integration.id)

        assert outcome.profit_percentage == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_unknown_integration_raises_before_any_mutation(self, db_session, orchestrator, transport):
        with pytest.raises(IntegrationNotFoundError):
            await orchestrator.sync_one(db_session, MT5, 12345)

        assert db_session.query(SyncHistory).count() == 0
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_no_trader_records_error(self, db_session, make_credential, orchestrator, transport):
        credential = make_credential(assign=False)
        integration = _link(db_session, credential.id)

        outcome = await orchestrator.sync_one(db_session, MT5, integration.id)

        assert outcome.success is False
        assert outcome.error == NO_TRADER_MESSAGE
        assert transport.requests == []
        rows = _history(db_session, integration.id)
        assert [r.status for r in rows] == [SyncHistoryStatus.ERROR]
        assert rows[0].error_message == NO_TRADER_MESSAGE

    @pytest.mark.asyncio
    async def test_missing_configuration_skips_provider(self, db_session, assigned_credential, orchestrator, transport):
        integration = _link(db_session, assigned_credential.id)
        # Simulate a row written before validation existed
        integration.server_endpoint = None
        db_session.commit()

        outcome = await orchestrator.sync_one(db_session, MT5, integration.id, sync_type=SyncType.AUTOMATIC)

        assert outcome.success is False
        assert "server endpoint" in outcome.error
        assert transport.requests == []
        rows = _history(db_session, integration.id)
        assert len(rows) == 1
        assert rows[0].status == SyncHistoryStatus.ERROR
        assert rows[0].sync_type == SyncType.AUTOMATIC
        db_session.refresh(integration)
        assert integration.sync_status == IntegrationSyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_provider_failure_records_error(self, db_session, assigned_credential, trader, transport, orchestrator):
        integration = _link(db_session, assigned_credential.id)
        transport.responses["acc-1"] = (200, {"account": {"balance": 0}})

        outcome = await orchestrator.sync_one(db_session, MT5, integration.id)

        assert outcome.success is False
        assert "Invalid balance" in outcome.error
        performance = db_session.query(PerformanceData).filter_by(trader_id=trader.id).one()
        assert performance.current_balance == 1000.0
        db_session.refresh(integration)
        assert integration.last_error == outcome.error
        assert integration.last_sync is not None

    @pytest.mark.asyncio
    async def test_performance_write_failure_keeps_fetched_balance_in_message(
        self, db_session, assigned_credential, orchestrator
    ):
        integration = _link(db_session, assigned_credential.id)

        with patch.object(IntegrationStore, "update_performance", side_effect=SQLAlchemyError("disk full")):
            outcome = await orchestrator.sync_one(db_session, MT5, integration.id)

        assert outcome.success is False
        assert outcome.error.startswith("Fetched balance 1234.50 USD from MT5")
        assert "failed to update performance data" in outcome.error
        rows = _history(db_session, integration.id)
        assert rows[-1].status == SyncHistoryStatus.ERROR

    @pytest.mark.asyncio
    async def test_repeated_failures_append_history(self, db_session, assigned_credential, transport, orchestrator):
        integration = _link(db_session, assigned_credential.id)
        transport.responses["acc-1"] = (500, {"error": "down"})

        first = await orchestrator.sync_one(db_session, MT5, integration.id)
        db_session.refresh(integration)
        assert integration.sync_status == IntegrationSyncStatus.ERROR

        second = await orchestrator.sync_one(db_session, MT5, integration.id)
        db_session.refresh(integration)
        assert integration.sync_status == IntegrationSyncStatus.ERROR

        assert first.error == second.error
        assert integration.last_error == second.error
        rows = _history(db_session, integration.id)
        assert len(rows) == 2
        assert all(r.status == SyncHistoryStatus.ERROR for r in rows)


class TestBatchSync:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, db_session, assigned_credential, make_credential, transport, orchestrator):
        good = _link(db_session, assigned_credential.id)
        bad = _link(db_session, make_credential().id, account_id="acc-missing")
        also_good = _link(db_session, make_credential().id, account_id="acc-3")
        transport.responses["acc-3"] = (200, {"balance": "900"})

        batch = await orchestrator.sync_all(db_session, MT5)

        assert batch.total == 3
        assert batch.synced == 2
        assert batch.failed == 1
        assert len(batch.errors) == 1
        assert batch.errors[0].startswith(f"Integration {bad.id}:")
        assert [o.integration_id for o in batch.outcomes] == [good.id, bad.id, also_good.id]
        assert [r.sync_type for r in _history(db_session, good.id)] == [SyncType.AUTOMATIC]

        bad_trader = IntegrationStore(db_session).get_trader_for_credential(bad.credential_id)
        untouched = db_session.query(PerformanceData).filter_by(trader_id=bad_trader.id).one()
        assert untouched.current_balance == 1000.0
        assert untouched.data_source == PerformanceDataSource.REGISTRATION

    @pytest.mark.asyncio
    async def test_inactive_integrations_are_skipped(self, db_session, assigned_credential, orchestrator, transport):
        integration = _link(db_session, assigned_credential.id)
        IntegrationStore(db_session).deactivate_integration(MT5, integration.id)

        batch = await orchestrator.sync_all(db_session, MT5)

        assert batch.total == 0
        assert transport.requests == []


class TestForexFactoryFallback:
    @pytest.mark.asyncio
    async def test_scrape_failure_completes_with_flagged_placeholder(self, db_session, assigned_credential, trader):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        ff = IntegrationProvider.FOREX_FACTORY
        orchestrator = SyncOrchestrator(
            adapters={ff: ForexFactoryClient(base_url="https://ff.test", transport=httpx.MockTransport(handler))}
        )
        integration = IntegrationStore(db_session).link_integration(ff, assigned_credential.id, "pipmaster")

        outcome = await orchestrator.sync_one(db_session, ff, integration.id)

        assert outcome.success is True
        assert outcome.data_source == SyncDataSource.FALLBACK
        rows = _history(db_session, integration.id)
        assert rows[0].status == SyncHistoryStatus.SUCCESS
        assert rows[0].data_source == SyncDataSource.FALLBACK
        performance = db_session.query(PerformanceData).filter_by(trader_id=trader.id).one()
        assert performance.data_source == PerformanceDataSource.FOREX_FACTORY

    @pytest.mark.asyncio
    async def test_return_percentage_is_measured_from_trader_start(self, db_session, make_credential):
        def handler(request):
            return httpx.Response(200, text="<html><body><span>Return:</span> <span>+10%</span></body></html>")

        ff = IntegrationProvider.FOREX_FACTORY
        orchestrator = SyncOrchestrator(
            adapters={ff: ForexFactoryClient(base_url="https://ff.test", transport=httpx.MockTransport(handler))}
        )
        credential = make_credential(starting_balance=5000.0)
        integration = IntegrationStore(db_session).link_integration(ff, credential.id, "pipmaster")

        outcome = await orchestrator.sync_one(db_session, ff, integration.id)

        assert outcome.success is True
        assert outcome.data_source == SyncDataSource.LIVE
        assert outcome.balance == pytest.approx(5500.0)
        assert outcome.profit_percentage == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_placeholder_data_is_based_on_trader_start(self, db_session, make_credential):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        ff = IntegrationProvider.FOREX_FACTORY
        orchestrator = SyncOrchestrator(
            adapters={ff: ForexFactoryClient(base_url="https://ff.test", transport=httpx.MockTransport(handler))}
        )
        credential = make_credential(starting_balance=5000.0)
        integration = IntegrationStore(db_session).link_integration(ff, credential.id, "pipmaster")

        outcome = await orchestrator.sync_one(db_session, ff, integration.id)

        expected = fallback_account_data("pipmaster", 5000.0)
        assert outcome.data_source == SyncDataSource.FALLBACK
        assert outcome.balance == pytest.approx(expected.balance)
        assert outcome.profit_percentage == pytest.approx((expected.balance - 5000.0) / 5000.0 * 100, abs=0.01)
