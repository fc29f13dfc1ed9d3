"""
Sync route tests (FastAPI TestClient, provider HTTP served by httpx.MockTransport).
"""

import json

import httpx
import pytest

from backend.api.routes.sync import get_sync_orchestrator
from backend.models import (
    IntegrationProvider,
    IntegrationSyncStatus,
    PerformanceData,
    PerformanceDataSource,
    SyncHistory,
)
from backend.services.clients.metatrader_client import MT4Client, MT5Client
from backend.services.clients.myfxbook_client import MyFXBookClient
from backend.services.sync.integration_store import IntegrationStore
from backend.services.sync.sync_orchestrator import SyncOrchestrator

MT5 = IntegrationProvider.MT5


class ProviderStub:
    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = payload if payload is not None else {"account": {"balance": "1234.50"}}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, content=json.dumps(self.payload), headers={"Content-Type": "application/json"})


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def client(api_client, provider):
    test_client, app = api_client
    transport = httpx.MockTransport(provider)
    orchestrator = SyncOrchestrator(
        adapters={
            IntegrationProvider.MYFXBOOK: MyFXBookClient(api_base="https://myfxbook.test/api", transport=transport),
            IntegrationProvider.MT4: MT4Client(transport=transport),
            MT5: MT5Client(transport=transport),
        }
    )
    app.dependency_overrides[get_sync_orchestrator] = lambda: orchestrator
    return test_client


def _link_mt5(db_session, credential_id, account_id="acc-1"):
    return IntegrationStore(db_session).link_integration(
        MT5, credential_id, account_id, api_token="tok", server_endpoint="https://bridge.example.com/accounts"
    )


class TestTrigger:
    def test_trigger_all_with_no_integrations(self, client):
        response = client.post("/api/sync/mt5/trigger")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "No active MT5 integrations to sync",
            "synced": 0,
        }

    def test_trigger_all_reports_counts(self, client, db_session, assigned_credential, make_credential, provider):
        _link_mt5(db_session, assigned_credential.id)
        _link_mt5(db_session, make_credential().id, account_id="acc-2")

        response = client.post("/api/sync/mt5/trigger", headers={"X-Request-ID": "req-123"})

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "MT5 sync complete: 2 success, 0 failed"
        assert body["synced"] == 2
        assert body["failed"] == 0
        assert "errors" not in body

    def test_trigger_all_collects_errors(self, client, db_session, make_credential):
        _link_mt5(db_session, make_credential(assign=False).id)

        body = client.post("/api/sync/mt5/trigger").json()

        assert body["success"] is True
        assert body["failed"] == 1
        assert body["errors"] == ["Integration 1: No trader associated with this credential"]

    def test_trigger_one_success(self, client, db_session, assigned_credential, trader):
        integration = _link_mt5(db_session, assigned_credential.id)

        response = client.post(f"/api/sync/mt5/trigger/{integration.id}")

        assert response.json() == {"success": True, "message": "MT5 sync successful", "synced": 1}
        performance = db_session.query(PerformanceData).filter_by(trader_id=trader.id).one()
        assert performance.current_balance == pytest.approx(1234.50)
        assert performance.data_source == PerformanceDataSource.MT5

    def test_trigger_one_failure_is_reported_in_body(self, client, db_session, assigned_credential, provider):
        integration = _link_mt5(db_session, assigned_credential.id)
        provider.status = 401

        response = client.post(f"/api/sync/mt5/trigger/{integration.id}")

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["synced"] == 0
        assert body["message"].startswith("MT5 sync failed: HTTP 401")

    def test_trigger_one_unknown_id_is_404_without_mutation(self, client, db_session, assigned_credential, provider):
        integration = _link_mt5(db_session, assigned_credential.id)

        response = client.post("/api/sync/mt5/trigger/9999")

        assert response.status_code == 404
        assert db_session.query(SyncHistory).count() == 0
        db_session.refresh(integration)
        assert integration.sync_status == IntegrationSyncStatus.PENDING
        assert provider.requests == []

    def test_trigger_one_wrong_provider_is_404(self, client, db_session, assigned_credential):
        integration = _link_mt5(db_session, assigned_credential.id)

        assert client.post(f"/api/sync/mt4/trigger/{integration.id}").status_code == 404

    def test_trigger_one_non_integer_id_is_422(self, client):
        assert client.post("/api/sync/mt5/trigger/abc").status_code == 422

    def test_sync_type_query_is_recorded(self, client, db_session, assigned_credential):
        integration = _link_mt5(db_session, assigned_credential.id)

        client.post(f"/api/sync/mt5/trigger/{integration.id}?sync_type=automatic")

        row = db_session.query(SyncHistory).one()
        assert row.sync_type.value == "automatic"


class TestStatus:
    def test_status_lists_active_integrations(self, client, db_session, assigned_credential):
        integration = _link_mt5(db_session, assigned_credential.id)
        client.post(f"/api/sync/mt5/trigger/{integration.id}")

        body = client.get("/api/sync/mt5/status").json()

        assert body["success"] is True
        assert body["total"] == 1
        item = body["integrations"][0]
        assert item["id"] == integration.id
        assert item["account_id"] == "acc-1"
        assert item["sync_status"] == "success"
        assert item["last_sync"] is not None
        assert "api_token" not in item


class TestConnectionTests:
    def test_mt5_configuration_page_url(self, client, provider):
        response = client.post(
            "/api/sync/mt5/test",
            json={
                "mt5_account_id": "acc-1",
                "mt5_api_token": "tok",
                "mt5_server_endpoint": "https://app.metaapi.cloud/configure-trading-account-credentials/xyz",
            },
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert "configuration page URL" in body["message"]
        assert provider.requests == []

    def test_mt5_missing_fields_is_a_result_not_422(self, client, provider):
        response = client.post("/api/sync/mt5/test", json={"mt5_account_id": "acc-1"})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert provider.requests == []

    def test_mt4_success(self, client, provider):
        provider.payload = {"balance": 1500}

        body = client.post(
            "/api/sync/mt4/test",
            json={
                "mt4_account_id": "9001",
                "mt4_api_token": "tok",
                "mt4_server_endpoint": "https://mt4.example.com",
            },
        ).json()

        assert body["success"] is True
        assert "1500.0" in body["message"]
        assert str(provider.requests[0].url) == "https://mt4.example.com/accounts/9001"

    def test_myfxbook_rejected_credentials(self, client, provider):
        provider.payload = {"success": False, "message": "Wrong password"}

        body = client.post(
            "/api/sync/test",
            json={"myfxbook_account_id": "me@example.com", "myfxbook_password": "bad"},
        ).json()

        assert body["success"] is False
        assert "MyFXBook API error: Wrong password" in body["message"]


class TestManualUpload:
    def test_manual_upload_updates_matched_traders(self, client, db_session, assigned_credential, trader):
        csv_text = (
            "rank,trader_name,trader_username,balance,profit_percent,trades\n"
            "1,Ada Lovelace,ada_fx,1500.00,50.0,42\n"
            "2,Nobody Known,ghost,1200,20,3\n"
        )

        body = client.post("/api/sync/forex-factory/manual-upload", json={"csv_text": csv_text}).json()

        assert body["success"] is True
        assert body["updated"] == 1
        assert body["errors"] == ['Trader "Nobody Known" not found in system']
        performance = db_session.query(PerformanceData).filter_by(trader_id=trader.id).one()
        assert performance.profit_percentage == pytest.approx(50.0)
        assert performance.data_source == PerformanceDataSource.FOREX_FACTORY_MANUAL

    def test_manual_upload_rejects_empty_body(self, client):
        assert client.post("/api/sync/forex-factory/manual-upload", json={"csv_text": "  "}).status_code == 400
