"""
Admin integration route tests.
"""

import pytest

from backend.models import AccountIntegration, IntegrationProvider, SyncHistory, SyncType
from backend.services.sync.integration_store import IntegrationStore


@pytest.fixture
def client(api_client):
    test_client, _ = api_client
    return test_client


MT5_BODY = {
    "account_id": "acc-1",
    "api_token": "super-secret-token",
    "server_endpoint": "https://bridge.example.com/accounts",
}


def test_link_integration_hides_token(client, db_session, credential):
    response = client.post("/api/integrations/mt5", json={"credential_id": credential.id, **MT5_BODY})

    body = response.json()
    assert response.status_code == 200
    assert body["provider"] == "mt5"
    assert body["has_api_token"] is True
    assert body["platform"] == "mt5"
    assert body["sync_status"] == "pending"
    assert "api_token" not in body
    assert "super-secret-token" not in response.text
    stored = db_session.query(AccountIntegration).one()
    assert stored.api_token_encrypted != "super-secret-token"


def test_forex_factory_slug(client, credential):
    response = client.post(
        "/api/integrations/forex-factory",
        json={"credential_id": credential.id, "account_id": "pipmaster", "system_id": "555"},
    )

    assert response.status_code == 200
    assert response.json()["provider"] == "forex-factory"
    assert response.json()["has_api_token"] is False


def test_unknown_provider_is_404(client, credential):
    response = client.post("/api/integrations/ctrader", json={"credential_id": credential.id, **MT5_BODY})

    assert response.status_code == 404


def test_unknown_credential_is_404(client):
    response = client.post("/api/integrations/mt5", json={"credential_id": 999, **MT5_BODY})

    assert response.status_code == 404


def test_validation_errors_are_400(client, credential):
    response = client.post(
        "/api/integrations/mt5",
        json={
            "credential_id": credential.id,
            "account_id": "acc-1",
            "api_token": "tok",
            "server_endpoint": "https://app.metaapi.cloud/configure-trading-account-credentials/x",
        },
    )

    assert response.status_code == 400
    assert "configuration page" in response.json()["detail"]


def test_update_with_unreadable_stored_token_is_400(client, db_session, credential):
    created = client.post("/api/integrations/mt5", json={"credential_id": credential.id, **MT5_BODY}).json()
    integration = db_session.get(AccountIntegration, created["id"])
    integration.api_token_encrypted = "not-a-fernet-token"
    db_session.commit()

    response = client.patch(
        f"/api/integrations/mt5/{created['id']}", json={"server_endpoint": "https://new.example.com"}
    )

    assert response.status_code == 400
    assert "cannot be decrypted" in response.json()["detail"]


def test_list_update_and_soft_delete(client, credential):
    created = client.post("/api/integrations/mt5", json={"credential_id": credential.id, **MT5_BODY}).json()

    listed = client.get("/api/integrations/mt5", params={"credential_id": credential.id}).json()
    assert [i["id"] for i in listed] == [created["id"]]

    patched = client.patch(
        f"/api/integrations/mt5/{created['id']}", json={"server_endpoint": "https://new.example.com"}
    ).json()
    assert patched["server_endpoint"] == "https://new.example.com"
    assert patched["has_api_token"] is True

    deleted = client.delete(f"/api/integrations/mt5/{created['id']}")
    assert deleted.json()["success"] is True

    assert client.get("/api/integrations/mt5").json() == []
    inactive = client.get("/api/integrations/mt5", params={"include_inactive": True}).json()
    assert inactive[0]["is_active"] is False
    assert client.delete(f"/api/integrations/mt5/{created['id']}").status_code == 404


def test_history_endpoint(client, db_session, credential):
    created = client.post("/api/integrations/mt5", json={"credential_id": credential.id, **MT5_BODY}).json()
    store = IntegrationStore(db_session)
    integration = store.get_integration(IntegrationProvider.MT5, created["id"])
    for _ in range(3):
        store.record_failed_attempt(integration, SyncType.MANUAL, "HTTP 500")

    rows = client.get(f"/api/integrations/mt5/{created['id']}/history", params={"limit": 2}).json()

    assert len(rows) == 2
    assert rows[0]["status"] == "error"
    assert rows[0]["error_message"] == "HTTP 500"
    assert db_session.query(SyncHistory).count() == 3


def test_history_unknown_integration(client):
    assert client.get("/api/integrations/mt5/42/history").status_code == 404
