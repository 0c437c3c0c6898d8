"""
HTTP API tests.

Uses FastAPI's TestClient with a fresh service per test.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from wallet.api import app, get_service
from wallet.config import WalletSettings
from wallet.service import DEMO_ADMIN_ID, WalletService

PLAYER = {"X-User-Id": "api-player", "X-Display-Name": "Api Player"}
ADMIN = {"X-User-Id": DEMO_ADMIN_ID}


@pytest.fixture
def service():
    service = WalletService(settings=WalletSettings(tx_backoff_base=0.0, tx_backoff_max=0.0), seed=True)
    service.catalog.add_event(
        event_id="api-cup", name="API Cup", game_type="Tekken", entry_fee=300,
        start_time=datetime.now(timezone.utc) + timedelta(days=1),
    )
    return service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as c:
        c.post("/me/account", headers=PLAYER)
        yield c
    app.dependency_overrides.clear()


class TestSystem:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_missing_identity(self, client):
        resp = client.get("/me/balance")
        assert resp.status_code == 422


class TestEvents:
    def test_list_and_search(self, client):
        names = [e["name"] for e in client.get("/events").json()]
        assert "API Cup" in names
        assert "Friday FIFA Cup" in names

        found = client.get("/events", params={"q": "tekken"}).json()
        assert {e["id"] for e in found} == {"api-cup", "tekken-open"}

    def test_unknown_event(self, client):
        resp = client.get("/events/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "event_not_found"


class TestWalletFlow:
    def test_join_and_cancel(self, client):
        assert client.post("/me/test-coins", headers=PLAYER).status_code == 201

        resp = client.post("/events/api-cup/join", headers=PLAYER)
        assert resp.status_code == 201
        assert resp.json()["balance"] == 700

        registrations = client.get("/me/registrations", headers=PLAYER).json()
        assert [e["id"] for e in registrations] == ["api-cup"]

        resp = client.post("/events/api-cup/join", headers=PLAYER)
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "already_joined"

        resp = client.post("/events/api-cup/cancel", headers=PLAYER, json={"entry_fee": 300})
        assert resp.status_code == 200
        assert resp.json()["balance"] == 1000

        history = client.get("/me/transactions", headers=PLAYER).json()
        assert [(e["kind"], e["amount"]) for e in history["entries"]] == [
            ("refund", 300), ("join", -300), ("deposit_test", 1000),
        ]

    def test_join_without_coins(self, client):
        resp = client.post("/events/api-cup/join", headers=PLAYER)
        assert resp.status_code == 402
        assert resp.json()["detail"]["code"] == "insufficient_funds"

    def test_withdrawal_and_rejection(self, client):
        client.post("/me/test-coins", headers=PLAYER, json={"amount": 500})

        resp = client.post("/me/withdrawals", headers=PLAYER, json={"amount": 600, "contact": "03001234567"})
        assert resp.status_code == 402

        resp = client.post("/me/withdrawals", headers=PLAYER, json={"amount": 500, "contact": "03001234567"})
        assert resp.status_code == 201
        request_id = resp.json()["request"]["id"]
        assert resp.json()["balance"] == 0

        resp = client.post(f"/admin/withdrawals/{request_id}/resolve", headers=PLAYER, json={"approve": True})
        assert resp.status_code == 403

        resp = client.post(
            f"/admin/withdrawals/{request_id}/resolve", headers=ADMIN,
            json={"approve": False, "reason": "Invalid number"},
        )
        assert resp.status_code == 200
        assert resp.json()["request"]["status"] == "rejected"

        balance = client.get("/me/balance", headers=PLAYER).json()
        assert balance["balance"] == 500

        requests = client.get("/me/withdrawals", headers=PLAYER).json()
        assert [r["status"] for r in requests] == ["rejected"]

    def test_invalid_withdrawal_amount(self, client):
        resp = client.post("/me/withdrawals", headers=PLAYER, json={"amount": 0, "contact": "03001234567"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "validation_error"

    def test_bad_history_paging(self, client):
        resp = client.get("/me/transactions", headers=PLAYER, params={"limit": -1})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "validation_error"

        resp = client.get("/me/transactions", headers=PLAYER, params={"limit": 5, "offset": -1})
        assert resp.status_code == 422

    def test_store_outage(self, client, service):
        service.store.set_available(False)
        resp = client.post("/me/test-coins", headers=PLAYER)
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "store_unavailable"
        service.store.set_available(True)
