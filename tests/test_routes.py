"""HTTP surface tests through FastAPI's TestClient with fake collaborators."""

import threading

import pytest
from fastapi.testclient import TestClient

from conftest import OPERATOR_CHAT_ID, STRATEGY, make_position
import main
from spotbot.api.dependencies import Services

SECRET = "test-secret"


@pytest.fixture
def services(engine, exchange, notifier, tmp_path):
    return Services(exchange, notifier, engine, backup_path=str(tmp_path / "backup.json"), webhook_secret=SECRET)


@pytest.fixture
def client(services):
    app = main.create_app(lambda: services, install_fault_handlers=False)
    with TestClient(app) as test_client:
        yield test_client


def buy_payload(**overrides):
    payload = {"action": "BUY", "ticker": "BTCUSDT", "price": 100.0, "strategy": STRATEGY, "secret": SECRET}
    payload.update(overrides)
    return payload


class TestWebhook:

    def test_invalid_secret(self, client, store):
        response = client.post("/webhook", json=buy_payload(secret="wrong"))
        assert response.status_code == 403
        assert store.pending_signals() == []

    def test_secret_in_header(self, client):
        payload = buy_payload()
        payload.pop("secret")
        response = client.post("/webhook", json=payload, headers={"X-Webhook-Secret": SECRET})
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_strategy_name_alias(self, client):
        payload = buy_payload()
        payload["strategyName"] = payload.pop("strategy")
        assert client.post("/webhook", json=payload).json()["status"] == "pending"

    def test_strategy_mismatch(self, client, exchange):
        response = client.post("/webhook", json=buy_payload(strategy="Other"))
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert exchange.buy_orders == []

    def test_malformed_payload(self, client):
        assert client.post("/webhook", json={"action": "BUY", "secret": SECRET}).status_code == 422

    def test_exchange_failure_maps_to_502(self, client, store, exchange):
        store.add_position(make_position())
        exchange.fail_orders = True
        response = client.post("/webhook", json=buy_payload(action="SL", price=96.0))
        assert response.status_code == 502


class TestSignals:

    def test_confirm_and_list(self, client):
        signal_id = client.post("/webhook", json=buy_payload()).json()["signal_id"]
        assert [p["id"] for p in client.get("/pending").json()] == [signal_id]

        response = client.post(f"/signals/{signal_id}/confirm")

        assert response.status_code == 200
        assert response.json()["symbol"] == "DBTC_DUSDT"
        assert client.get("/pending").json() == []
        assert [p["symbol"] for p in client.get("/positions").json()] == ["DBTC_DUSDT"]
        assert client.get("/history", params={"limit": 5}).json()[-1]["action"] == "OPEN_LONG"

    def test_confirm_unknown_signal(self, client):
        assert client.post("/signals/nope/confirm").status_code == 404

    def test_reject(self, client, exchange):
        signal_id = client.post("/webhook", json=buy_payload()).json()["signal_id"]
        response = client.post(f"/signals/{signal_id}/reject")
        assert response.status_code == 200
        assert response.json()["id"] == signal_id
        assert exchange.buy_orders == []

    def test_telegram_callback(self, client, store):
        signal_id = client.post("/webhook", json=buy_payload()).json()["signal_id"]
        update = {"callback_query": {"id": "cb", "data": f"confirm_{signal_id}",
                                     "message": {"chat": {"id": OPERATOR_CHAT_ID}}}}

        response = client.post("/telegram/webhook", json=update)

        assert response.json()["status"] == "confirmed"
        assert store.has_position("DBTC_DUSDT")


class TestPositions:

    def test_close(self, client, store):
        store.add_position(make_position())
        response = client.post("/positions/DBTC_DUSDT/close")
        assert response.status_code == 200
        assert response.json()["status"] == "CLOSED"
        assert not store.has_position("DBTC_DUSDT")

    def test_close_missing(self, client):
        assert client.post("/positions/DBTC_DUSDT/close").status_code == 404

    def test_close_all(self, client, store):
        store.add_position(make_position())
        assert client.post("/close_all").json() == [
            {"symbol": "DBTC_DUSDT", "success": True, "pnl_percent": 0.0}
        ]


class TestReporting:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["active_positions"] == 0

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["trading"]["total_trades"] == 0
        assert "recommendations" in body["risk"]

    def test_risk(self, client):
        assert client.get("/risk").json()["balance"]["current"] == 1000.0

    def test_backup_written(self, client, services):
        response = client.post("/backup")
        assert response.status_code == 200
        assert response.json()["path"] == services.backup_path


def test_shutdown_writes_backup_and_startup_restores(services, store, tmp_path):
    store.add_position(make_position())
    with TestClient(main.create_app(lambda: services, install_fault_handlers=False)):
        pass
    store.replace([], [], [])

    with TestClient(main.create_app(lambda: services, install_fault_handlers=False)) as client:
        assert [p["symbol"] for p in client.get("/positions").json()] == ["DBTC_DUSDT"]


class TestUnexpectedFaults:

    @pytest.fixture
    def shutdowns(self, monkeypatch):
        requested = []
        monkeypatch.setattr(main, "request_shutdown", lambda services, error: requested.append(error))
        monkeypatch.setattr(threading, "excepthook", threading.excepthook)
        return requested

    @pytest.fixture
    def guarded_client(self, services, shutdowns):
        with TestClient(main.create_app(lambda: services, install_fault_handlers=True)) as test_client:
            yield test_client

    def test_webhook_fault_requests_shutdown(self, guarded_client, engine, shutdowns, monkeypatch):
        def corrupted(signal):
            raise KeyError("corrupted")

        monkeypatch.setattr(engine, "process_signal", corrupted)

        response = guarded_client.post("/webhook", json=buy_payload())

        assert response.status_code == 500
        assert len(shutdowns) == 1
        assert isinstance(shutdowns[0], KeyError)

    def test_confirmation_click_fault_requests_shutdown(self, guarded_client, engine, shutdowns, monkeypatch):
        signal_id = guarded_client.post("/webhook", json=buy_payload()).json()["signal_id"]

        def corrupted(symbol, price, signal=None):
            raise RuntimeError("position table corrupted")

        monkeypatch.setattr(engine, "open_long_position", corrupted)
        update = {"callback_query": {"id": "cb", "data": f"confirm_{signal_id}",
                                     "message": {"chat": {"id": OPERATOR_CHAT_ID}}}}

        response = guarded_client.post("/telegram/webhook", json=update)

        assert response.status_code == 500
        assert [str(error) for error in shutdowns] == ["position table corrupted"]

    def test_domain_errors_do_not_request_shutdown(self, guarded_client, shutdowns):
        assert guarded_client.post("/signals/nope/confirm").status_code == 404
        assert shutdowns == []


class TestExchangeConnection:

    def test_startup_checks_connection(self, client, notifier):
        assert client.get("/status").json()["exchange_connection"]["success"] is True
        assert "connected" in notifier.sent[0]

    def test_unreachable_exchange_does_not_block_startup(self, services, exchange, notifier):
        exchange.reachable = False
        with TestClient(main.create_app(lambda: services, install_fault_handlers=False)) as test_client:
            assert test_client.get("/health").status_code == 200
            assert test_client.get("/status").json()["exchange_connection"]["success"] is False
        assert "unreachable" in notifier.sent[0]
