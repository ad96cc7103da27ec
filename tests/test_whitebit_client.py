"""WhiteBit client tests against a mocked requests session."""

import base64
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
import requests

from spotbot.core.exceptions import ExchangeCallFailure
from spotbot.data.whitebit_client import WhiteBitClient

MARKETS = [
    {"name": "DBTC_DUSDT", "stock": "DBTC", "money": "DUSDT", "minAmount": "0.0001", "minTotal": "5",
     "maxTotal": "1000000", "makerFee": "0.1", "takerFee": "0.1", "stockPrec": "6", "moneyPrec": "2",
     "tradesEnabled": True},
    {"name": "OLD_USDT", "minAmount": "1", "minTotal": "1", "tradesEnabled": False},
]


def make_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = json.dumps(payload)
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return WhiteBitClient(api_key="public-key", secret_key="secret-key", base_url="https://whitebit.test",
                          timeout=5, markets_ttl=60, session=session)


class TestSigning:

    def test_private_request_headers(self, client, session):
        session.request.return_value = make_response({"USDT": {"available": "10"}})

        client.get_balance()

        method, url = session.request.call_args.args
        headers = session.request.call_args.kwargs["headers"]
        body = json.loads(base64.b64decode(headers["X-TXC-PAYLOAD"]))
        expected_signature = hmac.new(b"secret-key", headers["X-TXC-PAYLOAD"].encode(), hashlib.sha512).hexdigest()
        assert method == "POST"
        assert url == "https://whitebit.test/api/v4/trade-account/balance"
        assert headers["X-TXC-APIKEY"] == "public-key"
        assert headers["X-TXC-SIGNATURE"] == expected_signature
        assert body["request"] == "/api/v4/trade-account/balance"
        assert isinstance(body["nonce"], int)

    def test_nonce_increases(self, client):
        assert client._next_nonce() < client._next_nonce()


class TestBalances:

    def test_flat_balance(self, client, session):
        session.request.return_value = make_response({"USDT": {"available": "125.5", "freeze": "0"}})
        assert client.get_currency_balance("USDT") == 125.5

    def test_nested_balance(self, client, session):
        session.request.return_value = make_response({"main": {"DUSDT": {"available": "50"}}})
        assert client.get_currency_balance("DUSDT") == 50.0

    def test_missing_currency_is_zero(self, client, session):
        session.request.return_value = make_response({"USDT": {"available": "1"}})
        assert client.get_currency_balance("BTC") == 0.0


class TestMarketData:

    def test_ticker(self, client, session):
        session.request.return_value = make_response(
            {"DBTC_DUSDT": {"last_price": "42000.5", "base_volume": "10", "change": "1.5"}}
        )
        ticker = client.get_ticker("DBTC_DUSDT")
        assert ticker.last == 42000.5
        assert session.request.call_args.args == ("GET", "https://whitebit.test/api/v4/public/ticker")

    def test_unknown_ticker(self, client, session):
        session.request.return_value = make_response({})
        with pytest.raises(ExchangeCallFailure):
            client.get_ticker("NOPE_USDT")

    def test_markets_are_cached(self, client, session):
        session.request.return_value = make_response(MARKETS)

        limits = client.get_market_limits("DBTC_DUSDT")
        assert client.is_market_active("DBTC_DUSDT") is True
        assert client.is_market_active("OLD_USDT") is False

        assert session.request.call_count == 1
        assert limits.min_total == 5.0
        assert limits.stock_prec == 6

    def test_unknown_market_limits(self, client, session):
        session.request.return_value = make_response(MARKETS)
        with pytest.raises(ExchangeCallFailure):
            client.get_market_limits("NOPE_USDT")


class TestOrders:

    def test_market_buy(self, client, session):
        session.request.return_value = make_response(
            {"orderId": 123, "status": "FILLED", "dealMoney": "20", "dealStock": "0.0005"}
        )

        order = client.create_market_buy_order("DBTC_DUSDT", 20.0)

        body = json.loads(session.request.call_args.kwargs["data"])
        assert body["side"] == "buy"
        assert body["amount"] == "20.0"
        assert order.order_id == "123"
        assert order.average_price == pytest.approx(40000.0)

    def test_order_without_fill_data(self, client, session):
        session.request.return_value = make_response({"orderId": 5, "status": "NEW", "dealMoney": ""})
        order = client.create_market_sell_order("DBTC_DUSDT", 0.1)
        assert order.has_fill is False
        assert order.average_price is None


class TestErrors:

    def test_http_error(self, client, session):
        session.request.return_value = make_response({"message": "Not enough balance"}, status_code=422)

        with pytest.raises(ExchangeCallFailure) as excinfo:
            client.create_market_buy_order("DBTC_DUSDT", 20.0)

        assert excinfo.value.status_code == 422
        assert client.get_api_stats()["error_count"] == 1

    def test_transport_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(ExchangeCallFailure):
            client.ping()

    def test_connection_test_reports_failure(self, client, session):
        session.request.side_effect = requests.Timeout("timed out")
        result = client.test_connection()
        assert result["success"] is False
        assert result["stats"]["error_rate"] == 100.0
