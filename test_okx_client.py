"""
Тесты клиента OKX: разбор тикеров, оценка портфеля, ошибки API
"""
import asyncio
import base64
import hashlib
import hmac

import pytest

from errors import CredentialError, BalanceFetchError, PriceFeedError
from okx_client import OKXClient, Credentials, parse_tickers, build_portfolio

CREDENTIALS = Credentials("key", "secret", "pass")


class FakeResponse:
	def __init__(self, payload):
		self.payload = payload

	async def json(self):
		return self.payload

	async def __aenter__(self):
		return self

	async def __aexit__(self, *args):
		return False


class FakeSession:
	def __init__(self, payload):
		self.payload = payload
		self.requests = []

	def get(self, url, headers=None, timeout=None):
		self.requests.append((url, headers))
		return FakeResponse(self.payload)


def test_parse_tickers_keeps_usdt_pairs():
	prices = parse_tickers([
		{"instId": "BTC-USDT", "last": "31000", "open24h": "30000", "volCcy24h": "100"},
		{"instId": "ETH-BTC", "last": "0.05"},
		{"instId": "BAD-USDT", "last": "n/a"},
	])
	assert set(prices) == {"BTC-USDT"}
	assert prices["BTC-USDT"].price == 31000
	assert abs(prices["BTC-USDT"].change_24h - 1 / 30) < 1e-9


def test_build_portfolio():
	prices = parse_tickers([{"instId": "BTC-USDT", "last": "30000", "open24h": "30000"}])
	portfolio = build_portfolio({"BTC": 0.5, "USDT": 100, "DUST": 5, "XYZ": 0.0}, prices)

	assert portfolio.total == 15100
	assert portfolio.cash_value == 100
	assert [a.asset for a in portfolio.assets] == ["BTC", "USDT"]


def test_signature():
	expected = base64.b64encode(
		hmac.new(b"secret", b"2024-01-01T00:00:00.000ZGET/api/v5/account/balance", hashlib.sha256).digest()
	).decode()
	assert OKXClient._sign("secret", "2024-01-01T00:00:00.000Z", "get", "/api/v5/account/balance") == expected


def test_balances_positive_only():
	session = FakeSession({"code": "0", "data": [{"details": [
		{"ccy": "BTC", "eq": "0.5"},
		{"ccy": "ETH", "eq": "0"},
		{"ccy": "USDT", "eq": "120.5"},
	]}]})
	balances = asyncio.run(OKXClient(session, "https://okx.test").get_balances(CREDENTIALS))

	assert balances == {"BTC": 0.5, "USDT": 120.5}
	url, headers = session.requests[0]
	assert url == "https://okx.test/api/v5/account/balance"
	assert headers["OK-ACCESS-KEY"] == "key"
	assert headers["OK-ACCESS-PASSPHRASE"] == "pass"


def test_rejected_credentials():
	client = OKXClient(FakeSession({"code": "50111", "msg": "Invalid OK-ACCESS-KEY"}))
	with pytest.raises(CredentialError):
		asyncio.run(client.get_balances(CREDENTIALS))


def test_unexpected_balance_response():
	client = OKXClient(FakeSession({"code": "0", "data": []}))
	with pytest.raises(BalanceFetchError):
		asyncio.run(client.get_balances(CREDENTIALS))


def test_price_error():
	client = OKXClient(FakeSession({"code": "50001", "msg": "Service temporarily unavailable"}))
	with pytest.raises(PriceFeedError):
		asyncio.run(client.get_market_prices())
