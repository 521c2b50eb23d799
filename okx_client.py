"""
Модуль для работы с OKX API v5
Цены спот-рынка, балансы и оценка портфеля пользователя
"""

import asyncio
import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

import aiohttp

from config import OKX_BASE_URL, QUOTE_ASSET, CASH_ASSET, API_TIMEOUT
from errors import PriceFeedError, BalanceFetchError, CredentialError
from logger import logger

# Таймаут для API запросов
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=API_TIMEOUT)


@dataclass(frozen=True)
class TickerPrice:
	price: float
	open_24h: float
	change_24h: float  # доля, 0.05 = +5%
	volume_24h: float


@dataclass(frozen=True)
class Credentials:
	api_key: str
	api_secret: str
	passphrase: str

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, str]]) -> Optional["Credentials"]:
		if not data:
			return None
		return cls(data["api_key"], data["api_secret"], data["passphrase"])


@dataclass
class PortfolioAsset:
	asset: str
	price: float
	amount: float
	value: float
	change_24h: float


@dataclass
class Portfolio:
	assets: List[PortfolioAsset] = field(default_factory=list)
	total: float = 0.0
	cash_value: float = 0.0


def instrument_id(asset: str) -> str:
	"""BTC -> BTC-USDT"""
	return f"{asset}-{QUOTE_ASSET}"


def parse_tickers(data: List[Dict[str, Any]]) -> Dict[str, TickerPrice]:
	"""Разбирает ответ /market/tickers, оставляя только пары к USDT"""
	prices = {}
	suffix = f"-{QUOTE_ASSET}"
	for ticker in data:
		inst_id = ticker.get("instId", "")
		if not inst_id.endswith(suffix):
			continue
		try:
			last_price = float(ticker["last"])
			open_price = float(ticker.get("open24h") or 0)
			volume = float(ticker.get("volCcy24h") or 0)
		except (KeyError, TypeError, ValueError):
			logger.warning(f"Пропускаю некорректный тикер {inst_id}")
			continue
		change = (last_price - open_price) / open_price if open_price > 0 else 0.0
		prices[inst_id] = TickerPrice(price=last_price, open_24h=open_price, change_24h=change, volume_24h=volume)
	return prices


def build_portfolio(balances: Dict[str, float], prices: Dict[str, TickerPrice]) -> Portfolio:
	"""Оценивает балансы по текущим ценам. Активы дешевле $1 не показываются, но входят в итог."""
	portfolio = Portfolio()
	for asset, amount in balances.items():
		if amount <= 0:
			continue
		ticker = prices.get(instrument_id(asset))
		if asset == CASH_ASSET:
			price, change = 1.0, 0.0
		elif ticker:
			price, change = ticker.price, ticker.change_24h
		else:
			price, change = 0.0, 0.0

		value = amount * price
		portfolio.total += value
		if asset == CASH_ASSET:
			portfolio.cash_value = value
		if value >= 1:
			portfolio.assets.append(PortfolioAsset(asset=asset, price=price, amount=amount, value=value, change_24h=change))

	portfolio.assets.sort(key=lambda a: a.value, reverse=True)
	return portfolio


class OKXClient:
	"""Клиент OKX: публичные цены и приватные балансы по ключам пользователя"""

	TICKERS_PATH = "/api/v5/market/tickers?instType=SPOT"
	BALANCE_PATH = "/api/v5/account/balance"

	def __init__(self, session: aiohttp.ClientSession, base_url: str = OKX_BASE_URL):
		self.session = session
		self.base_url = base_url

	@staticmethod
	def _sign(secret: str, timestamp: str, method: str, path: str, body: str = "") -> str:
		prehash = timestamp + method.upper() + path + body
		digest = hmac.new(secret.encode(), prehash.encode(), hashlib.sha256).digest()
		return base64.b64encode(digest).decode()

	def _headers(self, credentials: Credentials, method: str, path: str, body: str = "") -> Dict[str, str]:
		timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
		return {
			"OK-ACCESS-KEY": credentials.api_key,
			"OK-ACCESS-SIGN": self._sign(credentials.api_secret, timestamp, method, path, body),
			"OK-ACCESS-TIMESTAMP": timestamp,
			"OK-ACCESS-PASSPHRASE": credentials.passphrase,
			"Content-Type": "application/json",
		}

	async def get_market_prices(self) -> Dict[str, TickerPrice]:
		"""Цены всех спот-пар к USDT"""
		try:
			async with self.session.get(self.base_url + self.TICKERS_PATH, timeout=REQUEST_TIMEOUT) as resp:
				data = await resp.json()
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise PriceFeedError(f"Ошибка сети при получении цен: {e}") from e

		if data.get("code") != "0":
			raise PriceFeedError(f"OKX API error: {data.get('msg', 'Unknown error')}")

		return parse_tickers(data.get("data", []))

	async def _get_balance_details(self, credentials: Credentials) -> List[Dict[str, Any]]:
		if credentials is None:
			raise CredentialError("Ключи OKX не заданы")

		headers = self._headers(credentials, "GET", self.BALANCE_PATH)
		try:
			async with self.session.get(self.base_url + self.BALANCE_PATH, headers=headers, timeout=REQUEST_TIMEOUT) as resp:
				data = await resp.json()
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise BalanceFetchError(f"Ошибка сети при получении баланса: {e}") from e

		code = data.get("code")
		if code in ("50111", "50113", "50105"):
			# Неверный ключ, подпись или passphrase
			raise CredentialError(f"OKX отклонил ключи: {data.get('msg')}")
		if code != "0" or not data.get("data") or "details" not in data["data"][0]:
			raise BalanceFetchError(f"OKX API error: {data.get('msg') or 'неожиданный ответ'}")

		return data["data"][0]["details"]

	async def get_balances(self, credentials: Credentials) -> Dict[str, float]:
		"""Количество по каждому активу (только строго положительные)"""
		balances = {}
		for item in await self._get_balance_details(credentials):
			try:
				amount = float(item.get("eq") or 0)
			except (TypeError, ValueError):
				continue
			if amount > 0:
				balances[item["ccy"]] = amount
		return balances

	async def get_portfolio(self, credentials: Credentials, prices: Dict[str, TickerPrice]) -> Portfolio:
		"""Портфель с оценкой в USDT"""
		balances = await self.get_balances(credentials)
		return build_portfolio(balances, prices)
