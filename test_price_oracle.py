"""
Тесты кэша цен
"""
import asyncio

import pytest

from errors import PriceFeedError
from okx_client import TickerPrice
from price_oracle import PriceOracle


class FakeClock:
	def __init__(self):
		self.now = 1000.0

	def __call__(self):
		return self.now


class FakeFeed:
	def __init__(self):
		self.calls = 0
		self.fail = False

	async def __call__(self):
		self.calls += 1
		await asyncio.sleep(0.01)
		if self.fail:
			raise RuntimeError("connection reset")
		return {"BTC-USDT": TickerPrice(30000 + self.calls, 30000, 0.0, 1.0)}


def test_cached_within_ttl():
	clock, feed = FakeClock(), FakeFeed()
	oracle = PriceOracle(feed, ttl_ms=15000, clock=clock)

	async def scenario():
		first = await oracle.get_prices()
		clock.now += 10
		second = await oracle.get_prices()
		clock.now += 10
		third = await oracle.get_prices()
		return first, second, third

	first, second, third = asyncio.run(scenario())
	assert first is second
	assert third["BTC-USDT"].price == 30002
	assert oracle.refresh_count == 2


def test_concurrent_callers_share_one_refresh():
	feed = FakeFeed()
	oracle = PriceOracle(feed, ttl_ms=15000, clock=FakeClock())

	async def scenario():
		return await asyncio.gather(*(oracle.get_prices() for _ in range(5)))

	results = asyncio.run(scenario())
	assert feed.calls == 1
	assert oracle.refresh_count == 1
	assert all(r is results[0] for r in results)


def test_failure_keeps_previous_cache():
	clock, feed = FakeClock(), FakeFeed()
	oracle = PriceOracle(feed, ttl_ms=15000, clock=clock)

	async def scenario():
		await oracle.get_prices()
		clock.now += 20
		feed.fail = True
		with pytest.raises(PriceFeedError):
			await oracle.get_prices()
		# Старые цены по-прежнему доступны с большим допустимым возрастом
		return await oracle.get_prices(max_age_ms=60000)

	prices = asyncio.run(scenario())
	assert prices["BTC-USDT"].price == 30001
	assert oracle.refresh_count == 1
	assert feed.calls == 2


def test_empty_response_is_error():
	async def empty():
		return {}

	oracle = PriceOracle(empty, ttl_ms=15000, clock=FakeClock())
	with pytest.raises(PriceFeedError):
		asyncio.run(oracle.get_prices())
	assert oracle.refresh_count == 0


def test_prices_are_read_only():
	oracle = PriceOracle(FakeFeed(), ttl_ms=15000, clock=FakeClock())
	prices = asyncio.run(oracle.get_prices())
	with pytest.raises(TypeError):
		prices["ETH-USDT"] = TickerPrice(1, 1, 0, 0)
