"""
Кэш цен спот-рынка

Один запрос к бирже на весь процесс за период TTL: параллельные вызовы
внутри одного тика ждут уже идущее обновление, а не запускают своё.
"""

import asyncio
import time
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple

from config import PRICE_CACHE_TTL_MS
from errors import PriceFeedError
from logger import logger
from okx_client import TickerPrice

PriceFetcher = Callable[[], Awaitable[Dict[str, TickerPrice]]]


class PriceOracle:
	"""Цены всех пар с коротким TTL-кэшем"""

	def __init__(self, fetcher: PriceFetcher, ttl_ms: int = PRICE_CACHE_TTL_MS, clock: Callable[[], float] = time.monotonic):
		self._fetcher = fetcher
		self.ttl_ms = ttl_ms
		self._clock = clock
		# (время обновления, цены) заменяется целиком одним присваиванием
		self._cache: Optional[Tuple[float, Mapping[str, TickerPrice]]] = None
		self._refresh_lock = asyncio.Lock()
		self.refresh_count = 0

	def _fresh(self, max_age_ms: int) -> Optional[Mapping[str, TickerPrice]]:
		cache = self._cache
		if cache is None:
			return None
		updated_at, prices = cache
		if (self._clock() - updated_at) * 1000 < max_age_ms:
			return prices
		return None

	async def get_prices(self, max_age_ms: Optional[int] = None) -> Mapping[str, TickerPrice]:
		"""
		Цены из кэша, если он моложе max_age_ms, иначе одно обновление.

		Raises:
			PriceFeedError: биржа недоступна, а свежего кэша нет. Кэш при
				этом не изменяется.
		"""
		if max_age_ms is None:
			max_age_ms = self.ttl_ms

		prices = self._fresh(max_age_ms)
		if prices is not None:
			return prices

		async with self._refresh_lock:
			# Пока ждали блокировку, кэш мог обновить другой вызов
			prices = self._fresh(max_age_ms)
			if prices is not None:
				return prices

			try:
				fetched = await self._fetcher()
			except PriceFeedError:
				raise
			except Exception as e:
				raise PriceFeedError(f"Ошибка получения цен: {e}") from e

			if not fetched:
				raise PriceFeedError("Биржа вернула пустой список цен")

			prices = MappingProxyType(dict(fetched))
			self._cache = (self._clock(), prices)
			self.refresh_count += 1
			logger.debug(f"Кэш цен обновлён: {len(prices)} пар")
			return prices
