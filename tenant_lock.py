"""
Блокировка сверки по пользователю

Одновременно идёт не больше одной сверки на пользователя (WebSocket и
плановый опрос могут прийти одновременно). Второй вызов не ждёт, а
пропускается. Разные пользователи обрабатываются независимо.
"""

import threading
from contextlib import asynccontextmanager
from typing import Set

from logger import logger


class TenantLockRegistry:
	"""Набор занятых пользователей"""

	def __init__(self):
		self._held: Set[str] = set()
		self._mutex = threading.Lock()
		self.skipped = 0

	def try_acquire(self, tenant_id) -> bool:
		tenant_id = str(tenant_id)
		with self._mutex:
			if tenant_id in self._held:
				self.skipped += 1
				return False
			self._held.add(tenant_id)
			return True

	def release(self, tenant_id):
		with self._mutex:
			self._held.discard(str(tenant_id))

	def is_held(self, tenant_id) -> bool:
		with self._mutex:
			return str(tenant_id) in self._held

	@asynccontextmanager
	async def hold(self, tenant_id):
		"""
		async with locks.hold(tenant) as acquired:
			if not acquired: return

		Освобождается всегда, в том числе при исключении и отмене задачи.
		"""
		acquired = self.try_acquire(tenant_id)
		if not acquired:
			logger.debug(f"[LOCK] {tenant_id}: сверка уже выполняется, пропуск")
		try:
			yield acquired
		finally:
			if acquired:
				self.release(tenant_id)
