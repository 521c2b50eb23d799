"""
Планировщик фоновых задач

Каждый уровень (сверка балансов, максимумы/минимумы, алерты, история)
крутится в своём цикле. Внутри цикла пользователи обходятся по очереди
с паузой между ними, чтобы не упираться в лимиты OKX.
"""

import asyncio
import random
from typing import Awaitable, Callable, List, Optional

from config import (
	BALANCE_CHECK_INTERVAL, WATERMARK_INTERVAL, PRICE_ALERT_INTERVAL,
	PRICE_MOVEMENT_INTERVAL, VIRTUAL_TRADE_INTERVAL, HOURLY_JOB_INTERVAL,
	DAILY_JOB_INTERVAL, INTER_TENANT_DELAY, MAX_PARALLEL_TENANTS, JOB_START_JITTER
)
from logger import logger, log_error

TenantJob = Callable[[str], Awaitable]


class JobScheduler:
	def __init__(self, ledger, engine, jobs, inter_tenant_delay: float = INTER_TENANT_DELAY,
				 max_parallel: int = MAX_PARALLEL_TENANTS, start_jitter: float = JOB_START_JITTER):
		self.ledger = ledger
		self.engine = engine
		self.jobs = jobs
		self.inter_tenant_delay = inter_tenant_delay
		self.max_parallel = max(1, max_parallel)
		self.start_jitter = start_jitter
		self._tasks: List[asyncio.Task] = []

	def schedule(self):
		"""(название, интервал в секундах, задача для одного пользователя)"""
		return [
			("balances", BALANCE_CHECK_INTERVAL, self.engine.reconcile),
			("watermarks", WATERMARK_INTERVAL, self.engine.refresh_watermarks),
			("price_alerts", PRICE_ALERT_INTERVAL, self.jobs.check_price_alerts),
			("price_movements", PRICE_MOVEMENT_INTERVAL, self.jobs.check_price_movements),
			("virtual_trades", VIRTUAL_TRADE_INTERVAL, self.jobs.monitor_virtual_trades),
			("hourly_history", HOURLY_JOB_INTERVAL, self.jobs.record_hourly_snapshot),
			("daily_report", DAILY_JOB_INTERVAL, self.jobs.send_daily_report),
		]

	async def _run_for_tenant(self, name: str, job: TenantJob, tenant_id: str):
		try:
			await job(tenant_id)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.error(f"❌ Задача {name} для {tenant_id} завершилась ошибкой: {e}", exc_info=True)

	async def run_once(self, name: str, job: TenantJob, tenants: Optional[List[str]] = None):
		"""Один проход задачи по всем пользователям с подключённой биржей"""
		if tenants is None:
			tenants = self.ledger.list_tenants()
		if not tenants:
			return

		if self.max_parallel == 1:
			for index, tenant_id in enumerate(tenants):
				await self._run_for_tenant(name, job, tenant_id)
				if index < len(tenants) - 1 and self.inter_tenant_delay > 0:
					await asyncio.sleep(self.inter_tenant_delay)
			return

		semaphore = asyncio.Semaphore(self.max_parallel)

		async def limited(tenant_id):
			async with semaphore:
				await self._run_for_tenant(name, job, tenant_id)

		await asyncio.gather(*(limited(t) for t in tenants))

	async def _loop(self, name: str, interval: float, job: TenantJob):
		if self.start_jitter > 0:
			await asyncio.sleep(random.uniform(0, self.start_jitter))
		logger.info(f"⏱ Задача {name} запущена, интервал {interval}с")
		while True:
			try:
				await self.run_once(name, job)
			except asyncio.CancelledError:
				raise
			except Exception as e:
				log_error(f"Ошибка в цикле {name}", e)
			await asyncio.sleep(interval)

	def start(self):
		for name, interval, job in self.schedule():
			self._tasks.append(asyncio.create_task(self._loop(name, interval, job)))

	async def stop(self):
		for task in self._tasks:
			task.cancel()
		await asyncio.gather(*self._tasks, return_exceptions=True)
		self._tasks.clear()
		await self.engine.wait_notifications()
