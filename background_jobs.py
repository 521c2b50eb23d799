"""
Вспомогательные фоновые задачи пользователя:
ценовые алерты, алерты движения цены, виртуальные сделки и история портфеля.

Позиции здесь не изменяются: это делает только движок сверки.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Any, Optional, Tuple, Callable

from analytics import calculate_performance_stats
from config import API_TIMEOUT, CASH_ASSET, DAILY_HISTORY_LIMIT, HOURLY_HISTORY_LIMIT
from logger import logger
from okx_client import Credentials, Portfolio

VIRTUAL_COMPLETED = "completed"
VIRTUAL_STOPPED = "stopped"


def is_alert_triggered(alert: Dict[str, Any], price: float) -> bool:
	if alert["condition"] == "above":
		return price > alert["target_price"]
	return price < alert["target_price"]


def evaluate_virtual_trade(trade: Dict[str, Any], price: float) -> Optional[Tuple[str, float]]:
	"""Статус и виртуальный PnL, если сделка завершилась; иначе None"""
	if price >= trade["target_price"]:
		status = VIRTUAL_COMPLETED
	elif price <= trade["stop_loss_price"]:
		status = VIRTUAL_STOPPED
	else:
		return None
	pnl = (price - trade["entry_price"]) / trade["entry_price"] * trade["virtual_amount"]
	return status, pnl


def detect_movements(
	tracked: Dict[str, float],
	current_prices: Dict[str, float],
	global_percent: float,
	overrides: Dict[str, float]
) -> Tuple[List[Tuple[str, float, float, float]], Dict[str, float]]:
	"""
	Сравнивает цены с последними, о которых уже сообщили.

	Returns:
		(список (актив, изменение %, старая цена, новая цена), обновлённый трекер)
		Актив без записи в трекере только запоминается.
	"""
	movements = []
	updated = dict(tracked)
	for asset, price in current_prices.items():
		last_price = tracked.get(asset)
		if not last_price:
			updated[asset] = price
			continue
		change_percent = (price - last_price) / last_price * 100
		threshold = overrides.get(asset, global_percent)
		if abs(change_percent) >= threshold:
			movements.append((asset, change_percent, last_price, price))
			updated[asset] = price
	return movements, updated


class BackgroundJobs:
	"""Задачи, которые планировщик запускает для каждого пользователя"""

	def __init__(self, ledger, exchange, oracle, notifier, call_timeout: float = API_TIMEOUT,
				 clock: Callable[[], datetime] = datetime.now):
		self.ledger = ledger
		self.exchange = exchange
		self.oracle = oracle
		self.notifier = notifier
		self.call_timeout = call_timeout
		self.clock = clock

	async def _call(self, awaitable):
		return await asyncio.wait_for(awaitable, timeout=self.call_timeout)

	async def _price_map(self) -> Dict[str, float]:
		prices = await self._call(self.oracle.get_prices())
		return {inst_id.rsplit("-", 1)[0]: ticker.price for inst_id, ticker in prices.items()}

	async def _portfolio(self, tenant_id) -> Optional[Portfolio]:
		credentials = Credentials.from_dict(self.ledger.get_credentials(tenant_id))
		if credentials is None:
			return None
		prices = await self._call(self.oracle.get_prices())
		return await self._call(self.exchange.get_portfolio(credentials, prices))

	# -------------------------
	# Ценовые алерты
	# -------------------------
	async def check_price_alerts(self, tenant_id) -> int:
		alerts = self.ledger.get_price_alerts(tenant_id)
		if not alerts:
			return 0
		prices = await self._price_map()

		triggered = 0
		for alert in alerts:
			price = prices.get(alert["asset"])
			if price is None or not is_alert_triggered(alert, price):
				continue
			await self.notifier.notify(tenant_id, self.notifier.formatters.format_price_alert(alert, price))
			self.ledger.delete_price_alert(tenant_id, alert["id"])
			triggered += 1
		return triggered

	# -------------------------
	# Движение цены
	# -------------------------
	async def check_price_movements(self, tenant_id) -> int:
		portfolio = await self._portfolio(tenant_id)
		if portfolio is None:
			return 0

		settings = self.ledger.get_movement_settings(tenant_id)
		tracker = self.ledger.get_price_tracker(tenant_id)
		current = {a.asset: a.price for a in portfolio.assets if a.asset != CASH_ASSET and a.price > 0}

		movements, updated = detect_movements(tracker["assets"], current, settings["global"], settings["overrides"])
		for asset, change_percent, old_price, price in movements:
			await self.notifier.notify(
				tenant_id,
				self.notifier.formatters.format_movement(asset, change_percent, old_price, price),
				to_channel=True,
			)

		if updated != tracker["assets"] or not tracker["total_portfolio_value"]:
			self.ledger.save_price_tracker(tenant_id, portfolio.total, updated)
		return len(movements)

	# -------------------------
	# Виртуальные сделки
	# -------------------------
	async def monitor_virtual_trades(self, tenant_id) -> int:
		trades = self.ledger.get_active_virtual_trades(tenant_id)
		if not trades:
			return 0
		prices = await self._price_map()

		finished = 0
		for trade in trades:
			price = prices.get(trade["asset"])
			if price is None:
				continue
			outcome = evaluate_virtual_trade(trade, price)
			if outcome is None:
				continue
			status, pnl = outcome
			self.ledger.update_virtual_trade_status(tenant_id, trade["id"], status, price)
			await self.notifier.notify(tenant_id, self.notifier.formatters.format_virtual_trade(trade, status, price, pnl))
			finished += 1
		return finished

	# -------------------------
	# История портфеля
	# -------------------------
	async def record_hourly_snapshot(self, tenant_id) -> Optional[float]:
		portfolio = await self._portfolio(tenant_id)
		if portfolio is None:
			return None
		label = self.clock().strftime("%Y-%m-%dT%H")
		self.ledger.record_history(tenant_id, "hourly", label, portfolio.total, HOURLY_HISTORY_LIMIT)
		return portfolio.total

	async def record_daily_snapshot(self, tenant_id) -> Optional[float]:
		portfolio = await self._portfolio(tenant_id)
		if portfolio is None:
			return None
		label = self.clock().strftime("%Y-%m-%d")
		self.ledger.record_history(tenant_id, "daily", label, portfolio.total, DAILY_HISTORY_LIMIT)
		return portfolio.total

	async def send_daily_report(self, tenant_id) -> bool:
		"""Снимок дня и отчёт (если у пользователя включён daily_summary)"""
		total = await self.record_daily_snapshot(tenant_id)
		if total is None:
			return False
		if not self.ledger.get_settings(tenant_id).get("daily_summary"):
			return False

		stats = calculate_performance_stats(self.ledger.get_history(tenant_id, "daily"))
		message = self.notifier.formatters.format_daily_report(total, stats)
		await self.notifier.notify(tenant_id, message, to_channel=True)
		logger.info(f"Дневной отчёт отправлен пользователю {tenant_id}")
		return True

