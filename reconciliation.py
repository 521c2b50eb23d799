"""
Сверка балансов и учёт позиций

На каждом тике для каждого пользователя:
1. Получаем цены, текущие балансы и оценку портфеля.
2. Сравниваем балансы с последним снимком по каждому активу.
3. Существенную дельту превращаем в покупку, частичную продажу или закрытие.
4. Позиции, закрытые сделки и новый снимок сохраняем одной транзакцией.
5. События отдаём уведомителю, не дожидаясь доставки.
"""

import asyncio
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from config import API_TIMEOUT, CASH_ASSET, get_materiality_threshold
from errors import CredentialError, LedgerCorruptionError, TransientUpstreamError
from events import BuyEvent, CloseEvent, SellEvent, TradingEvent, describe, portfolio_weights
from logger import logger
from okx_client import Credentials, Portfolio, TickerPrice, build_portfolio, instrument_id
from position import (
	AssetPosition, ClosedTrade, apply_buy, apply_sell, close_position, open_position, update_watermarks
)
from tenant_lock import TenantLockRegistry

STATUS_OK = "ok"
STATUS_INITIALIZED = "initialized"
STATUS_SKIPPED_LOCKED = "skipped_locked"
STATUS_SKIPPED_NO_CREDENTIALS = "skipped_no_credentials"
STATUS_CREDENTIAL_ERROR = "credential_error"
STATUS_ABORTED = "aborted"

# Причины пропуска актива
SKIP_NO_PRICE = "no_price"
SKIP_IMMATERIAL = "immaterial"
SKIP_NO_POSITION = "no_position"
SKIP_CORRUPTED = "corrupted"


@dataclass
class ReconciliationResult:
	"""Результат чистого пересчёта, ещё не сохранённый"""
	positions: Dict[str, AssetPosition]
	balances: Dict[str, float]
	events: List[TradingEvent] = field(default_factory=list)
	closed_trades: List[ClosedTrade] = field(default_factory=list)
	skipped: Dict[str, str] = field(default_factory=dict)

	@property
	def changed(self) -> bool:
		return bool(self.events)

	@property
	def corrupted(self) -> List[str]:
		return [asset for asset, reason in self.skipped.items() if reason == SKIP_CORRUPTED]


@dataclass
class ReconciliationReport:
	"""Итог одного прохода сверки для пользователя"""
	tenant_id: str
	status: str
	events: List[TradingEvent] = field(default_factory=list)
	skipped: Dict[str, str] = field(default_factory=dict)
	error: Optional[str] = None


def _resolve_price(prices: Mapping[str, TickerPrice], asset: str) -> Optional[float]:
	ticker = prices.get(instrument_id(asset))
	if ticker is None:
		return None
	price = ticker.price
	if price is None or not math.isfinite(price) or price <= 0:
		return None
	return price


def reconcile_balances(
	previous_balances: Mapping[str, float],
	current_balances: Mapping[str, float],
	prices: Mapping[str, TickerPrice],
	positions: Mapping[str, AssetPosition],
	portfolio: Portfolio,
	previous_total_value: float,
	now: datetime,
	threshold_for: Callable[[str], float] = get_materiality_threshold,
	cash_asset: str = CASH_ASSET,
) -> ReconciliationResult:
	"""
	Сравнивает балансы и пересчитывает позиции. Ничего не сохраняет.

	Новый снимок балансов равен текущим балансам, кроме пропущенных активов
	(нет цены, несущественная дельта, ошибка данных): для них остаётся
	прежнее значение, чтобы мелкие изменения накапливались до порога.
	"""
	positions = dict(positions)
	result = ReconciliationResult(positions=positions, balances=dict(current_balances))

	for asset in sorted(set(previous_balances) | set(current_balances)):
		if asset == cash_asset:
			continue

		previous = previous_balances.get(asset, 0.0)
		current = current_balances.get(asset, 0.0)
		delta = current - previous
		if delta == 0:
			continue

		price = _resolve_price(prices, asset)
		threshold = threshold_for(asset)
		if price is None:
			result.skipped[asset] = SKIP_NO_PRICE
		elif abs(delta * price) < threshold:
			result.skipped[asset] = SKIP_IMMATERIAL
		elif delta < 0 and asset not in positions:
			# Нечего сверять: монеты куплены до начала отслеживания
			result.skipped[asset] = SKIP_NO_POSITION
			continue

		if asset in result.skipped:
			_keep_previous(result.balances, asset, previous_balances)
			logger.debug(f"[RECON] {asset} | пропуск ({result.skipped[asset]}) | Δ{delta:+.8g}")
			continue

		trade_value = abs(delta) * price
		try:
			if delta > 0:
				event = _handle_buy(positions, asset, delta, price, current, trade_value,
					portfolio, previous_total_value, now)
			else:
				event = _handle_sell(positions, asset, delta, price, current, trade_value,
					previous_total_value, threshold, now)
		except LedgerCorruptionError as e:
			logger.error(f"[RECON] {asset} | ошибка данных, актив пропущен | {e}")
			result.skipped[asset] = SKIP_CORRUPTED
			_keep_previous(result.balances, asset, previous_balances)
			continue

		if isinstance(event, CloseEvent):
			result.closed_trades.append(event.closed_trade)
		result.events.append(event)

	return result


def _keep_previous(balances: Dict[str, float], asset: str, previous_balances: Mapping[str, float]):
	if asset in previous_balances:
		balances[asset] = previous_balances[asset]
	else:
		balances.pop(asset, None)


def _handle_buy(
	positions: Dict[str, AssetPosition],
	asset: str,
	delta: float,
	price: float,
	current: float,
	trade_value: float,
	portfolio: Portfolio,
	previous_total_value: float,
	now: datetime,
) -> BuyEvent:
	position = positions.get(asset)
	if position is None:
		position = open_position(asset, delta, price, now)
	else:
		position = apply_buy(position, delta, price)
	positions[asset] = position

	asset_weight, cash_percent = portfolio_weights(current * price, portfolio.cash_value, portfolio.total)
	return BuyEvent(
		asset=asset,
		delta=delta,
		price=price,
		trade_value=trade_value,
		previous_total_value=previous_total_value,
		position=position,
		new_total_value=portfolio.total,
		asset_weight_percent=asset_weight,
		cash_percent=cash_percent,
	)


def _handle_sell(
	positions: Dict[str, AssetPosition],
	asset: str,
	delta: float,
	price: float,
	current: float,
	trade_value: float,
	previous_total_value: float,
	threshold: float,
	now: datetime,
) -> TradingEvent:
	if not math.isfinite(current) or current < 0:
		raise LedgerCorruptionError(asset, f"недопустимый остаток {current}")

	position = apply_sell(positions[asset], abs(delta), price)

	if current * price < threshold:
		closed_trade = close_position(position, price, now)
		del positions[asset]
		return CloseEvent(
			asset=asset,
			delta=delta,
			price=price,
			trade_value=trade_value,
			previous_total_value=previous_total_value,
			position=position,
			closed_trade=closed_trade,
		)

	positions[asset] = position
	return SellEvent(
		asset=asset,
		delta=delta,
		price=price,
		trade_value=trade_value,
		previous_total_value=previous_total_value,
		position=position,
		remaining_amount=current,
	)


class ReconciliationEngine:
	"""Проходы сверки по пользователям с защитой от параллельного запуска"""

	def __init__(
		self,
		ledger,
		exchange,
		oracle,
		event_sink=None,
		locks: TenantLockRegistry = None,
		call_timeout: float = API_TIMEOUT,
		materiality_threshold: Optional[float] = None,
		debug_reporter: Callable[[str, str], Awaitable[None]] = None,
		clock: Callable[[], datetime] = datetime.now,
	):
		self.ledger = ledger
		self.exchange = exchange
		self.oracle = oracle
		self.event_sink = event_sink
		self.locks = locks or TenantLockRegistry()
		self.call_timeout = call_timeout
		self.debug_reporter = debug_reporter
		self.clock = clock
		if materiality_threshold is None:
			self.threshold_for = get_materiality_threshold
		else:
			self.threshold_for = lambda asset: materiality_threshold
		self._pending: set = set()

	async def _call(self, awaitable):
		return await asyncio.wait_for(awaitable, timeout=self.call_timeout)

	def _fire(self, coro, what: str):
		"""Запускает уведомление в фоне; ошибка доставки только логируется"""
		task = asyncio.ensure_future(coro)
		self._pending.add(task)

		def _done(t: asyncio.Task):
			self._pending.discard(t)
			if not t.cancelled() and t.exception() is not None:
				logger.warning(f"Ошибка уведомления ({what}): {t.exception()}")

		task.add_done_callback(_done)

	async def wait_notifications(self):
		"""Дождаться отправки всех запущенных уведомлений (тесты и остановка бота)"""
		while self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)

	def _report_debug(self, tenant_id: str, message: str):
		if self.debug_reporter is not None:
			self._fire(self.debug_reporter(tenant_id, message), "debug")

	def _get_credentials(self, tenant_id: str) -> Optional[Credentials]:
		return Credentials.from_dict(self.ledger.get_credentials(tenant_id))

	async def reconcile(self, tenant_id) -> ReconciliationReport:
		"""Один проход сверки. Исключения не выбрасывает: результат в статусе отчёта."""
		tenant_id = str(tenant_id)
		credentials = self._get_credentials(tenant_id)
		if credentials is None:
			logger.debug(f"[RECON] {tenant_id} | биржа не подключена, пропуск")
			return ReconciliationReport(tenant_id, STATUS_SKIPPED_NO_CREDENTIALS)

		async with self.locks.hold(tenant_id) as acquired:
			if not acquired:
				self._report_debug(tenant_id, "Сверка уже выполняется, повторный запуск пропущен")
				return ReconciliationReport(tenant_id, STATUS_SKIPPED_LOCKED)
			try:
				return await self._reconcile_locked(tenant_id, credentials)
			except CredentialError as e:
				logger.warning(f"[RECON] {tenant_id} | ключи отклонены | {e}")
				return ReconciliationReport(tenant_id, STATUS_CREDENTIAL_ERROR, error=str(e))
			except (TransientUpstreamError, asyncio.TimeoutError) as e:
				error = str(e) or "таймаут запроса к бирже"
				logger.warning(f"[RECON] {tenant_id} | тик прерван | {error}")
				self._report_debug(tenant_id, f"Сверка прервана: {error}")
				return ReconciliationReport(tenant_id, STATUS_ABORTED, error=error)
			except Exception as e:
				logger.error(f"[RECON] {tenant_id} | непредвиденная ошибка | {e}", exc_info=True)
				self._report_debug(tenant_id, f"Ошибка сверки: {e}")
				return ReconciliationReport(tenant_id, STATUS_ABORTED, error=str(e))

	async def _reconcile_locked(self, tenant_id: str, credentials: Credentials) -> ReconciliationReport:
		prices = await self._call(self.oracle.get_prices())
		balances = await self._call(self.exchange.get_balances(credentials))
		# Оценка по тем же балансам, что и сравнение со снимком
		portfolio = build_portfolio(balances, prices)

		# Пока ждали биржу, пользователь мог отключиться
		if self._get_credentials(tenant_id) is None:
			logger.info(f"[RECON] {tenant_id} | биржа отключена во время сверки, результат отброшен")
			return ReconciliationReport(tenant_id, STATUS_SKIPPED_NO_CREDENTIALS)

		snapshot = self.ledger.load_balance_snapshot(tenant_id)
		if snapshot is None:
			# Первый запуск: запоминаем балансы, событий нет
			self.ledger.save_balance_snapshot(tenant_id, balances, portfolio.total)
			logger.info(f"[RECON] {tenant_id} | первый запуск | снимок из {len(balances)} активов")
			return ReconciliationReport(tenant_id, STATUS_INITIALIZED)

		result = reconcile_balances(
			previous_balances=snapshot["balances"],
			current_balances=balances,
			prices=prices,
			positions=self.ledger.load_positions(tenant_id),
			portfolio=portfolio,
			previous_total_value=snapshot["total_value"],
			now=self.clock(),
			threshold_for=self.threshold_for,
		)

		if result.corrupted:
			self._report_debug(tenant_id, f"Ошибка данных, пропущены: {', '.join(result.corrupted)}")

		if not result.changed:
			return ReconciliationReport(tenant_id, STATUS_OK, skipped=result.skipped)

		trade_ids = self.ledger.commit_reconciliation(
			tenant_id, result.positions, result.closed_trades, result.balances, portfolio.total
		)
		events = _attach_trade_ids(result.events, trade_ids)

		for event in events:
			logger.info(f"[RECON] {tenant_id} | {describe(event)}")
			if self.event_sink is not None:
				self._fire(self.event_sink.on_trading_event(tenant_id, event), event.kind)

		return ReconciliationReport(tenant_id, STATUS_OK, events=events, skipped=result.skipped)

	async def unlink_tenant(self, tenant_id) -> bool:
		"""
		Удаляет пользователя и все его данные под той же блокировкой, что и сверка.
		False, если сверка сейчас выполняется: удаление нужно повторить.
		"""
		tenant_id = str(tenant_id)
		async with self.locks.hold(tenant_id) as acquired:
			if not acquired:
				logger.info(f"[RECON] {tenant_id} | отключение отложено, идёт сверка")
				return False
			self.ledger.delete_tenant(tenant_id)
			return True

	async def refresh_watermarks(self, tenant_id) -> int:
		"""
		Обновляет максимум/минимум цены открытых позиций.
		Возвращает число изменённых позиций.
		"""
		tenant_id = str(tenant_id)
		async with self.locks.hold(tenant_id) as acquired:
			if not acquired:
				return 0
			positions = self.ledger.load_positions(tenant_id)
			if not positions:
				return 0
			try:
				prices = await self._call(self.oracle.get_prices())
			except (TransientUpstreamError, asyncio.TimeoutError) as e:
				logger.warning(f"[WATERMARK] {tenant_id} | цены недоступны | {e}")
				return 0

			updated = {}
			changed = 0
			for asset, position in positions.items():
				price = _resolve_price(prices, asset)
				new_position = update_watermarks(position, price) if price is not None else position
				if new_position != position:
					changed += 1
				updated[asset] = new_position

			if changed:
				self.ledger.save_positions(tenant_id, updated)
			return changed


def _attach_trade_ids(events: List[TradingEvent], trade_ids: List[str]) -> List[TradingEvent]:
	"""Проставляет id сохранённых закрытых сделок в события закрытия (в том же порядке)"""
	ids = iter(trade_ids)
	attached = []
	for event in events:
		if isinstance(event, CloseEvent):
			event = replace(event, closed_trade=replace(event.closed_trade, id=next(ids)))
		attached.append(event)
	return attached
