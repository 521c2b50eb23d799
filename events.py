"""
Торговые события, которые движок сверки передаёт уведомителю.
Не сохраняются: одно событие обрабатывается один раз и отбрасывается.
"""

from dataclasses import dataclass
from typing import Union

from position import AssetPosition, ClosedTrade

EVENT_BUY = "BUY"
EVENT_SELL = "SELL"
EVENT_CLOSE = "CLOSE"


@dataclass(frozen=True)
class BuyEvent:
	asset: str
	delta: float
	price: float
	trade_value: float
	previous_total_value: float
	position: AssetPosition
	new_total_value: float
	asset_weight_percent: float
	cash_percent: float
	kind: str = EVENT_BUY

	@property
	def is_new_position(self) -> bool:
		return self.position.total_amount_bought == self.delta


@dataclass(frozen=True)
class SellEvent:
	asset: str
	delta: float
	price: float
	trade_value: float
	previous_total_value: float
	position: AssetPosition
	remaining_amount: float
	kind: str = EVENT_SELL

	@property
	def realized_pnl(self) -> float:
		"""PnL проданной части по средней цене покупки"""
		return (self.price - self.position.avg_buy_price) * abs(self.delta)


@dataclass(frozen=True)
class CloseEvent:
	asset: str
	delta: float
	price: float
	trade_value: float
	previous_total_value: float
	position: AssetPosition
	closed_trade: ClosedTrade
	kind: str = EVENT_CLOSE

	@property
	def highest_price(self) -> float:
		return self.closed_trade.highest_price

	@property
	def lowest_price(self) -> float:
		return self.closed_trade.lowest_price


TradingEvent = Union[BuyEvent, SellEvent, CloseEvent]


def portfolio_weights(asset_value: float, cash_value: float, total_value: float) -> tuple:
	"""Доля актива и кэша в портфеле после сделки (%)"""
	if total_value <= 0:
		return 0.0, 0.0
	return asset_value / total_value * 100, cash_value / total_value * 100


def describe(event: TradingEvent) -> str:
	"""Короткое описание события для логов"""
	return f"{event.kind} {event.asset} Δ{event.delta:+.8g} @ {event.price:.8g} (${event.trade_value:.2f})"

