"""
Позиция по активу и закрытая сделка

AssetPosition неизменяема: каждое изменение возвращает новый объект.
Себестоимость считается по средневзвешенной цене покупки (не FIFO/LIFO).
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from errors import LedgerCorruptionError


@dataclass(frozen=True)
class AssetPosition:
	"""Открытая позиция пользователя по одному активу"""
	asset: str
	total_amount_bought: float
	total_cost: float
	avg_buy_price: float
	total_amount_sold: float
	realized_value: float
	highest_price: float
	lowest_price: float
	open_date: datetime

	@property
	def open_amount(self) -> float:
		"""Количество, которое ещё не продано"""
		return max(self.total_amount_bought - self.total_amount_sold, 0.0)

	def unrealized_pnl(self, price: float, holding: float) -> float:
		"""Нереализованный PnL текущего остатка по средней цене покупки"""
		return (price - self.avg_buy_price) * holding


@dataclass(frozen=True)
class ClosedTrade:
	"""Полностью закрытая позиция. Создаётся один раз и больше не меняется."""
	asset: str
	avg_buy_price: float
	avg_sell_price: float
	pnl: float
	pnl_percent: float
	duration_days: float
	highest_price: float
	lowest_price: float
	quantity: float
	total_cost: float
	realized_value: float
	written_off_amount: float
	open_date: datetime
	closed_at: datetime
	id: Optional[str] = None


def _is_valid_number(value: float) -> bool:
	return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


def validate_position(position: AssetPosition) -> AssetPosition:
	"""Проверяет все числовые поля позиции перед записью в леджер"""
	for field_name in (
		"total_amount_bought", "total_cost", "avg_buy_price",
		"total_amount_sold", "realized_value", "highest_price", "lowest_price"
	):
		value = getattr(position, field_name)
		if not _is_valid_number(value):
			raise LedgerCorruptionError(position.asset, f"недопустимое значение {field_name}={value}")

	if position.total_amount_bought <= 0:
		raise LedgerCorruptionError(position.asset, "открытая позиция без покупок")

	# Небольшой допуск на погрешность float
	if position.total_amount_sold > position.total_amount_bought * (1 + 1e-9):
		raise LedgerCorruptionError(
			position.asset,
			f"продано {position.total_amount_sold} больше купленного {position.total_amount_bought}"
		)
	return position


def open_position(asset: str, amount: float, price: float, now: datetime) -> AssetPosition:
	"""Новая позиция после первой покупки"""
	return validate_position(AssetPosition(
		asset=asset,
		total_amount_bought=amount,
		total_cost=amount * price,
		avg_buy_price=price,
		total_amount_sold=0.0,
		realized_value=0.0,
		highest_price=price,
		lowest_price=price,
		open_date=now,
	))


def update_watermarks(position: AssetPosition, price: float) -> AssetPosition:
	"""Обновляет максимум/минимум цены за время жизни позиции"""
	if not math.isfinite(price) or price <= 0:
		return position
	if price <= position.highest_price and price >= position.lowest_price:
		return position
	return replace(
		position,
		highest_price=max(position.highest_price, price),
		lowest_price=min(position.lowest_price, price),
	)


def apply_buy(position: AssetPosition, amount: float, price: float) -> AssetPosition:
	"""Докупка: пересчёт средневзвешенной цены"""
	total_amount_bought = position.total_amount_bought + amount
	total_cost = position.total_cost + amount * price
	updated = replace(
		position,
		total_amount_bought=total_amount_bought,
		total_cost=total_cost,
		avg_buy_price=total_cost / total_amount_bought,
	)
	return validate_position(update_watermarks(updated, price))


def apply_sell(position: AssetPosition, amount: float, price: float) -> AssetPosition:
	"""
	Продажа части позиции. Средняя цена покупки не меняется.

	Зачитывается не больше открытого количества: монеты, которые были на
	счёте до начала отслеживания, не увеличивают totalAmountSold сверх
	totalAmountBought.
	"""
	sold = min(amount, position.open_amount)
	updated = replace(
		position,
		total_amount_sold=position.total_amount_sold + sold,
		realized_value=position.realized_value + sold * price,
	)
	return validate_position(update_watermarks(updated, price))


def average_sell_price(position: AssetPosition, fallback_price: float) -> float:
	if position.total_amount_sold <= 0:
		return fallback_price
	return position.realized_value / position.total_amount_sold


def pnl_by_average_prices(position: AssetPosition, fallback_price: float) -> float:
	"""(средняя продажа - средняя покупка) * всё купленное количество"""
	return (average_sell_price(position, fallback_price) - position.avg_buy_price) * position.total_amount_bought


def close_position(position: AssetPosition, price: float, now: datetime) -> ClosedTrade:
	"""
	Закрывает позицию после продажи, оставившей только пыль.

	PnL = realizedValue - totalCost. Непроданный остаток (пыль ниже порога
	существенности) списывается по нулевой стоимости и записывается в
	written_off_amount. При полностью проданной позиции результат совпадает
	с (avgSell - avgBuy) * totalAmountBought.
	"""
	avg_sell = average_sell_price(position, price)
	pnl = position.realized_value - position.total_cost
	pnl_percent = (pnl / position.total_cost * 100) if position.total_cost > 0 else 0.0
	duration_days = (now - position.open_date).total_seconds() / 86400

	return ClosedTrade(
		asset=position.asset,
		avg_buy_price=position.avg_buy_price,
		avg_sell_price=avg_sell,
		pnl=pnl,
		pnl_percent=pnl_percent,
		duration_days=max(duration_days, 0.0),
		highest_price=position.highest_price,
		lowest_price=position.lowest_price,
		quantity=position.total_amount_bought,
		total_cost=position.total_cost,
		realized_value=position.realized_value,
		written_off_amount=position.open_amount,
		open_date=position.open_date,
		closed_at=now,
	)
