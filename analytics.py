"""
Статистика по истории стоимости портфеля и позициям
"""

from typing import Dict, List, Any, Optional

import numpy as np
import pandas as pd

from position import AssetPosition


def calculate_performance_stats(history: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
	"""
	Сводка по снимкам портфеля (от старых к новым).

	Returns:
		None, если снимков меньше двух
	"""
	if len(history) < 2:
		return None

	values = pd.Series([h["total_value"] for h in history], dtype=float)
	start_value = float(values.iloc[0])
	end_value = float(values.iloc[-1])

	arr = values.to_numpy()
	running_max = np.maximum.accumulate(arr)
	with np.errstate(divide="ignore", invalid="ignore"):
		drawdowns = np.where(running_max > 0, (arr - running_max) / running_max, 0.0)
	max_drawdown = float(drawdowns.min())

	return {
		"start_value": start_value,
		"end_value": end_value,
		"change": end_value - start_value,
		"change_percent": (end_value - start_value) / start_value * 100 if start_value > 0 else 0.0,
		"max_value": float(values.max()),
		"min_value": float(values.min()),
		"avg_value": float(values.mean()),
		"max_drawdown_percent": abs(max_drawdown) * 100,
	}


def calculate_pnl_summary(
	positions: Dict[str, AssetPosition],
	balances: Dict[str, float],
	prices: Dict[str, float],
	total_value: float,
	capital: float
) -> Dict[str, Any]:
	"""Нереализованный PnL открытых позиций и результат относительно капитала"""
	rows = []
	for asset, position in positions.items():
		price = prices.get(asset)
		holding = balances.get(asset, 0.0)
		if price is None:
			continue
		cost = position.avg_buy_price * holding
		pnl = position.unrealized_pnl(price, holding)
		rows.append({
			"asset": asset,
			"pnl": pnl,
			"pnl_percent": pnl / cost * 100 if cost > 0 else 0.0,
		})

	frame = pd.DataFrame(rows, columns=["asset", "pnl", "pnl_percent"])
	unrealized = float(frame["pnl"].sum()) if not frame.empty else 0.0
	return {
		"positions": frame.sort_values("pnl", ascending=False).to_dict("records"),
		"unrealized_pnl": unrealized,
		"capital_pnl": total_value - capital if capital > 0 else None,
		"capital_pnl_percent": (total_value - capital) / capital * 100 if capital > 0 else None,
	}
