"""
Тесты статистики портфеля
"""
from datetime import datetime

from analytics import calculate_performance_stats, calculate_pnl_summary
from position import open_position


def test_performance_needs_two_snapshots():
	assert calculate_performance_stats([]) is None
	assert calculate_performance_stats([{"total_value": 100}]) is None


def test_performance_stats_and_drawdown():
	history = [{"total_value": v} for v in (100, 120, 90, 110)]
	stats = calculate_performance_stats(history)

	assert stats["start_value"] == 100
	assert stats["end_value"] == 110
	assert stats["change"] == 10
	assert abs(stats["change_percent"] - 10) < 1e-9
	assert stats["max_value"] == 120
	assert stats["min_value"] == 90
	assert stats["avg_value"] == 105
	# 120 -> 90
	assert abs(stats["max_drawdown_percent"] - 25) < 1e-9


def test_pnl_summary():
	now = datetime(2024, 1, 1)
	positions = {
		"BTC": open_position("BTC", 1, 30000, now),
		"ETH": open_position("ETH", 2, 2000, now),
		"ADA": open_position("ADA", 100, 1, now),
	}
	summary = calculate_pnl_summary(
		positions,
		balances={"BTC": 1, "ETH": 2},
		prices={"BTC": 33000, "ETH": 1900},
		total_value=36800,
		capital=40000,
	)

	assert [row["asset"] for row in summary["positions"]] == ["BTC", "ETH"]
	assert summary["unrealized_pnl"] == 2800
	assert abs(summary["positions"][0]["pnl_percent"] - 10) < 1e-9
	assert summary["capital_pnl"] == -3200
	assert abs(summary["capital_pnl_percent"] + 8) < 1e-9


def test_pnl_summary_without_capital():
	summary = calculate_pnl_summary({}, {}, {}, 0.0, 0.0)
	assert summary["positions"] == []
	assert summary["unrealized_pnl"] == 0.0
	assert summary["capital_pnl"] is None
