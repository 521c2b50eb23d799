"""
Простые тесты для проверки работы БД
"""
from datetime import datetime, timedelta

from database import DatabaseManager
from logger import logger
from position import open_position, apply_sell, close_position

NOW = datetime(2024, 3, 1, 10, 0, 0)


def make_db():
	manager = DatabaseManager("sqlite://")
	manager.create_tables()
	return manager


def make_trade(asset, buy, sell, days=1):
	position = apply_sell(open_position(asset, 1.0, buy, NOW), 1.0, sell)
	return close_position(position, sell, NOW + timedelta(days=days))


def test_credentials_and_settings():
	"""Тест ключей и настроек пользователя"""
	logger.info("Тест: ключи и настройки")
	db = make_db()

	assert db.get_credentials("1") is None
	db.save_credentials(1, "key", "secret", "pass")
	assert db.get_credentials("1") == {"api_key": "key", "api_secret": "secret", "passphrase": "pass"}
	assert db.list_tenants() == ["1"]

	settings = db.get_settings("1")
	assert settings["daily_summary"] is True
	assert settings["debug_mode"] is False

	settings["debug_mode"] = True
	db.save_settings("1", settings)
	assert db.get_settings("1")["debug_mode"] is True

	db.save_capital("1", 1500.0)
	assert db.get_capital("1") == 1500.0

	logger.info("✅ Ключи и настройки: OK")


def test_positions_overwrite_and_isolation():
	"""Тест полной перезаписи позиций и изоляции пользователей"""
	logger.info("Тест: позиции")
	db = make_db()

	db.save_positions("1", {
		"BTC": open_position("BTC", 1.0, 30000, NOW),
		"ETH": open_position("ETH", 2.0, 2000, NOW),
	})
	db.save_positions("2", {"SOL": open_position("SOL", 10, 20, NOW)})

	db.save_positions("1", {"BTC": open_position("BTC", 0.5, 31000, NOW)})
	positions = db.load_positions("1")
	assert set(positions) == {"BTC"}, f"Ожидался только BTC: {positions}"
	assert positions["BTC"].total_amount_bought == 0.5
	assert positions["BTC"].open_date == NOW

	assert set(db.load_positions("2")) == {"SOL"}
	assert db.load_positions("3") == {}

	logger.info("✅ Позиции: OK")


def test_closed_trades_and_performance():
	"""Тест истории закрытых сделок и статистики по активу"""
	logger.info("Тест: закрытые сделки")
	db = make_db()

	first_id = db.append_closed_trade("1", make_trade("SOL", 20, 25, days=2))
	db.append_closed_trade("1", make_trade("SOL", 25, 22, days=4))
	db.append_closed_trade("1", make_trade("BTC", 30000, 31000))
	db.append_closed_trade("2", make_trade("SOL", 10, 100))

	trades = db.get_closed_trades("1")
	assert len(trades) == 3
	# Новые первыми
	assert [t.asset for t in trades] == ["SOL", "SOL", "BTC"]
	assert trades[1].id == first_id
	assert len(db.get_closed_trades("1", asset="SOL")) == 2

	stats = db.get_historical_performance("1", "SOL")
	assert stats["trade_count"] == 2
	assert stats["winning_trades"] == 1
	assert stats["losing_trades"] == 1
	assert abs(stats["realized_pnl"] - 2.0) < 1e-9
	assert stats["avg_duration"] == 3

	empty = db.get_historical_performance("1", "DOGE")
	assert empty["trade_count"] == 0

	logger.info("✅ Закрытые сделки: OK")


def test_snapshot_and_commit():
	"""Тест снимка балансов и общей транзакции сверки"""
	logger.info("Тест: снимок и коммит сверки")
	db = make_db()

	assert db.load_balance_snapshot("1") is None
	db.save_balance_snapshot("1", {}, 0.0)
	assert db.load_balance_snapshot("1") == {"balances": {}, "total_value": 0.0}

	ids = db.commit_reconciliation(
		"1",
		{"ETH": open_position("ETH", 1.0, 2000, NOW)},
		[make_trade("SOL", 20, 25)],
		{"ETH": 1.0},
		2000.0,
	)
	assert len(ids) == 1
	assert db.get_closed_trades("1")[0].id == ids[0]
	assert set(db.load_positions("1")) == {"ETH"}
	assert db.load_balance_snapshot("1") == {"balances": {"ETH": 1.0}, "total_value": 2000.0}

	logger.info("✅ Снимок и коммит: OK")


def test_alerts_and_virtual_trades():
	"""Тест алертов и виртуальных сделок"""
	logger.info("Тест: алерты")
	db = make_db()

	alert_id = db.add_price_alert("1", "BTC", "above", 70000)
	assert db.get_price_alerts("1")[0]["id"] == alert_id
	db.delete_price_alert("2", alert_id)
	assert len(db.get_price_alerts("1")) == 1
	db.delete_price_alert("1", alert_id)
	assert db.get_price_alerts("1") == []

	assert db.get_movement_settings("1") == {"global": 5.0, "overrides": {}}
	db.save_movement_settings("1", 3.0, {"PEPE": 10.0})
	assert db.get_movement_settings("1") == {"global": 3.0, "overrides": {"PEPE": 10.0}}

	trade_id = db.add_virtual_trade("1", "ETH", 2000, 2200, 1900, 100)
	assert [t["id"] for t in db.get_active_virtual_trades("1")] == [trade_id]
	db.update_virtual_trade_status("1", trade_id, "completed", 2210)
	assert db.get_active_virtual_trades("1") == []

	logger.info("✅ Алерты: OK")


def test_history_retention():
	"""Тест истории портфеля: один снимок на метку, старые удаляются"""
	db = make_db()

	for day in range(1, 6):
		db.record_history("1", "daily", f"2024-03-0{day}", 1000 + day, limit=3)
	db.record_history("1", "daily", "2024-03-05", 2000, limit=3)

	history = db.get_history("1", "daily")
	assert [h["label"] for h in history] == ["2024-03-03", "2024-03-04", "2024-03-05"]
	assert history[-1]["total_value"] == 2000
	assert db.get_history("1", "hourly") == []


def test_delete_tenant():
	"""Тест полного удаления данных пользователя"""
	db = make_db()
	db.save_credentials("1", "k", "s", "p")
	db.save_credentials("2", "k", "s", "p")
	db.save_positions("1", {"BTC": open_position("BTC", 1.0, 30000, NOW)})
	db.save_positions("2", {"BTC": open_position("BTC", 1.0, 30000, NOW)})
	db.save_balance_snapshot("1", {"BTC": 1.0}, 30000)
	db.append_closed_trade("1", make_trade("SOL", 20, 25))
	db.add_price_alert("1", "BTC", "below", 20000)

	db.delete_tenant("1")

	assert db.get_credentials("1") is None
	assert db.load_positions("1") == {}
	assert db.load_balance_snapshot("1") is None
	assert db.get_closed_trades("1") == []
	assert db.get_price_alerts("1") == []
	assert set(db.load_positions("2")) == {"BTC"}
	assert db.list_tenants() == ["2"]
