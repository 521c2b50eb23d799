"""
Тесты фоновых задач: алерты, движение цены, виртуальные сделки, история
"""
import asyncio
from datetime import datetime

from background_jobs import BackgroundJobs, detect_movements, evaluate_virtual_trade, is_alert_triggered
from database import DatabaseManager
from scheduler import JobScheduler
from telegram_formatters import TelegramFormatters
from test_reconciliation import FakeExchange, FakeOracle

TENANT = "1001"


class FakeNotifier:
	def __init__(self):
		self.formatters = TelegramFormatters()
		self.messages = []

	async def notify(self, tenant_id, message, to_channel=False, channel_message=None):
		self.messages.append((tenant_id, message, to_channel))
		return True


def make_jobs(balances=None, prices=None, now=datetime(2024, 3, 5, 14, 30)):
	ledger = DatabaseManager("sqlite://")
	ledger.create_tables()
	ledger.save_credentials(TENANT, "key", "secret", "pass")
	notifier = FakeNotifier()
	oracle = FakeOracle(prices)
	jobs = BackgroundJobs(ledger, FakeExchange(balances), oracle, notifier, clock=lambda: now)
	return jobs, ledger, notifier, oracle


def test_alert_conditions():
	assert is_alert_triggered({"condition": "above", "target_price": 100}, 101)
	assert not is_alert_triggered({"condition": "above", "target_price": 100}, 100)
	assert is_alert_triggered({"condition": "below", "target_price": 100}, 99)


def test_price_alert_fires_once():
	jobs, ledger, notifier, oracle = make_jobs(prices={"BTC": 71000})
	ledger.add_price_alert(TENANT, "BTC", "above", 70000)
	ledger.add_price_alert(TENANT, "BTC", "below", 60000)

	assert asyncio.run(jobs.check_price_alerts(TENANT)) == 1
	assert len(notifier.messages) == 1
	assert [a["condition"] for a in ledger.get_price_alerts(TENANT)] == ["below"]

	assert asyncio.run(jobs.check_price_alerts(TENANT)) == 0


def test_detect_movements():
	movements, tracker = detect_movements({"BTC": 100.0}, {"BTC": 106.0, "ETH": 50.0}, 5.0, {})
	assert len(movements) == 1
	asset, change, old_price, price = movements[0]
	assert (asset, old_price, price) == ("BTC", 100.0, 106.0)
	assert abs(change - 6.0) < 1e-9
	assert tracker == {"BTC": 106.0, "ETH": 50.0}

	movements, tracker = detect_movements({"BTC": 100.0}, {"BTC": 106.0}, 5.0, {"BTC": 10.0})
	assert movements == []
	assert tracker == {"BTC": 100.0}


def test_movement_alert_seeds_then_notifies():
	jobs, ledger, notifier, oracle = make_jobs({"SOL": 10, "USDT": 100}, {"SOL": 20})

	assert asyncio.run(jobs.check_price_movements(TENANT)) == 0
	tracker = ledger.get_price_tracker(TENANT)
	assert tracker["assets"] == {"SOL": 20}
	assert tracker["total_portfolio_value"] == 300

	oracle.prices = {"SOL": 22}
	assert asyncio.run(jobs.check_price_movements(TENANT)) == 1
	assert notifier.messages[0][2] is True
	assert ledger.get_price_tracker(TENANT)["assets"] == {"SOL": 22}


def test_virtual_trade_outcomes():
	trade = {"entry_price": 100.0, "target_price": 110.0, "stop_loss_price": 95.0, "virtual_amount": 1000.0}
	assert evaluate_virtual_trade(trade, 105) is None
	status, pnl = evaluate_virtual_trade(trade, 110)
	assert status == "completed" and abs(pnl - 100) < 1e-9
	status, pnl = evaluate_virtual_trade(trade, 95)
	assert status == "stopped" and abs(pnl + 50) < 1e-9


def test_virtual_trade_monitor():
	jobs, ledger, notifier, oracle = make_jobs(prices={"ETH": 2250, "BTC": 30000})
	ledger.add_virtual_trade(TENANT, "ETH", 2000, 2200, 1900, 100)
	ledger.add_virtual_trade(TENANT, "BTC", 29000, 35000, 25000, 100)

	assert asyncio.run(jobs.monitor_virtual_trades(TENANT)) == 1
	assert [t["asset"] for t in ledger.get_active_virtual_trades(TENANT)] == ["BTC"]
	assert "Цель достигнута" in notifier.messages[0][1]


def test_history_and_daily_report():
	jobs, ledger, notifier, oracle = make_jobs({"BTC": 0.5, "USDT": 1000}, {"BTC": 6000})
	ledger.record_history(TENANT, "daily", "2024-03-04", 3500, limit=35)

	assert asyncio.run(jobs.record_hourly_snapshot(TENANT)) == 4000
	assert ledger.get_history(TENANT, "hourly")[0]["label"] == "2024-03-05T14"

	assert asyncio.run(jobs.send_daily_report(TENANT))
	assert [h["label"] for h in ledger.get_history(TENANT, "daily")] == ["2024-03-04", "2024-03-05"]
	assert "Дневной отчёт" in notifier.messages[-1][1]

	settings = ledger.get_settings(TENANT)
	settings["daily_summary"] = False
	ledger.save_settings(TENANT, settings)
	assert not asyncio.run(jobs.send_daily_report(TENANT))


def test_jobs_skip_unlinked_tenant():
	jobs, ledger, notifier, oracle = make_jobs({"BTC": 1}, {"BTC": 30000})
	assert asyncio.run(jobs.record_hourly_snapshot("2002")) is None
	assert asyncio.run(jobs.check_price_movements("2002")) == 0


def test_scheduler_isolates_tenant_failures():
	ledger = DatabaseManager("sqlite://")
	ledger.create_tables()
	for tenant in ("1", "2", "3"):
		ledger.save_credentials(tenant, "k", "s", "p")
	scheduler = JobScheduler(ledger, engine=None, jobs=None, inter_tenant_delay=0)
	seen = []

	async def job(tenant_id):
		seen.append(tenant_id)
		if tenant_id == "2":
			raise RuntimeError("boom")

	asyncio.run(scheduler.run_once("test", job))
	assert sorted(seen) == ["1", "2", "3"]

	seen.clear()
	scheduler.max_parallel = 2
	asyncio.run(scheduler.run_once("test", job))
	assert sorted(seen) == ["1", "2", "3"]
