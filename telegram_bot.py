import aiohttp
from telegram.ext import Application, CommandHandler

from config import TELEGRAM_TOKEN, OWNER_CHAT_ID, TARGET_CHANNEL_ID
from background_jobs import BackgroundJobs
from database import db
from logger import logger, log_important
from notifier import EventNotifier
from okx_client import OKXClient
from price_oracle import PriceOracle
from reconciliation import ReconciliationEngine
from scheduler import JobScheduler
from telegram_handlers import TelegramHandlers
from tenant_lock import TenantLockRegistry


class TelegramBot:
	def __init__(self, token: str = TELEGRAM_TOKEN, ledger=db):
		if token is None:
			raise RuntimeError("TELEGRAM_TOKEN not set")
		self.token = token
		self.ledger = ledger
		self.locks = TenantLockRegistry()

		if OWNER_CHAT_ID:
			logger.info(f"Владелец бота: {OWNER_CHAT_ID}")
		if not TARGET_CHANNEL_ID:
			logger.info("TARGET_CHANNEL_ID не задан - публикация в канал отключена")

		# Создаются в post_init, когда уже есть event loop
		self.session = None
		self.exchange = None
		self.oracle = None
		self.notifier = None
		self.engine = None
		self.jobs = None
		self.scheduler = None

		# Инициализируем обработчики команд ПЕРЕД регистрацией
		self.handlers = TelegramHandlers(self)

		self.application = Application.builder().token(self.token).build()
		self._register_handlers()

	def _register_handlers(self):
		commands = {
			"start": self.handlers.start,
			"help": self.handlers.help,
			"link": self.handlers.link,
			"unlink": self.handlers.unlink,
			"reconcile": self.handlers.reconcile,
			"portfolio": self.handlers.portfolio,
			"positions": self.handlers.positions,
			"history": self.handlers.history,
			"pnl": self.handlers.pnl,
			"capital": self.handlers.capital,
			"alert": self.handlers.alert,
			"alerts": self.handlers.alerts,
			"movement": self.handlers.movement,
			"virtual": self.handlers.virtual,
			"virtuals": self.handlers.virtuals,
			"settings": self.handlers.settings,
			"debug": self.handlers.debug,
		}
		for name, callback in commands.items():
			self.application.add_handler(CommandHandler(name, callback))

	def _build_services(self):
		self.session = aiohttp.ClientSession()
		self.exchange = OKXClient(self.session)
		self.oracle = PriceOracle(self.exchange.get_market_prices)
		self.notifier = EventNotifier(self.application.bot, self.ledger)
		self.engine = ReconciliationEngine(
			ledger=self.ledger,
			exchange=self.exchange,
			oracle=self.oracle,
			event_sink=self.notifier,
			locks=self.locks,
			debug_reporter=self.notifier.send_debug,
		)
		self.jobs = BackgroundJobs(self.ledger, self.exchange, self.oracle, self.notifier)
		self.scheduler = JobScheduler(self.ledger, self.engine, self.jobs)

	# -------------------------
	# Запуск бота
	# -------------------------
	async def _post_init(self, application: Application):
		self._build_services()
		self.scheduler.start()
		log_important(f"Фоновые задачи запущены, пользователей: {len(self.ledger.list_tenants())}")
		if OWNER_CHAT_ID:
			await self.notifier.send_message(OWNER_CHAT_ID, "🚀 Бот запущен")

	async def _post_shutdown(self, application: Application):
		if self.scheduler is not None:
			await self.scheduler.stop()
		if self.session is not None:
			await self.session.close()
		logger.info("Бот остановлен")

	def run(self):
		logger.info("Запуск бота...")
		self.application.post_init = self._post_init
		self.application.post_shutdown = self._post_shutdown
		self.application.run_polling()
