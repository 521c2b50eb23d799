"""
Отправка уведомлений в Telegram

Доставка не подтверждается движку сверки: ошибка отправки логируется и
не откатывает уже сохранённое состояние.
"""

import asyncio
from typing import Optional

from telegram.error import TimedOut, NetworkError

from config import TARGET_CHANNEL_ID, TELEGRAM_SEND_RETRIES
from events import TradingEvent
from logger import logger
from telegram_formatters import TelegramFormatters


class EventNotifier:
	"""Получатель торговых событий и прочих уведомлений пользователя"""

	def __init__(self, bot, ledger, channel_id: Optional[str] = TARGET_CHANNEL_ID, max_retries: int = TELEGRAM_SEND_RETRIES):
		self.bot = bot
		self.ledger = ledger
		self.channel_id = channel_id
		self.max_retries = max_retries
		self.formatters = TelegramFormatters()

	async def send_message(self, chat_id, message: str) -> bool:
		"""Отправка сообщения с retry и экспоненциальным backoff"""
		for attempt in range(self.max_retries):
			try:
				await self.bot.send_message(chat_id=chat_id, text=message, parse_mode="HTML")
				return True
			except (TimedOut, NetworkError) as e:
				if attempt < self.max_retries - 1:
					wait_time = 2 ** attempt
					logger.warning(f"Ошибка отправки (попытка {attempt + 1}/{self.max_retries}): {e}. Повтор через {wait_time}с")
					await asyncio.sleep(wait_time)
				else:
					logger.error(f"Не удалось отправить сообщение после {self.max_retries} попыток: {e}")
			except Exception as e:
				logger.error(f"Неожиданная ошибка отправки сообщения: {e}")
				break
		return False

	async def notify(self, tenant_id, message: str, to_channel: bool = False, channel_message: str = None) -> bool:
		"""Сообщение пользователю и, если включено, копия в канал"""
		sent = await self.send_message(tenant_id, message)
		if to_channel and self.channel_id:
			settings = self.ledger.get_settings(tenant_id)
			if settings.get("auto_post_to_channel"):
				await self.send_message(self.channel_id, channel_message or message)
		return sent

	async def on_trading_event(self, tenant_id, event: TradingEvent):
		await self.notify(
			tenant_id,
			self.formatters.format_event(event),
			to_channel=True,
			channel_message=self.formatters.format_event(event, public=True),
		)

	async def send_debug(self, tenant_id, message: str):
		"""Диагностика только для пользователей с включённым debug_mode"""
		settings = self.ledger.get_settings(tenant_id)
		if settings.get("debug_mode"):
			await self.send_message(tenant_id, self.formatters.format_debug(message))
