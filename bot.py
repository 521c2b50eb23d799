#!/usr/bin/env python3
# bot.py — Telegram-бот учёта позиций OKX по изменению балансов.

from config import TELEGRAM_TOKEN
from init_db import init_database
from logger import logger
from telegram_bot import TelegramBot


def main():
	init_database()
	bot = TelegramBot(token=TELEGRAM_TOKEN)
	bot.run()


if __name__ == "__main__":
	try:
		main()
	except Exception as exc:
		logger.exception("Не удалось запустить бота: %s", exc)
		raise
