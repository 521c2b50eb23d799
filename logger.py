import os
import time
import logging

from config import LOG_DIR, LOG_LEVEL, COMPACT_LOGGING

os.makedirs(LOG_DIR, exist_ok=True)

# Компактные форматы логов
COMPACT_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s — %(name)s — %(levelname)s — %(message)s"


def get_log_filename():
	return os.path.join(LOG_DIR, time.strftime("log_%Y%m%d_%H%M%S.txt"))


class TimedFileHandler(logging.FileHandler):
	"""Файловый хендлер, который открывает новый файл каждые interval секунд"""

	def __init__(self, interval=8*60*60, *args, **kwargs):
		self.interval = interval
		self.start_time = time.time()
		super().__init__(get_log_filename(), encoding="utf-8", *args, **kwargs)

	def emit(self, record):
		if time.time() - self.start_time > self.interval:
			self.start_time = time.time()
			self.baseFilename = os.path.abspath(get_log_filename())
			if self.stream:
				self.stream.close()
			self.stream = self._open()
		super().emit(record)


class CompactFormatter(logging.Formatter):
	"""Компактный форматтер для консоли"""

	def format(self, record):
		message = record.getMessage()

		# [RECON] строки сверки: оставляем пользователя и итог
		if message.startswith("[RECON]") and "|" in message:
			parts = [p.strip() for p in message.split("|")]
			message = " | ".join(parts[:3])

		if len(message) > 120:
			message = message[:117] + "..."

		record = logging.makeLogRecord(record.__dict__)
		record.msg = message
		record.args = None
		return super().format(record)


logger = logging.getLogger("okx_position_bot")

for handler in logger.handlers[:]:
	logger.removeHandler(handler)

logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

console_handler = logging.StreamHandler()
if COMPACT_LOGGING:
	console_handler.setFormatter(CompactFormatter(COMPACT_FORMAT))
else:
	console_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT))
logger.addHandler(console_handler)

# В файл всегда пишем подробно
file_handler = TimedFileHandler()
file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT))
logger.addHandler(file_handler)


def log_important(message: str, level: str = "INFO"):
	"""Логирует важные события"""
	getattr(logger, level.lower())(f"🔔 {message}")


def log_error(message: str, error: Exception = None):
	"""Логирует ошибки"""
	if error:
		logger.error(f"❌ {message}: {error}")
	else:
		logger.error(f"❌ {message}")
