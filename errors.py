"""
Исключения бота

TransientUpstreamError и его наследники прерывают тик пользователя без
изменения сохранённого состояния; следующий тик повторит попытку.
"""


class BotError(Exception):
	"""Базовое исключение бота"""


class TransientUpstreamError(BotError):
	"""Временный сбой биржи, сети или таймаут"""


class PriceFeedError(TransientUpstreamError):
	"""Не удалось получить цены"""


class BalanceFetchError(TransientUpstreamError):
	"""Не удалось получить балансы или портфель"""


class CredentialError(BotError):
	"""Ключи биржи отсутствуют или недействительны"""


class LedgerCorruptionError(BotError):
	"""Недопустимое значение при пересчёте позиции (NaN, отрицательное количество и т.п.)"""

	def __init__(self, asset: str, message: str):
		super().__init__(f"{asset}: {message}")
		self.asset = asset
