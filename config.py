import os
import dotenv

dotenv.load_dotenv()

# ====================================================================
# TELEGRAM BOT
# ====================================================================
TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")
OWNER_CHAT_ID = os.getenv("OWNER_CHAT_ID")  # ID администратора (необязательно)
TARGET_CHANNEL_ID = os.getenv("TARGET_CHANNEL_ID")  # Публичный канал для автопостинга

# Повторные попытки отправки сообщений (экспоненциальный backoff: 1s, 2s, 4s)
TELEGRAM_SEND_RETRIES = int(os.getenv("TELEGRAM_SEND_RETRIES", "3"))

# ====================================================================
# ЛОГИРОВАНИЕ
# ====================================================================
COMPACT_LOGGING = os.getenv("COMPACT_LOGGING", "true").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR
LOG_DIR = os.getenv("LOG_DIR", "logs")

# ====================================================================
# БАЗА ДАННЫХ
# ====================================================================
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/positions.db")

# ====================================================================
# БИРЖА (OKX)
# ====================================================================
OKX_BASE_URL = os.getenv("OKX_BASE_URL", "https://www.okx.com")
QUOTE_ASSET = "USDT"  # Котируемая валюта торговых пар (BTC-USDT)
CASH_ASSET = "USDT"  # Кэш: никогда не отслеживается как позиция

# Таймаут для внешних запросов (секунд)
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "20"))

# ====================================================================
# СВЕРКА БАЛАНСОВ
# ====================================================================
# Минимальный номинал изменения баланса (USD), ниже которого дельта считается шумом
MATERIALITY_THRESHOLD = float(os.getenv("MATERIALITY_THRESHOLD", "1.0"))

# Переопределения порога по активам: "PEPE:5,SHIB:5"
MATERIALITY_OVERRIDES = {
	item.split(":")[0].strip().upper(): float(item.split(":")[1])
	for item in os.getenv("MATERIALITY_OVERRIDES", "").split(",")
	if ":" in item
}

# Кэш цен (мс)
PRICE_CACHE_TTL_MS = int(os.getenv("PRICE_CACHE_TTL_MS", "15000"))

# ====================================================================
# ФОНОВЫЕ ЗАДАЧИ (секунды)
# ====================================================================
BALANCE_CHECK_INTERVAL = 60
WATERMARK_INTERVAL = 60
PRICE_ALERT_INTERVAL = 30
PRICE_MOVEMENT_INTERVAL = 60
VIRTUAL_TRADE_INTERVAL = 30
HOURLY_JOB_INTERVAL = 60 * 60
DAILY_JOB_INTERVAL = 24 * 60 * 60

# Пауза между пользователями внутри одного тика (лимиты биржи)
INTER_TENANT_DELAY = float(os.getenv("INTER_TENANT_DELAY", "0.5"))

# Сколько пользователей обрабатывать параллельно (1 = последовательно)
MAX_PARALLEL_TENANTS = int(os.getenv("MAX_PARALLEL_TENANTS", "1"))

# Случайный сдвиг старта задач, чтобы они не срабатывали одновременно
JOB_START_JITTER = 5.0

# ====================================================================
# УВЕДОМЛЕНИЯ И ИСТОРИЯ
# ====================================================================
DEFAULT_MOVEMENT_ALERT_PERCENT = 5.0  # Глобальный порог движения цены (%)
DAILY_HISTORY_LIMIT = 35  # Сколько дневных снимков хранить
HOURLY_HISTORY_LIMIT = 72  # Сколько часовых снимков хранить

# Настройки пользователя по умолчанию
DEFAULT_TENANT_SETTINGS = {
	"daily_summary": True,
	"auto_post_to_channel": False,
	"debug_mode": False,
}


def get_materiality_threshold(asset: str) -> float:
	"""Порог существенности для актива с учётом переопределений"""
	return MATERIALITY_OVERRIDES.get(asset.upper(), MATERIALITY_THRESHOLD)
