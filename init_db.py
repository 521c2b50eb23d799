"""
Инициализация базы данных
Создаёт все таблицы и выводит сводку по пользователям
"""
from database import db
from logger import logger


def init_database(manager=db):
	"""Создать все таблицы в БД"""
	logger.info("=== ИНИЦИАЛИЗАЦИЯ БД ===")

	try:
		manager.create_tables()

		tenants = manager.list_tenants()
		logger.info(f"👥 Пользователей с подключённой биржей: {len(tenants)}")

		open_positions = sum(len(manager.load_positions(t)) for t in tenants)
		logger.info(f"💼 Открытых позиций: {open_positions}")

		logger.info(f"📍 БД: {manager.database_url}")

	except Exception as e:
		logger.error(f"❌ Ошибка инициализации БД: {e}")
		raise


if __name__ == "__main__":
	init_database()
