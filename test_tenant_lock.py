"""
Тесты блокировки сверки по пользователю
"""
import asyncio

from tenant_lock import TenantLockRegistry


def test_second_acquire_is_rejected():
	locks = TenantLockRegistry()
	assert locks.try_acquire("1")
	assert not locks.try_acquire("1")
	assert locks.try_acquire("2")
	assert locks.skipped == 1

	locks.release("1")
	assert locks.try_acquire("1")


def test_hold_releases_on_exception():
	locks = TenantLockRegistry()

	async def failing():
		async with locks.hold(42) as acquired:
			assert acquired
			assert locks.is_held("42")
			raise ValueError("boom")

	try:
		asyncio.run(failing())
	except ValueError:
		pass
	assert not locks.is_held("42")


def test_hold_releases_on_cancel():
	locks = TenantLockRegistry()

	async def scenario():
		async def slow():
			async with locks.hold("1"):
				await asyncio.sleep(10)

		task = asyncio.ensure_future(slow())
		await asyncio.sleep(0.01)
		assert locks.is_held("1")
		task.cancel()
		await asyncio.gather(task, return_exceptions=True)

	asyncio.run(scenario())
	assert not locks.is_held("1")


def test_hold_not_acquired_does_not_release_owner():
	locks = TenantLockRegistry()
	locks.try_acquire("1")

	async def scenario():
		async with locks.hold("1") as acquired:
			return acquired

	assert asyncio.run(scenario()) is False
	assert locks.is_held("1")
