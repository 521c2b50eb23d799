"""
Модуль обработчиков команд Telegram бота
Содержит все команды и их логику
"""

import asyncio
from typing import Dict, Optional

from telegram import Update
from telegram.ext import ContextTypes

from analytics import calculate_performance_stats, calculate_pnl_summary
from config import API_TIMEOUT, DEFAULT_TENANT_SETTINGS
from errors import BotError
from logger import logger
from okx_client import Credentials, Portfolio
from reconciliation import STATUS_OK, STATUS_INITIALIZED, STATUS_SKIPPED_LOCKED, STATUS_SKIPPED_NO_CREDENTIALS
from telegram_formatters import TelegramFormatters

NOT_LINKED = "🔌 Биржа не подключена. Используйте /link API_KEY SECRET PASSPHRASE"


class TelegramHandlers:
    """Класс для обработки команд Telegram бота"""

    def __init__(self, bot_instance):
        self.bot = bot_instance
        self.ledger = bot_instance.ledger
        self.formatters = TelegramFormatters()

    @staticmethod
    def _tenant_id(update: Update) -> str:
        return str(update.effective_chat.id)

    async def _reply(self, update: Update, text: str):
        await update.message.reply_text(text, parse_mode="HTML")

    def _credentials(self, tenant_id: str) -> Optional[Credentials]:
        return Credentials.from_dict(self.ledger.get_credentials(tenant_id))

    async def _asset_prices(self) -> Dict[str, float]:
        prices = await asyncio.wait_for(self.bot.oracle.get_prices(), timeout=API_TIMEOUT)
        return {inst_id.rsplit("-", 1)[0]: ticker.price for inst_id, ticker in prices.items()}

    async def _portfolio(self, credentials: Credentials) -> Portfolio:
        prices = await asyncio.wait_for(self.bot.oracle.get_prices(), timeout=API_TIMEOUT)
        return await asyncio.wait_for(self.bot.exchange.get_portfolio(credentials, prices), timeout=API_TIMEOUT)

    # -------------------------
    # Основные команды
    # -------------------------
    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        text = (
            "<b>👋 Привет! Я слежу за балансами OKX и веду учёт позиций.</b>\n\n"
            "Покупки, продажи и закрытия определяются по изменению балансов, "
            "средняя цена и PnL считаются автоматически.\n\n"
            "Для начала подключите биржу (ключ только на чтение):\n"
            "<code>/link API_KEY SECRET PASSPHRASE</code>\n\n"
            "Все команды: /help"
        )
        await self._reply(update, text)

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        text = (
            "<b>🆘 Помощь:</b>\n\n"
            "<b>Биржа:</b>\n"
            "• /link KEY SECRET PASSPHRASE — подключить OKX\n"
            "• /unlink — отключить и удалить все данные\n"
            "• /reconcile — сверить балансы сейчас\n\n"
            "<b>Портфель:</b>\n"
            "• /portfolio — активы и стоимость\n"
            "• /positions — открытые позиции\n"
            "• /history [ASSET] — закрытые сделки\n"
            "• /pnl — PnL позиций и динамика портфеля\n"
            "• /capital [сумма] — внесённый капитал\n\n"
            "<b>Алерты:</b>\n"
            "• /alert ASSET above|below PRICE — ценовой алерт\n"
            "• /alert delete ID — удалить алерт\n"
            "• /alerts — список алертов\n"
            "• /movement [PERCENT] или /movement ASSET PERCENT — порог движения цены\n\n"
            "<b>Виртуальные сделки:</b>\n"
            "• /virtual ASSET TARGET STOP AMOUNT — открыть\n"
            "• /virtuals — активные\n\n"
            "<b>Настройки:</b>\n"
            "• /settings [daily_summary|auto_post_to_channel on|off]\n"
            "• /debug — диагностические сообщения вкл/выкл"
        )
        await self._reply(update, text)

    # -------------------------
    # Подключение биржи
    # -------------------------
    async def link(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if len(context.args) != 3:
            await self._reply(update, "⚠️ Использование: /link API_KEY SECRET PASSPHRASE")
            return

        # Сообщение с ключами не должно оставаться в чате
        try:
            await update.message.delete()
        except Exception as e:
            logger.warning(f"Не удалось удалить сообщение с ключами: {e}")

        api_key, api_secret, passphrase = context.args
        credentials = Credentials(api_key, api_secret, passphrase)
        try:
            balances = await asyncio.wait_for(self.bot.exchange.get_balances(credentials), timeout=API_TIMEOUT)
        except (BotError, asyncio.TimeoutError) as e:
            logger.warning(f"Проверка ключей {tenant_id} не прошла: {e}")
            await update.effective_chat.send_message(f"❌ Ключи не приняты: {e}")
            return

        self.ledger.save_credentials(tenant_id, api_key, api_secret, passphrase)
        logger.info(f"Пользователь {tenant_id} подключил OKX ({len(balances)} активов)")
        await update.effective_chat.send_message(
            f"✅ OKX подключена, найдено активов: {len(balances)}.\n"
            "Первая сверка запомнит текущие балансы, дальше изменения будут учитываться как сделки."
        )

    async def unlink(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if self.ledger.get_credentials(tenant_id) is None:
            await self._reply(update, NOT_LINKED)
            return
        if not await self.bot.engine.unlink_tenant(tenant_id):
            await self._reply(update, "⏳ Сейчас идёт сверка, повторите /unlink через несколько секунд")
            return
        await self._reply(update, "🗑 Биржа отключена, все данные удалены")

    async def reconcile(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        report = await self.bot.engine.reconcile(tenant_id)

        if report.status == STATUS_SKIPPED_NO_CREDENTIALS:
            await self._reply(update, NOT_LINKED)
        elif report.status == STATUS_SKIPPED_LOCKED:
            await self._reply(update, "⏳ Сверка уже выполняется")
        elif report.status == STATUS_INITIALIZED:
            await self._reply(update, "📸 Балансы запомнены. Изменения будут учитываться со следующей сверки.")
        elif report.status == STATUS_OK:
            if report.events:
                await self._reply(update, f"✅ Сверка выполнена, событий: {len(report.events)}")
            else:
                await self._reply(update, "✅ Изменений нет")
        else:
            await self._reply(update, f"❌ Сверка не выполнена: {report.error or report.status}")

    # -------------------------
    # Портфель
    # -------------------------
    async def portfolio(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        credentials = self._credentials(tenant_id)
        if credentials is None:
            await self._reply(update, NOT_LINKED)
            return
        try:
            portfolio = await self._portfolio(credentials)
        except (BotError, asyncio.TimeoutError) as e:
            await self._reply(update, f"❌ Не удалось получить портфель: {e}")
            return
        await self._reply(update, self.formatters.format_portfolio(portfolio, self.ledger.get_capital(tenant_id)))

    async def positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        positions = self.ledger.load_positions(tenant_id)
        prices = {}
        if positions:
            try:
                prices = await self._asset_prices()
            except (BotError, asyncio.TimeoutError) as e:
                logger.warning(f"Цены для /positions недоступны: {e}")
        await self._reply(update, self.formatters.format_positions(positions, prices))

    async def history(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        asset = context.args[0].upper() if context.args else None
        trades = self.ledger.get_closed_trades(tenant_id, asset=asset, limit=10)
        text = self.formatters.format_closed_trades(trades)
        if asset:
            stats = self.ledger.get_historical_performance(tenant_id, asset)
            text += "\n\n" + self.formatters.format_performance(asset, stats)
        await self._reply(update, text)

    async def pnl(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        credentials = self._credentials(tenant_id)
        if credentials is None:
            await self._reply(update, NOT_LINKED)
            return
        try:
            prices = await self._asset_prices()
            portfolio = await self._portfolio(credentials)
        except (BotError, asyncio.TimeoutError) as e:
            await self._reply(update, f"❌ Не удалось получить данные: {e}")
            return

        balances = {item.asset: item.amount for item in portfolio.assets}
        summary = calculate_pnl_summary(
            self.ledger.load_positions(tenant_id),
            balances,
            prices,
            portfolio.total,
            self.ledger.get_capital(tenant_id),
        )
        stats = calculate_performance_stats(self.ledger.get_history(tenant_id, "daily"))
        await self._reply(update, self.formatters.format_pnl_summary(summary, stats))

    async def capital(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if self.ledger.get_credentials(tenant_id) is None:
            await self._reply(update, NOT_LINKED)
            return
        if not context.args:
            await self._reply(update, f"💰 Капитал: {self.formatters.format_money(self.ledger.get_capital(tenant_id))}")
            return
        try:
            amount = float(context.args[0])
        except ValueError:
            await self._reply(update, "⚠️ Использование: /capital 1000")
            return
        if amount < 0:
            await self._reply(update, "⚠️ Капитал не может быть отрицательным")
            return
        self.ledger.save_capital(tenant_id, amount)
        await self._reply(update, f"✅ Капитал: {self.formatters.format_money(amount)}")

    # -------------------------
    # Алерты
    # -------------------------
    async def alert(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        args = context.args
        if len(args) == 2 and args[0].lower() == "delete":
            try:
                alert_id = int(args[1])
            except ValueError:
                await self._reply(update, "⚠️ Использование: /alert delete ID")
                return
            self.ledger.delete_price_alert(tenant_id, alert_id)
            await self._reply(update, f"🗑 Алерт #{alert_id} удалён")
            return

        if len(args) != 3 or args[1].lower() not in ("above", "below"):
            await self._reply(update, "⚠️ Использование: /alert BTC above 70000")
            return
        try:
            target_price = float(args[2])
        except ValueError:
            await self._reply(update, "⚠️ Цена должна быть числом")
            return
        if target_price <= 0:
            await self._reply(update, "⚠️ Цена должна быть больше нуля")
            return

        asset = args[0].upper()
        alert_id = self.ledger.add_price_alert(tenant_id, asset, args[1].lower(), target_price)
        await self._reply(update, f"🔔 Алерт #{alert_id}: {asset} {args[1].lower()} {self.formatters.format_price(target_price)}")

    async def alerts(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        await self._reply(update, self.formatters.format_alerts(
            self.ledger.get_price_alerts(tenant_id),
            self.ledger.get_movement_settings(tenant_id),
        ))

    async def movement(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        settings = self.ledger.get_movement_settings(tenant_id)
        args = context.args
        try:
            if len(args) == 1:
                settings["global"] = float(args[0])
            elif len(args) == 2:
                settings["overrides"][args[0].upper()] = float(args[1])
            else:
                await self._reply(update, self.formatters.format_alerts([], settings))
                return
        except ValueError:
            await self._reply(update, "⚠️ Использование: /movement 5 или /movement BTC 3")
            return

        if settings["global"] <= 0 or any(v <= 0 for v in settings["overrides"].values()):
            await self._reply(update, "⚠️ Порог должен быть больше нуля")
            return
        self.ledger.save_movement_settings(tenant_id, settings["global"], settings["overrides"])
        await self._reply(update, "✅ Порог движения цены сохранён")

    # -------------------------
    # Виртуальные сделки
    # -------------------------
    async def virtual(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if len(context.args) != 4:
            await self._reply(update, "⚠️ Использование: /virtual ASSET TARGET STOP AMOUNT")
            return
        asset = context.args[0].upper()
        try:
            target_price, stop_loss_price, amount = (float(v) for v in context.args[1:])
        except ValueError:
            await self._reply(update, "⚠️ TARGET, STOP и AMOUNT должны быть числами")
            return

        try:
            prices = await self._asset_prices()
        except (BotError, asyncio.TimeoutError) as e:
            await self._reply(update, f"❌ Цены недоступны: {e}")
            return
        entry_price = prices.get(asset)
        if entry_price is None:
            await self._reply(update, f"⚠️ Нет цены для {asset}")
            return
        if not (stop_loss_price < entry_price < target_price) or amount <= 0:
            await self._reply(update, "⚠️ Нужно STOP < текущая цена < TARGET и AMOUNT > 0")
            return

        self.ledger.add_virtual_trade(tenant_id, asset, entry_price, target_price, stop_loss_price, amount)
        await self._reply(
            update,
            f"🧪 Виртуальная сделка {asset}: вход {self.formatters.format_price(entry_price)}, "
            f"цель {self.formatters.format_price(target_price)}, стоп {self.formatters.format_price(stop_loss_price)}"
        )

    async def virtuals(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        await self._reply(update, self.formatters.format_virtual_trades(self.ledger.get_active_virtual_trades(tenant_id)))

    # -------------------------
    # Настройки
    # -------------------------
    async def settings(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if self.ledger.get_credentials(tenant_id) is None:
            await self._reply(update, NOT_LINKED)
            return
        settings = self.ledger.get_settings(tenant_id)

        if len(context.args) == 2:
            key, value = context.args[0], context.args[1].lower()
            if key not in DEFAULT_TENANT_SETTINGS or value not in ("on", "off"):
                await self._reply(update, "⚠️ Использование: /settings daily_summary on")
                return
            settings[key] = value == "on"
            self.ledger.save_settings(tenant_id, settings)

        await self._reply(update, self.formatters.format_settings(settings))

    async def debug(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        tenant_id = self._tenant_id(update)
        if self.ledger.get_credentials(tenant_id) is None:
            await self._reply(update, NOT_LINKED)
            return
        settings = self.ledger.get_settings(tenant_id)
        settings["debug_mode"] = not settings.get("debug_mode")
        self.ledger.save_settings(tenant_id, settings)
        state = "включён" if settings["debug_mode"] else "выключен"
        await self._reply(update, f"🐞 Режим отладки {state}")
