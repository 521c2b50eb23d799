"""
Модуль форматирования сообщений для Telegram бота
События сверки, портфель, история и алерты в HTML
"""

import html
import math
from typing import Dict, List, Any

from events import BuyEvent, SellEvent, CloseEvent, TradingEvent
from okx_client import Portfolio
from position import AssetPosition, ClosedTrade


class TelegramFormatters:
    """Класс для форматирования сообщений Telegram бота"""

    def format_price(self, price: float) -> str:
        """Адаптивное форматирование цены в зависимости от величины"""
        if price is None or (isinstance(price, float) and (math.isnan(price) or math.isinf(price))):
            return "н/д"
        if price >= 1000:
            return f"${price:,.2f}"
        elif price >= 1:
            return f"${price:.4f}"
        elif price >= 0.0001:
            decimals = max(4, abs(int(math.log10(abs(price)))) + 3)
            return f"${price:.{decimals}f}"
        else:
            return f"${price:.8f}"

    def format_money(self, value: float) -> str:
        return f"${value:,.2f}"

    def format_percent(self, value: float) -> str:
        return f"{value:+.2f}%"

    # -------------------------
    # События сверки
    # -------------------------
    def format_event(self, event: TradingEvent, public: bool = False) -> str:
        """Сообщение о сделке. public=True скрывает суммы для канала."""
        if isinstance(event, BuyEvent):
            return self.format_buy(event, public)
        if isinstance(event, CloseEvent):
            return self.format_close(event, public)
        if isinstance(event, SellEvent):
            return self.format_sell(event, public)
        return f"📊 <b>{html.escape(event.kind)}</b> {html.escape(event.asset)}"

    def format_buy(self, event: BuyEvent, public: bool = False) -> str:
        asset = html.escape(event.asset)
        title = "🟢 <b>Новая позиция</b>" if event.is_new_position else "🟡 <b>Докупка</b>"
        lines = [
            f"{title} {asset}",
            f"  Цена: {self.format_price(event.price)}",
            f"  Средняя цена: {self.format_price(event.position.avg_buy_price)}",
            f"  Доля в портфеле: {event.asset_weight_percent:.2f}%",
        ]
        if not public:
            lines.insert(2, f"  Количество: {event.delta:.8g} ({self.format_money(event.trade_value)})")
            lines.append(f"  Кэш: {event.cash_percent:.2f}%")
            lines.append(f"  Портфель до сделки: {self.format_money(event.previous_total_value)}")
        return "\n".join(lines)

    def format_sell(self, event: SellEvent, public: bool = False) -> str:
        asset = html.escape(event.asset)
        emoji = "📈" if event.realized_pnl >= 0 else "📉"
        lines = [
            f"🟠 <b>Частичная продажа</b> {asset}",
            f"  Цена: {self.format_price(event.price)}",
            f"  Средняя цена покупки: {self.format_price(event.position.avg_buy_price)}",
        ]
        if not public:
            lines.insert(2, f"  Продано: {abs(event.delta):.8g} ({self.format_money(event.trade_value)})")
            lines.append(f"  {emoji} Результат части: {self.format_money(event.realized_pnl)}")
            lines.append(f"  Остаток: {event.remaining_amount:.8g}")
        return "\n".join(lines)

    def format_close(self, event: CloseEvent, public: bool = False) -> str:
        trade = event.closed_trade
        asset = html.escape(event.asset)
        emoji = "✅" if trade.pnl >= 0 else "🔻"
        lines = [
            f"{emoji} <b>Позиция закрыта</b> {asset}",
            f"  Покупка (средняя): {self.format_price(trade.avg_buy_price)}",
            f"  Продажа (средняя): {self.format_price(trade.avg_sell_price)}",
            f"  Результат: {self.format_percent(trade.pnl_percent)}",
            f"  Длительность: {trade.duration_days:.1f} дн.",
            f"  Максимум/минимум: {self.format_price(event.highest_price)} / {self.format_price(event.lowest_price)}",
        ]
        if not public:
            lines.insert(4, f"  PnL: {self.format_money(trade.pnl)}")
        return "\n".join(lines)

    # -------------------------
    # Портфель и позиции
    # -------------------------
    def format_portfolio(self, portfolio: Portfolio, capital: float = 0.0) -> str:
        lines = [f"💼 <b>Портфель</b>: {self.format_money(portfolio.total)}"]
        if capital > 0:
            pnl = portfolio.total - capital
            lines.append(f"  Капитал: {self.format_money(capital)} | PnL: {self.format_money(pnl)} ({self.format_percent(pnl / capital * 100)})")
        for item in portfolio.assets:
            share = item.value / portfolio.total * 100 if portfolio.total > 0 else 0
            lines.append(
                f"• <b>{html.escape(item.asset)}</b> {self.format_money(item.value)} ({share:.1f}%) "
                f"| {self.format_price(item.price)} {self.format_percent(item.change_24h * 100)}"
            )
        return "\n".join(lines)

    def format_positions(self, positions: Dict[str, AssetPosition], prices: Dict[str, float]) -> str:
        if not positions:
            return "📭 Открытых позиций нет"
        lines = ["📊 <b>Открытые позиции</b>"]
        for asset, position in sorted(positions.items()):
            price = prices.get(asset)
            line = f"• <b>{html.escape(asset)}</b> ср. {self.format_price(position.avg_buy_price)}"
            if price:
                change = (price / position.avg_buy_price - 1) * 100 if position.avg_buy_price > 0 else 0
                line += f" | сейчас {self.format_price(price)} ({self.format_percent(change)})"
            lines.append(line)
        return "\n".join(lines)

    def format_closed_trades(self, trades: List[ClosedTrade]) -> str:
        if not trades:
            return "📭 Закрытых сделок пока нет"
        lines = ["🧾 <b>Закрытые сделки</b>"]
        for trade in trades:
            emoji = "✅" if trade.pnl > 0 else "🔻"
            lines.append(
                f"{emoji} <b>{html.escape(trade.asset)}</b> {self.format_money(trade.pnl)} "
                f"({self.format_percent(trade.pnl_percent)}) за {trade.duration_days:.1f} дн."
            )
        return "\n".join(lines)

    def format_performance(self, asset: str, stats: Dict[str, Any]) -> str:
        return (
            f"📈 <b>{html.escape(asset)}</b>: сделок {stats['trade_count']} "
            f"(+{stats['winning_trades']}/-{stats['losing_trades']}), "
            f"PnL {self.format_money(stats['realized_pnl'])}, "
            f"в среднем {stats['avg_duration']:.1f} дн."
        )

    # -------------------------
    # Алерты и отчёты
    # -------------------------
    def format_price_alert(self, alert: Dict[str, Any], price: float) -> str:
        direction = "выше" if alert["condition"] == "above" else "ниже"
        return (
            f"🔔 <b>Ценовой алерт</b> {html.escape(alert['asset'])}\n"
            f"  Цена {self.format_price(price)} {direction} цели {self.format_price(alert['target_price'])}"
        )

    def format_movement(self, asset: str, change_percent: float, old_price: float, price: float) -> str:
        direction = "↑" if change_percent > 0 else "↓"
        return (
            f"<b>{html.escape(asset)}</b> ⚠️ {self.format_percent(change_percent)} {direction} | "
            f"{self.format_price(old_price)} → {self.format_price(price)}"
        )

    def format_virtual_trade(self, trade: Dict[str, Any], status: str, price: float, pnl: float) -> str:
        title = "🎯 <b>Цель достигнута</b>" if status == "completed" else "🛑 <b>Стоп-лосс</b>"
        percent = pnl / trade["virtual_amount"] * 100 if trade["virtual_amount"] > 0 else 0
        return (
            f"{title} (виртуальная сделка) {html.escape(trade['asset'])}\n"
            f"  Вход: {self.format_price(trade['entry_price'])} → {self.format_price(price)}\n"
            f"  Результат: {self.format_money(pnl)} ({self.format_percent(percent)})"
        )

    def format_alerts(self, alerts: List[Dict[str, Any]], movement: Dict[str, Any]) -> str:
        lines = ["🔔 <b>Ценовые алерты</b>"]
        if not alerts:
            lines.append("  нет")
        for alert in alerts:
            lines.append(
                f"  #{alert['id']} {html.escape(alert['asset'])} {alert['condition']} "
                f"{self.format_price(alert['target_price'])}"
            )
        lines.append(f"\n📶 <b>Движение цены</b>: {movement['global']:.2f}%")
        for asset, percent in sorted(movement["overrides"].items()):
            lines.append(f"  {html.escape(asset)}: {percent:.2f}%")
        return "\n".join(lines)

    def format_virtual_trades(self, trades: List[Dict[str, Any]]) -> str:
        if not trades:
            return "📭 Активных виртуальных сделок нет"
        lines = ["🧪 <b>Виртуальные сделки</b>"]
        for trade in trades:
            lines.append(
                f"• <b>{html.escape(trade['asset'])}</b> вход {self.format_price(trade['entry_price'])} | "
                f"цель {self.format_price(trade['target_price'])} | стоп {self.format_price(trade['stop_loss_price'])} | "
                f"{self.format_money(trade['virtual_amount'])}"
            )
        return "\n".join(lines)

    def format_pnl_summary(self, summary: Dict[str, Any], stats: Dict[str, Any] = None) -> str:
        lines = [f"💹 <b>Нереализованный PnL</b>: {self.format_money(summary['unrealized_pnl'])}"]
        for row in summary["positions"]:
            lines.append(
                f"• <b>{html.escape(row['asset'])}</b> {self.format_money(row['pnl'])} "
                f"({self.format_percent(row['pnl_percent'])})"
            )
        if summary["capital_pnl"] is not None:
            lines.append(
                f"\n💰 Относительно капитала: {self.format_money(summary['capital_pnl'])} "
                f"({self.format_percent(summary['capital_pnl_percent'])})"
            )
        if stats:
            lines.append(
                f"📅 За период: {self.format_percent(stats['change_percent'])}, "
                f"макс. просадка {stats['max_drawdown_percent']:.2f}%"
            )
        return "\n".join(lines)

    def format_settings(self, settings: Dict[str, Any]) -> str:
        lines = ["⚙️ <b>Настройки</b>"]
        for key, value in sorted(settings.items()):
            lines.append(f"  {key}: {'on' if value else 'off'}")
        return "\n".join(lines)

    def format_daily_report(self, total_value: float, stats: Dict[str, Any]) -> str:
        lines = [f"🗓 <b>Дневной отчёт</b>: {self.format_money(total_value)}"]
        if stats:
            lines.append(f"  За период: {self.format_percent(stats['change_percent'])}")
            lines.append(f"  Максимум/минимум: {self.format_money(stats['max_value'])} / {self.format_money(stats['min_value'])}")
            lines.append(f"  Макс. просадка: {stats['max_drawdown_percent']:.2f}%")
        return "\n".join(lines)

    def format_debug(self, message: str) -> str:
        return f"🐞 <b>Debug:</b> {html.escape(message)}"
