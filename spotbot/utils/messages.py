"""HTML message templates for the operator chat."""

from html import escape
from typing import Any, Dict, Iterable, List, Optional

from spotbot.models.order import OrderHistoryEntry
from spotbot.models.position import PartialClose, Position
from spotbot.models.risk import RiskReport
from spotbot.models.signal import PendingSignal
from spotbot.utils.helpers import format_price, format_signed_percent

ESTIMATED_FILL_NOTE = "⚠️ <i>Fill data missing, values are estimated</i>"


def _lines(*parts: Optional[str]) -> str:
    return "\n".join(part for part in parts if part is not None)


def format_confirmation_request(pending: PendingSignal) -> str:
    return _lines(
        "🚨 <b>TRADE CONFIRMATION</b>",
        "",
        f"📊 <b>Signal:</b> {escape(pending.action)}",
        f"🎯 <b>Chart ticker:</b> {escape(pending.ticker)}",
        f"💱 <b>Exchange market:</b> {escape(pending.exchange_symbol)}",
        f"💰 <b>Price:</b> {format_price(pending.price)}",
        f"📈 <b>Message:</b> {escape(pending.message or 'Trading signal')}",
        f"🆔 <b>Signal ID:</b> {escape(pending.id)}",
        "",
        "⚠️ <b>Open the position?</b>",
    )


def format_signal_expired(pending: PendingSignal) -> str:
    return _lines(
        "⏰ <b>Signal expired</b>",
        f"🎯 {escape(pending.ticker)} at {format_price(pending.price)}",
        f"🆔 {escape(pending.id)}",
    )


def format_signal_rejected(pending: PendingSignal) -> str:
    return f"❌ <b>Trade rejected</b>\n🎯 {escape(pending.ticker)} at {format_price(pending.price)}"


def format_position_opened(position: Position) -> str:
    tp_lines = "\n".join(
        f"TP{tp.level}: {format_price(tp.price)} ({tp.percentage:g}%)" for tp in position.take_profit_levels
    )
    message = position.signal.message if position.signal and position.signal.message else "BUY signal"
    return _lines(
        "🟢 <b>POSITION OPENED</b>",
        f"📊 Symbol: {escape(position.original_symbol)} → {escape(position.symbol)}",
        f"💰 Spent: {format_price(position.notional)}",
        f"📦 Received: {position.quantity:.8f} {escape(position.base_asset)}",
        f"💵 Average price: {format_price(position.entry_price)}",
        f"📈 Signal: {escape(message)}",
        f"🆔 Order ID: {escape(position.order_id or 'n/a')}",
        "",
        "🎯 <b>Take profit levels:</b>",
        tp_lines,
        f"🛑 <b>Stop loss:</b> {format_price(position.stop_loss_price)}",
        ESTIMATED_FILL_NOTE if position.estimated_fill else None,
    )


def format_partial_close(position: Position, close: PartialClose) -> str:
    return _lines(
        f"💰 <b>PARTIAL CLOSE TP{close.level}</b>" if close.level else "💰 <b>PARTIAL CLOSE</b>",
        f"📊 Symbol: {escape(position.original_symbol)} → {escape(position.symbol)}",
        f"🎯 Share: {close.percentage:g}%" if close.percentage is not None else None,
        f"📦 Sold: {close.quantity:.8f} {escape(position.base_asset)}",
        f"💵 Received: {format_price(close.received)}",
        f"💰 Price: {format_price(close.price)}",
        f"📈 P&L: {format_signed_percent(close.pnl_percent)}",
        f"📦 Remaining: {position.remaining_quantity:.8f}",
        f"🆔 Order ID: {escape(close.order_id or 'n/a')}",
        ESTIMATED_FILL_NOTE if close.estimated_fill else None,
    )


def format_position_closed(position: Position, close: PartialClose) -> str:
    return _lines(
        "🔴 <b>POSITION CLOSED</b>",
        f"📊 Symbol: {escape(position.original_symbol)} → {escape(position.symbol)}",
        f"💰 Entry price: {format_price(position.entry_price)}",
        f"💰 Exit price: {format_price(position.exit_price)}",
        f"📦 Sold: {close.quantity:.8f} {escape(position.base_asset)}",
        f"💵 Received: {format_price(close.received)}",
        f"📈 P&L: {format_signed_percent(position.total_pnl_percent or 0.0)}",
        f"📝 Reason: {escape(position.close_reason or 'n/a')}",
        f"🆔 Order ID: {escape(close.order_id or 'n/a')}",
        ESTIMATED_FILL_NOTE if close.estimated_fill else None,
    )


def format_error(title: str, error: Any) -> str:
    return f"❌ <b>{escape(title)}</b>\n{escape(str(error))}"


def format_status(stats: Dict[str, Any], positions: Iterable[Position], pending_count: int) -> str:
    lines: List[str] = [
        "📊 <b>BOT STATUS</b>",
        f"Open positions: {stats['active_positions']}",
        f"Pending signals: {pending_count}",
        f"Total trades: {stats['total_trades']}",
        f"Win rate: {stats['win_rate']:.2f}%",
        f"Total P&L: {format_signed_percent(stats['total_pnl'])}",
    ]
    for position in positions:
        lines.append(
            f"• {escape(position.symbol)}: {position.remaining_quantity:.8f} @ {format_price(position.entry_price)} "
            f"(TP hit: {len(position.closed_levels())})"
        )
    return "\n".join(lines)


def format_pending(pending_signals: Iterable[PendingSignal]) -> str:
    pending_signals = list(pending_signals)
    if not pending_signals:
        return "⏳ No pending signals"
    lines = ["⏳ <b>PENDING SIGNALS</b>"]
    for pending in pending_signals:
        lines.append(f"• {escape(pending.id)}: {escape(pending.action)} {escape(pending.ticker)} "
                     f"at {format_price(pending.price)}")
    return "\n".join(lines)


def format_stats(stats: Dict[str, Any]) -> str:
    return _lines(
        "📈 <b>TRADING STATISTICS</b>",
        f"Total trades: {stats['total_trades']}",
        f"Profitable: {stats['profitable_trades']}",
        f"Losing: {stats['losing_trades']}",
        f"Win rate: {stats['win_rate']:.2f}%",
        f"Total P&L: {format_signed_percent(stats['total_pnl'])}",
        f"Average P&L: {format_signed_percent(stats['average_pnl'])}",
    )


def format_risk_report(report: RiskReport) -> str:
    recommendations = "\n".join(f"• {escape(item)}" for item in report.recommendations) or "• None"
    return _lines(
        "🛡 <b>RISK REPORT</b>",
        f"Balance: {format_price(report.balance.current)} "
        f"({format_signed_percent(report.balance.change_percent)} today)",
        f"Positions: {report.positions.count}/{report.positions.max_allowed} "
        f"({report.positions.utilization_percent:.0f}%)",
        f"Daily loss: {report.daily_limits.current_loss_percent:.2f}% of {report.daily_limits.max_loss_percent:g}%",
        f"Trades today: {report.daily_limits.trades_count}",
        "",
        "<b>Recommendations:</b>",
        recommendations,
    )


def format_history(entries: Iterable[OrderHistoryEntry]) -> str:
    entries = list(entries)
    if not entries:
        return "📜 No orders yet"
    lines = ["📜 <b>ORDER HISTORY</b>"]
    for entry in entries:
        pnl = f" {format_signed_percent(entry.pnl_percent)}" if entry.pnl_percent is not None else ""
        lines.append(f"{entry.timestamp:%m-%d %H:%M} {entry.action} {escape(entry.exchange_symbol)} "
                     f"{entry.quantity:.8f} @ {format_price(entry.price)}{pnl}")
    return "\n".join(lines)


HELP_TEXT = _lines(
    "🤖 <b>Available commands</b>",
    "/status - open positions and statistics",
    "/pending - signals waiting for confirmation",
    "/stats - trading statistics",
    "/risk - risk report",
    "/history - last orders",
    "/price SYMBOL - current price",
    "/monitor - check positions now",
    "/cleanup - drop expired signals",
    "/backup - write a state backup",
    "/closeall - close every position",
    "/help - this message",
)
