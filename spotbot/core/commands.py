from typing import Any, Callable, Dict, Optional

from spotbot.core.exceptions import ExchangeCallFailure, SignalNotFound, TradingBotError
from spotbot.core.trading_engine import TradingEngine
from spotbot.utils.helpers import format_price
from spotbot.utils.logger import logger
from spotbot.utils.messages import (
    HELP_TEXT,
    format_error,
    format_history,
    format_pending,
    format_risk_report,
    format_stats,
    format_status,
)


class OperatorCommands:
    """Handles Telegram updates coming from the operator chat.

    Callback queries carry `confirm_<id>` or `reject_<id>`; text messages are
    slash commands. Updates from any other chat are ignored.
    """

    def __init__(self, engine: TradingEngine, notifier, backup: Optional[Callable[[], str]] = None):
        self.engine = engine
        self.notifier = notifier
        self.backup = backup
        self.commands: Dict[str, Callable[[str], str]] = {
            "/start": lambda _: HELP_TEXT,
            "/help": lambda _: HELP_TEXT,
            "/status": self._status,
            "/pending": lambda _: format_pending(self.engine.get_all_pending_signals()),
            "/stats": lambda _: format_stats(self.engine.get_stats()),
            "/risk": self._risk,
            "/history": lambda _: format_history(self.engine.get_order_history(10)),
            "/closeall": self._close_all,
            "/monitor": self._monitor,
            "/cleanup": self._cleanup,
            "/backup": self._backup,
            "/price": self._price,
        }

    def handle_update(self, update: Dict[str, Any]) -> Dict[str, Any]:
        if "callback_query" in update:
            return self.handle_callback(update["callback_query"])
        message = update.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        text = (message.get("text") or "").strip()
        if not text:
            return {"status": "ignored"}
        if not self.notifier.is_operator(chat_id):
            logger.warning(f"Command from unauthorized chat {chat_id} ignored")
            return {"status": "ignored"}
        return self.handle_command(text)

    def handle_callback(self, query: Dict[str, Any]) -> Dict[str, Any]:
        chat_id = ((query.get("message") or {}).get("chat") or {}).get("id")
        callback_id = query.get("id", "")
        data = query.get("data") or ""
        if not self.notifier.is_operator(chat_id):
            logger.warning(f"Callback from unauthorized chat {chat_id} ignored")
            return {"status": "ignored"}

        action, _, signal_id = data.partition("_")
        try:
            if action == "confirm":
                self.notifier.answer_callback(callback_id, "Opening position...")
                position = self.engine.confirm_trade(signal_id)
                return {"status": "confirmed", "symbol": position.symbol}
            if action == "reject":
                self.engine.reject_trade(signal_id)
                self.notifier.answer_callback(callback_id, "Trade rejected")
                return {"status": "rejected"}
        except SignalNotFound as e:
            self.notifier.answer_callback(callback_id, "Signal not found or expired")
            return {"status": "not_found", "message": str(e)}
        except TradingBotError as e:
            # Operator was already told by the engine
            return {"status": "error", "message": str(e)}

        logger.warning(f"Unknown callback data: {data}")
        self.notifier.answer_callback(callback_id)
        return {"status": "ignored"}

    def handle_command(self, text: str) -> Dict[str, Any]:
        command, _, argument = text.partition(" ")
        handler = self.commands.get(command.split("@")[0].lower())
        if handler is None:
            self.notifier.send("❓ Unknown command. Use /help for the list of commands.")
            return {"status": "unknown_command"}
        try:
            reply = handler(argument.strip())
        except TradingBotError as e:
            logger.error(f"Command {command} failed: {e}")
            reply = format_error(f"Command {command} failed", e)
        self.notifier.send(reply)
        return {"status": "ok", "command": command}

    def _status(self, _: str) -> str:
        return format_status(self.engine.get_stats(), self.engine.get_all_positions(),
                             len(self.engine.get_all_pending_signals()))

    def _risk(self, _: str) -> str:
        return format_risk_report(self.engine.risk_manager.get_risk_report(self.engine.store.positions_by_symbol()))

    def _close_all(self, _: str) -> str:
        results = self.engine.close_all_positions("Manual close")
        if not results:
            return "📭 No open positions"
        lines = ["🔴 <b>CLOSE ALL</b>"]
        for result in results:
            mark = "✅" if result["success"] else "❌"
            lines.append(f"{mark} {result['symbol']} {result.get('error', '')}".rstrip())
        return "\n".join(lines)

    def _monitor(self, _: str) -> str:
        checked = self.engine.monitor_positions()
        return f"🔍 Checked {checked} positions"

    def _cleanup(self, _: str) -> str:
        removed = self.engine.cleanup_pending_signals()
        return f"🧹 Removed {removed} expired signals"

    def _backup(self, _: str) -> str:
        if self.backup is None:
            return "Backups are not configured"
        path = self.backup()
        return f"💾 Backup written to {path}"

    def _price(self, argument: str) -> str:
        if not argument:
            return "Usage: /price SYMBOL"
        symbol = self.engine.convert_symbol(argument)
        try:
            ticker = self.engine.exchange.get_ticker(symbol)
        except ExchangeCallFailure as e:
            return format_error(f"Price for {symbol} unavailable", e)
        return f"💵 {symbol}: {format_price(ticker.last)}"
