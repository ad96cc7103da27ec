from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from spotbot.core.exceptions import NotificationError
from spotbot.utils.config import TELEGRAM_BASE_URL, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from spotbot.utils.logger import logger

# (button label, callback data)
Choice = Tuple[str, str]


class TelegramNotifier:
    """Messaging channel to the single configured operator chat."""

    def __init__(self, token: str = TELEGRAM_BOT_TOKEN, chat_id: str = TELEGRAM_CHAT_ID,
                 base_url: str = TELEGRAM_BASE_URL, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.chat_id = str(chat_id)
        self.api_url = f"{base_url.rstrip('/')}/bot{token}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def is_operator(self, chat_id: Any) -> bool:
        return str(chat_id) == self.chat_id

    def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        try:
            response = self.session.post(f"{self.api_url}/{method}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"Telegram {method} failed: {e}") from e
        try:
            data = response.json()
        except ValueError as e:
            raise NotificationError(f"Telegram {method} returned invalid JSON") from e
        if response.status_code >= 400 or not data.get("ok"):
            raise NotificationError(f"Telegram {method} error: {data.get('description', response.status_code)}")
        return data.get("result")

    def send(self, text: str) -> Optional[int]:
        """Send an HTML message. Best-effort: failures are logged, never raised."""
        try:
            result = self._call("sendMessage", {
                "chat_id": self.chat_id,
                "text": text.strip(),
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            })
            logger.info("Telegram message sent")
            return result.get("message_id") if isinstance(result, dict) else None
        except NotificationError as e:
            logger.error(f"Failed to send Telegram message: {e}")
            return None

    def ask(self, text: str, choices: Sequence[Choice]) -> int:
        """Present an inline keyboard; the click comes back later as a callback update."""
        keyboard: List[List[Dict[str, str]]] = [
            [{"text": label, "callback_data": data} for label, data in choices]
        ]
        result = self._call("sendMessage", {
            "chat_id": self.chat_id,
            "text": text.strip(),
            "parse_mode": "HTML",
            "reply_markup": {"inline_keyboard": keyboard},
        })
        message_id = result.get("message_id") if isinstance(result, dict) else None
        logger.info(f"Confirmation request sent as message {message_id}")
        return message_id

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        try:
            self._call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})
        except NotificationError as e:
            logger.warning(f"Failed to answer callback {callback_id}: {e}")
