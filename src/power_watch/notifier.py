"""
Telegram notification transport.
Sends, edits and pins messages via the Telegram Bot API.
"""

from typing import Any, Dict, Optional

import requests


class TelegramError(Exception):
    """Telegram API call failed."""

    def __init__(self, description: str, error_code: Optional[int] = None):
        super().__init__(description)
        self.description = description
        self.error_code = error_code


class MessageNotModifiedError(TelegramError):
    """editMessageText was called with the text the message already has."""


class TelegramNotifier:
    """Send notifications via Telegram Bot API."""

    def __init__(self, bot_token: str, timeout: float = 10, session: Optional[requests.Session] = None):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests session
        """
        self.bot_token = bot_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.api_url = f"https://api.telegram.org/bot{bot_token}"

    def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        """
        Invoke a Bot API method.

        Returns:
            The "result" field of the API response

        Raises:
            TelegramError: If the request fails or the API reports an error
        """
        try:
            response = self.session.post(f"{self.api_url}/{method}", json=payload, timeout=self.timeout)
            result = response.json()
        except requests.exceptions.RequestException as e:
            raise TelegramError(f"Failed to call Telegram {method}: {e}")
        except ValueError as e:
            raise TelegramError(f"Telegram {method} returned non-JSON body: {e}")

        if not result.get("ok"):
            description = result.get("description", "Unknown error")
            error_code = result.get("error_code")
            if "message is not modified" in description:
                raise MessageNotModifiedError(description, error_code)
            raise TelegramError(f"Telegram API error: {description}", error_code)

        return result.get("result")

    def send_message(self, chat_id: str, text: str) -> int:
        """
        Send a text message.

        Returns:
            Telegram message id of the sent message
        """
        result = self._call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "parse_mode": "HTML", "disable_web_page_preview": True},
        )
        return int(result["message_id"])

    def edit_message(self, chat_id: str, message_id: int, text: str) -> None:
        """
        Replace the text of a previously sent message.

        Raises:
            MessageNotModifiedError: If the text is unchanged
            TelegramError: On any other failure (e.g. the message was deleted)
        """
        self._call(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text, "parse_mode": "HTML"},
        )

    def pin_message(self, chat_id: str, message_id: int) -> None:
        """Pin a message without a notification sound."""
        self._call(
            "pinChatMessage",
            {"chat_id": chat_id, "message_id": message_id, "disable_notification": True},
        )
