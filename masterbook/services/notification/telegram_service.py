# masterbook/services/notification/telegram_service.py
"""Telegram Bot API transport for booking notifications and reminders"""
import logging
from typing import Optional

import httpx

from masterbook.config.settings import get_settings
from masterbook.services.notification.errors import (
    PermanentDeliveryFailure,
    RetryableDeliveryFailure,
)

logger = logging.getLogger(__name__)
settings = get_settings()


class TelegramService:
    def __init__(self, bot_token: Optional[str] = None, http_client: Optional[httpx.Client] = None):
        self.bot_token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.http_client = http_client or httpx.Client(
            base_url=settings.TELEGRAM_API_BASE,
            timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)

    def send_message(self, chat_id: Optional[str], text: str) -> bool:
        """
        Send a plain-text message.

        Returns False when there is nothing to do (no bot token, no chat id).
        Raises RetryableDeliveryFailure on network errors and 5xx responses,
        PermanentDeliveryFailure on any other non-2xx response.
        """
        if not self.bot_token or not chat_id or not text:
            logger.debug(f"Telegram message skipped (chat_id={chat_id})")
            return False

        try:
            response = self.http_client.post(
                f"/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": chat_id,
                    "text": text,
                    "disable_web_page_preview": True,
                },
            )
        except httpx.TimeoutException as e:
            raise RetryableDeliveryFailure(f"Telegram request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RetryableDeliveryFailure(f"Telegram request error: {str(e)[:200]}") from e

        if 200 <= response.status_code < 300:
            logger.info(f"Telegram message delivered to chat {chat_id}")
            return True

        body = response.text[:200]
        logger.error(f"Telegram sendMessage failed: HTTP {response.status_code}: {body}")
        if response.status_code >= 500:
            raise RetryableDeliveryFailure(
                f"HTTP {response.status_code}: {body}", status_code=response.status_code
            )
        raise PermanentDeliveryFailure(
            f"HTTP {response.status_code}: {body}", status_code=response.status_code
        )
