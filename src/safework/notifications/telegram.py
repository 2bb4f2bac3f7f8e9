"""Stop-work notifications over Telegram.

Provides TelegramNotifier, the NotificationService implementation used
in deployments, and get_notifier() to build it from Config. Uses a
standalone Bot instance; no Application or polling loop is needed.
"""

from datetime import datetime
from html import escape
from typing import Optional, Protocol, runtime_checkable

import structlog
from telegram import Bot
from telegram.error import TelegramError

from safework.core.config import Config
from safework.core.retry import retry_async

logger = structlog.get_logger()


@runtime_checkable
class NotificationService(Protocol):
    """External notification sink with at-least-once delivery."""

    async def notify_stop_work(self, session_id: str, reason: str, timestamp: datetime) -> bool:
        ...


def format_stop_work_message(session_id: str, reason: str, timestamp: datetime) -> str:
    return (
        f"🛑 <b>STOP WORK</b>\n"
        f"LMRA session: <code>{escape(session_id)}</code>\n"
        f"At: {timestamp.isoformat()}\n\n"
        f"Reason: {escape(reason)}"
    )


class TelegramNotifier:
    """Sends stop-work notifications to a configured chat.

    Delivery is retried with exponential backoff on TelegramError. A
    notification that still fails is logged and reported as False.
    """

    def __init__(
        self,
        token: str,
        chat_id: str,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        """Initialize notifier with bot token.

        Args:
            token: Telegram bot token from @BotFather
            chat_id: Chat (or channel) receiving stop-work alerts
            max_retries: Attempts per message
            backoff_seconds: Base delay between attempts
        """
        self.bot = Bot(token=token)
        self.chat_id = chat_id
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    async def notify(self, message: str, parse_mode: str = "HTML") -> bool:
        """Send a message to the configured chat.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await retry_async(
                lambda: self.bot.send_message(chat_id=self.chat_id, text=message, parse_mode=parse_mode),
                name="telegram_send_message",
                max_retries=self.max_retries,
                backoff_seconds=self.backoff_seconds,
                retry_on=(TelegramError,),
            )
            return True
        except TelegramError as e:
            logger.error("telegram_notify_failed", chat_id=self.chat_id, error=str(e))
            return False

    async def notify_stop_work(self, session_id: str, reason: str, timestamp: datetime) -> bool:
        """Send a stop-work alert.

        Args:
            session_id: LMRA session that stopped work
            reason: Stop-work reason entered in the field
            timestamp: When work was stopped

        Returns:
            True if sent successfully
        """
        return await self.notify(format_stop_work_message(session_id, reason, timestamp))


def get_notifier(config: Config) -> Optional[TelegramNotifier]:
    """Build a TelegramNotifier from config.

    Returns:
        TelegramNotifier instance or None if token or chat is not configured
    """
    if not config.telegram_bot_token or not config.stop_work_chat_id:
        logger.debug("telegram_notifier_disabled", reason="bot token or stop-work chat not set")
        return None

    logger.info("telegram_notifier_initialized", chat_id=config.stop_work_chat_id)
    return TelegramNotifier(
        config.telegram_bot_token,
        config.stop_work_chat_id,
        max_retries=config.audit_max_retries,
        backoff_seconds=config.audit_backoff_seconds,
    )
