"""Tests for Telegram stop-work notifications."""

from unittest.mock import AsyncMock, patch

from telegram.error import NetworkError, TelegramError

from conftest import NOW
from safework.core.config import Config
from safework.notifications import TelegramNotifier, format_stop_work_message, get_notifier


def test_message_escapes_field_input():
    text = format_stop_work_message("s-1", "Gas <10% LEL & rising", NOW)
    assert "Gas &lt;10% LEL &amp; rising" in text
    assert "<code>s-1</code>" in text
    assert NOW.isoformat() in text


async def test_notify_stop_work_sends_to_chat():
    with patch("safework.notifications.telegram.Bot") as MockBot:
        mock_bot = MockBot.return_value
        mock_bot.send_message = AsyncMock()

        notifier = TelegramNotifier("123:ABC", "-100200", backoff_seconds=0)
        assert await notifier.notify_stop_work("s-1", "Scaffold unstable", NOW)

        mock_bot.send_message.assert_called_once_with(
            chat_id="-100200",
            text=format_stop_work_message("s-1", "Scaffold unstable", NOW),
            parse_mode="HTML",
        )


async def test_transient_failure_retried():
    with patch("safework.notifications.telegram.Bot") as MockBot:
        mock_bot = MockBot.return_value
        mock_bot.send_message = AsyncMock(side_effect=[NetworkError("timeout"), None])

        notifier = TelegramNotifier("123:ABC", "-100200", backoff_seconds=0)
        assert await notifier.notify_stop_work("s-1", "Scaffold unstable", NOW)
        assert mock_bot.send_message.await_count == 2


async def test_persistent_failure_returns_false():
    with patch("safework.notifications.telegram.Bot") as MockBot:
        mock_bot = MockBot.return_value
        mock_bot.send_message = AsyncMock(side_effect=TelegramError("Network error"))

        notifier = TelegramNotifier("123:ABC", "-100200", max_retries=3, backoff_seconds=0)
        assert await notifier.notify_stop_work("s-1", "Scaffold unstable", NOW) is False
        assert mock_bot.send_message.await_count == 3


def test_get_notifier_requires_token_and_chat(config):
    assert get_notifier(config) is None
    assert get_notifier(config.model_copy(update={"telegram_bot_token": "123:ABC"})) is None

    with patch("safework.notifications.telegram.Bot"):
        notifier = get_notifier(Config(
            database_url=config.database_url,
            telegram_bot_token="123:ABC",
            stop_work_chat_id="-100200",
            audit_backoff_seconds=0,
        ))
    assert isinstance(notifier, TelegramNotifier)
    assert notifier.chat_id == "-100200"
    assert notifier.backoff_seconds == 0
