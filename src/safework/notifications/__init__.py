"""Outbound notification adapters."""

from .telegram import NotificationService, TelegramNotifier, format_stop_work_message, get_notifier

__all__ = ["NotificationService", "TelegramNotifier", "format_stop_work_message", "get_notifier"]
