"""Webhook notification delivery and the retry queue."""

from .dispatcher import DispatchResult, Dispatcher
from .formatters import FORMATTERS, get_formatter
from .models import (
    DeliveryResult,
    Notification,
    NotificationType,
    RetryableNotification,
)
from .queue import PassResult, QueueStats, RetryQueue
from .transport import HttpxTransport, Transport

__all__ = [
    "DeliveryResult",
    "DispatchResult",
    "Dispatcher",
    "FORMATTERS",
    "HttpxTransport",
    "Notification",
    "NotificationType",
    "PassResult",
    "QueueStats",
    "RetryQueue",
    "RetryableNotification",
    "Transport",
    "get_formatter",
]
