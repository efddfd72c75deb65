"""Notification payload models and the persisted retry entry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..storage.models import utcnow

PREFIX_NOTIFICATION = "notification"

COLOR_SUCCESS = 0x57F287
COLOR_WARNING = 0xFEE75C
COLOR_INFO = 0x5865F2
COLOR_ERROR = 0xED4245
COLOR_PRIMARY = 0x3498DB


class NotificationType(str, Enum):
    REMINDER = "reminder"
    IDLE = "idle"
    BREAK = "break"
    GOAL = "goal"
    DAILY_SUMMARY = "daily_summary"
    END_OF_DAY = "end_of_day"
    TEST = "test"


_DEFAULT_COLORS = {
    NotificationType.REMINDER: COLOR_WARNING,
    NotificationType.IDLE: COLOR_INFO,
    NotificationType.BREAK: COLOR_PRIMARY,
    NotificationType.GOAL: COLOR_SUCCESS,
    NotificationType.DAILY_SUMMARY: COLOR_INFO,
    NotificationType.END_OF_DAY: COLOR_SUCCESS,
    NotificationType.TEST: COLOR_PRIMARY,
}


class Notification(BaseModel):
    """A message to deliver to every enabled webhook."""

    type: NotificationType
    title: str
    message: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    color: int = 0

    def with_field(self, name: str, value: str) -> Notification:
        self.fields[name] = value
        return self

    @property
    def effective_color(self) -> int:
        return self.color or _DEFAULT_COLORS.get(self.type, COLOR_INFO)


def notification_key(notification_id: str) -> str:
    return f"{PREFIX_NOTIFICATION}:{notification_id}"


class RetryableNotification(BaseModel):
    """A delivery waiting for its next attempt.

    ``payload`` is stored base64 encoded so arbitrary bodies survive the JSON encoding.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    id: str
    webhook_name: str
    url: str
    content_type: str = "application/json"
    payload: bytes
    attempt_count: int = 0
    max_attempts: int = 5
    next_attempt_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    last_error: str = ""

    @computed_field
    @property
    def key(self) -> str:
        return notification_key(self.id)

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one successful HTTP delivery."""

    status_code: int
    duration: timedelta


__all__ = [
    "COLOR_ERROR",
    "COLOR_INFO",
    "COLOR_PRIMARY",
    "COLOR_SUCCESS",
    "COLOR_WARNING",
    "DeliveryResult",
    "Notification",
    "NotificationType",
    "PREFIX_NOTIFICATION",
    "RetryableNotification",
    "notification_key",
]
