"""Entity models persisted in the key-value store."""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from ..errors import ErrorCode, user_error

PREFIX_BLOCK = "block"
PREFIX_PROJECT = "project"
PREFIX_TASK = "task"
PREFIX_GOAL = "goal"
PREFIX_WEBHOOK = "webhook"
KEY_CONFIG = "config"
KEY_ACTIVE = "active"
KEY_UNDO = "undo"
KEY_NOTIFY_CONFIG = "config:notify"

SID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,32}$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
WEBHOOK_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
WEBHOOK_NAME_MAX = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def uuid7(now: datetime | None = None) -> uuid.UUID:
    """Build a time-ordered UUID (version 7): 48-bit millisecond timestamp then random bits."""

    millis = int(ensure_aware(now or utcnow()).timestamp() * 1000) & ((1 << 48) - 1)
    value = millis << 80
    value |= 0x7 << 76
    value |= secrets.randbits(12) << 64
    value |= 0b10 << 62
    value |= secrets.randbits(62)
    return uuid.UUID(int=value)


def validate_sid(value: str, field: str = "sid") -> str:
    if not isinstance(value, str) or not SID_PATTERN.match(value):
        raise user_error(ErrorCode.INVALID_SID, field=field, value=str(value))
    return value


def block_key(block_id: uuid.UUID | str) -> str:
    return f"{PREFIX_BLOCK}:{block_id}"


def new_block_key(now: datetime | None = None) -> str:
    return block_key(uuid7(now))


def project_key(sid: str) -> str:
    return f"{PREFIX_PROJECT}:{sid}"


def task_key(project_sid: str, sid: str) -> str:
    return f"{PREFIX_TASK}:{project_sid}:{sid}"


def task_prefix(project_sid: str) -> str:
    return f"{PREFIX_TASK}:{project_sid}:"


def goal_key(project_sid: str) -> str:
    return f"{PREFIX_GOAL}:{project_sid}"


def webhook_key(name: str) -> str:
    return f"{PREFIX_WEBHOOK}:{name}"


class _Entity(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="ignore")


class Block(_Entity):
    """A recorded or in-progress interval of tracked time."""

    key: str = ""
    owner_key: str = ""
    project_sid: str = ""
    task_sid: str = ""
    note: str = ""
    timestamp_start: datetime
    timestamp_end: datetime | None = None

    @field_validator("timestamp_start", "timestamp_end")
    @classmethod
    def _normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @model_validator(mode="after")
    def _check_interval(self) -> Block:
        if self.timestamp_end is not None and self.timestamp_end < self.timestamp_start:
            raise user_error(
                ErrorCode.END_BEFORE_START,
                field="timestamp_end",
                value=self.timestamp_end.isoformat(),
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.timestamp_end is None

    def effective_end(self, now: datetime | None = None) -> datetime:
        if self.timestamp_end is not None:
            return self.timestamp_end
        return ensure_aware(now) if now is not None else utcnow()

    def duration(self, now: datetime | None = None) -> timedelta:
        return self.effective_end(now) - self.timestamp_start


def _check_color(value: str) -> str:
    if value and not COLOR_PATTERN.match(value):
        raise user_error(ErrorCode.INVALID_COLOR, field="color", value=value)
    return value


class Project(_Entity):
    sid: str
    display_name: str = ""
    color: str = ""
    archived: bool = False

    @field_validator("sid")
    @classmethod
    def _validate_sid(cls, value: str) -> str:
        return validate_sid(value)

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str) -> str:
        return _check_color(value)

    @computed_field
    @property
    def key(self) -> str:
        return project_key(self.sid)


class Task(_Entity):
    project_sid: str
    sid: str
    display_name: str = ""
    color: str = ""

    @field_validator("project_sid")
    @classmethod
    def _validate_project_sid(cls, value: str) -> str:
        return validate_sid(value, "project_sid")

    @field_validator("sid")
    @classmethod
    def _validate_sid(cls, value: str) -> str:
        return validate_sid(value)

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str) -> str:
        return _check_color(value)

    @computed_field
    @property
    def key(self) -> str:
        return task_key(self.project_sid, self.sid)


class GoalType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class Progress(BaseModel):
    """Progress toward a goal for a given amount of tracked time."""

    current: timedelta
    remaining: timedelta
    percentage: float
    is_complete: bool


class Goal(_Entity):
    project_sid: str
    type: GoalType
    target: timedelta

    @field_validator("project_sid")
    @classmethod
    def _validate_project_sid(cls, value: str) -> str:
        return validate_sid(value, "project_sid")

    @field_validator("type", mode="before")
    @classmethod
    def _validate_type(cls, value: object) -> object:
        if isinstance(value, GoalType):
            return value
        if value not in {member.value for member in GoalType}:
            raise user_error(ErrorCode.INVALID_GOAL_TYPE, field="type", value=str(value))
        return value

    @field_validator("target")
    @classmethod
    def _validate_target(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise user_error(ErrorCode.INVALID_DURATION, field="target", value=str(value))
        return value

    @computed_field
    @property
    def key(self) -> str:
        return goal_key(self.project_sid)

    def calculate_progress(self, current: timedelta) -> Progress:
        """Percentage is not capped, so overshooting the target reports more than 100."""

        remaining = self.target - current
        return Progress(
            current=current,
            remaining=max(remaining, timedelta(0)),
            percentage=current / self.target * 100,
            is_complete=current >= self.target,
        )


class Config(_Entity):
    key: Literal["config"] = KEY_CONFIG
    user_key: str = Field(default_factory=lambda: str(uuid.uuid4()))


class ActiveBlock(_Entity):
    """Singleton pointer to the block being tracked and the one before it."""

    key: Literal["active"] = KEY_ACTIVE
    active_block_key: str = ""
    previous_block_key: str = ""

    @property
    def is_tracking(self) -> bool:
        return self.active_block_key != ""


class UndoAction(str, Enum):
    START = "start"
    STOP = "stop"
    DELETE = "delete"


class UndoState(_Entity):
    """The last reversible tracking action.

    Stops and deletes keep a snapshot of the block as it was before the action.
    """

    key: Literal["undo"] = KEY_UNDO
    action: UndoAction
    block_key: str
    block_snapshot: Block | None = None


def _type_name(notification_type: str) -> str:
    if isinstance(notification_type, Enum):
        return notification_type.value
    return notification_type


class NotifyConfig(_Entity):
    """Notification thresholds and per-type toggles. Types missing from ``enabled`` are on."""

    key: Literal["config:notify"] = KEY_NOTIFY_CONFIG
    idle_after: timedelta = timedelta(minutes=30)
    break_after: timedelta = timedelta(hours=2)
    break_reset: timedelta = timedelta(minutes=15)
    goal_milestones: list[int] = Field(default_factory=lambda: [50, 75, 100])
    daily_summary_at: str = "09:00"
    end_of_day_at: str = "18:00"
    enabled: dict[str, bool] = Field(default_factory=dict)

    @field_validator("idle_after")
    @classmethod
    def _validate_idle_after(cls, value: timedelta) -> timedelta:
        if not timedelta(minutes=5) <= value <= timedelta(hours=4):
            raise user_error(ErrorCode.INVALID_CONFIG, field="idle_after", value=str(value))
        return value

    @field_validator("break_after")
    @classmethod
    def _validate_break_after(cls, value: timedelta) -> timedelta:
        # zero turns break reminders off
        if value and not timedelta(minutes=30) <= value <= timedelta(hours=8):
            raise user_error(ErrorCode.INVALID_CONFIG, field="break_after", value=str(value))
        return value

    @field_validator("goal_milestones")
    @classmethod
    def _validate_milestones(cls, value: list[int]) -> list[int]:
        for milestone in value:
            if not 1 <= milestone <= 100:
                raise user_error(ErrorCode.INVALID_CONFIG, field="goal_milestones", value=str(milestone))
        return value

    def is_type_enabled(self, notification_type: str) -> bool:
        return self.enabled.get(_type_name(notification_type), True)

    def set_type_enabled(self, notification_type: str, enabled: bool) -> None:
        self.enabled = {**self.enabled, _type_name(notification_type): enabled}


class WebhookType(str, Enum):
    DISCORD = "discord"
    SLACK = "slack"
    TEAMS = "teams"
    GENERIC = "generic"


def detect_webhook_type(url: str) -> WebhookType:
    lowered = url.lower()
    if "discord.com/api/webhooks" in lowered:
        return WebhookType.DISCORD
    if "hooks.slack.com" in lowered:
        return WebhookType.SLACK
    if "outlook.office.com/webhook" in lowered or "webhook.office.com" in lowered:
        return WebhookType.TEAMS
    return WebhookType.GENERIC


def mask_url(url: str) -> str:
    """Hide the secret tail of a webhook URL for display and logs."""

    if len(url) > 40:
        return url[:30] + "***"
    return url


class Webhook(_Entity):
    name: str
    type: WebhookType | None = None
    url: str
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    last_used: datetime | None = None
    last_error: str = ""

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value or len(value) > WEBHOOK_NAME_MAX or not WEBHOOK_NAME_PATTERN.match(value):
            raise user_error(ErrorCode.INVALID_WEBHOOK_NAME, field="name", value=value)
        return value

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        lowered = value.lower()
        if lowered.startswith("https://") and len(value) > len("https://"):
            return value
        if lowered.startswith(("http://localhost", "http://127.0.0.1")):
            return value
        raise user_error(ErrorCode.INVALID_URL, field="url", value=mask_url(value))

    @model_validator(mode="after")
    def _detect_type(self) -> Webhook:
        if self.type is None:
            # Bypass assignment validation to avoid re-entering this validator.
            object.__setattr__(self, "type", detect_webhook_type(self.url))
        return self

    @computed_field
    @property
    def key(self) -> str:
        return webhook_key(self.name)

    @property
    def masked_url(self) -> str:
        return mask_url(self.url)


__all__ = [
    "ActiveBlock",
    "Block",
    "Config",
    "Goal",
    "GoalType",
    "KEY_ACTIVE",
    "KEY_CONFIG",
    "KEY_NOTIFY_CONFIG",
    "KEY_UNDO",
    "NotifyConfig",
    "PREFIX_BLOCK",
    "PREFIX_GOAL",
    "PREFIX_PROJECT",
    "PREFIX_TASK",
    "PREFIX_WEBHOOK",
    "Progress",
    "Project",
    "Task",
    "UndoAction",
    "UndoState",
    "Webhook",
    "WebhookType",
    "block_key",
    "detect_webhook_type",
    "ensure_aware",
    "goal_key",
    "mask_url",
    "new_block_key",
    "project_key",
    "task_key",
    "task_prefix",
    "utcnow",
    "uuid7",
    "validate_sid",
    "webhook_key",
]
