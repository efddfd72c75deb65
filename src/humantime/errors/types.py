"""Humantime exception hierarchy and the error-code table."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ErrorCode(str, Enum):
    """Stable identifiers for the failure conditions Humantime knows how to explain."""

    NO_ACTIVE_TRACKING = "no_active_tracking"
    NO_PREVIOUS_BLOCK = "no_previous_block"
    PROJECT_REQUIRED = "project_required"
    INVALID_SID = "invalid_sid"
    INVALID_TIMESTAMP = "invalid_timestamp"
    END_BEFORE_START = "end_before_start"
    BLOCK_NOT_FOUND = "block_not_found"
    PROJECT_NOT_FOUND = "project_not_found"
    TASK_NOT_FOUND = "task_not_found"
    GOAL_NOT_FOUND = "goal_not_found"
    WEBHOOK_NOT_FOUND = "webhook_not_found"
    ALREADY_EXISTS = "already_exists"
    ALREADY_TRACKING = "already_tracking"
    INVALID_COLOR = "invalid_color"
    INVALID_GOAL_TYPE = "invalid_goal_type"
    INVALID_DURATION = "invalid_duration"
    INVALID_URL = "invalid_url"
    INVALID_WEBHOOK_NAME = "invalid_webhook_name"
    INVALID_CONFIG = "invalid_config"
    WEBHOOK_REJECTED = "webhook_rejected"
    DISK_FULL = "disk_full"
    DATABASE_CORRUPTED = "database_corrupted"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    NETWORK_UNAVAILABLE = "network_unavailable"
    LOCK_HELD = "lock_held"
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """User-facing text attached to an :class:`ErrorCode`."""

    message: str
    suggestion: str = ""
    examples: tuple[str, ...] = field(default_factory=tuple)


ERROR_TABLE: dict[ErrorCode, ErrorInfo] = {
    ErrorCode.NO_ACTIVE_TRACKING: ErrorInfo(
        "no active tracking",
        "Use 'humantime start on <project>' to begin tracking.",
        (
            "humantime start on myproject",
            'humantime start on myproject with "working on feature"',
            "humantime start on myproject/task-1",
        ),
    ),
    ErrorCode.NO_PREVIOUS_BLOCK: ErrorInfo(
        "no previous block to resume",
        "Start a new block with 'humantime start on <project>'.",
    ),
    ErrorCode.PROJECT_REQUIRED: ErrorInfo(
        "project is required",
        "Specify a project with 'on <project>' or use the -p flag.",
        ("humantime start on myproject", "humantime start -p myproject"),
    ),
    ErrorCode.INVALID_SID: ErrorInfo(
        "invalid simplified ID",
        "SIDs must be alphanumeric with dashes, underscores, or periods (max 32 chars).",
    ),
    ErrorCode.INVALID_TIMESTAMP: ErrorInfo(
        "invalid timestamp",
        "Try formats like '2 hours ago', 'yesterday at 3pm', '9am', or '1 minute'.",
        (
            "humantime start at 9am on myproject",
            "humantime stop at 5pm",
            "humantime edit --start '2 hours ago'",
        ),
    ),
    ErrorCode.END_BEFORE_START: ErrorInfo(
        "end time must be after start time",
        "Check your timestamps - end time must be after start time.",
    ),
    ErrorCode.BLOCK_NOT_FOUND: ErrorInfo(
        "block not found", "Use 'humantime blocks' to see available blocks."
    ),
    ErrorCode.PROJECT_NOT_FOUND: ErrorInfo(
        "project not found", "Use 'humantime project' to see available projects."
    ),
    ErrorCode.TASK_NOT_FOUND: ErrorInfo(
        "task not found", "Use 'humantime task' to see tasks for a project."
    ),
    ErrorCode.GOAL_NOT_FOUND: ErrorInfo(
        "goal not found", "Use 'humantime goal' to see or create goals."
    ),
    ErrorCode.WEBHOOK_NOT_FOUND: ErrorInfo(
        "webhook not found", "Use 'humantime webhook list' to see configured webhooks."
    ),
    ErrorCode.ALREADY_EXISTS: ErrorInfo(
        "already exists", "Pick a different identifier or edit the existing entry."
    ),
    ErrorCode.ALREADY_TRACKING: ErrorInfo(
        "another block is being tracked", "Stop it first with 'humantime stop', then undo again."
    ),
    ErrorCode.INVALID_COLOR: ErrorInfo(
        "invalid color format", "Use hex color format like '#FF5733' or '#00FF00'."
    ),
    ErrorCode.INVALID_GOAL_TYPE: ErrorInfo(
        "invalid goal type", "Use --daily or --weekly to set goal type."
    ),
    ErrorCode.INVALID_DURATION: ErrorInfo(
        "invalid duration",
        "Try formats like '1h30m', '90m', '2h', or '45 minutes'.",
        ("humantime goal set myproject --daily 8h", "humantime pomodoro 25m"),
    ),
    ErrorCode.INVALID_URL: ErrorInfo(
        "invalid URL",
        "Provide a valid URL starting with https:// (or http:// for localhost).",
    ),
    ErrorCode.INVALID_WEBHOOK_NAME: ErrorInfo(
        "invalid webhook name",
        "Webhook names start with a letter or digit and may contain dashes and underscores.",
    ),
    ErrorCode.INVALID_CONFIG: ErrorInfo(
        "invalid notification setting",
        "Idle reminders take 5m to 4h, break reminders 30m to 8h (0 disables), milestones 1 to 100.",
    ),
    ErrorCode.WEBHOOK_REJECTED: ErrorInfo(
        "webhook rejected the notification",
        "Check the webhook URL and its permissions with your chat provider.",
    ),
    ErrorCode.DISK_FULL: ErrorInfo(
        "disk full",
        "Free up disk space and try again. Your active tracking is preserved.",
    ),
    ErrorCode.DATABASE_CORRUPTED: ErrorInfo(
        "database corrupted",
        "Run 'humantime doctor' to diagnose and repair database issues.",
    ),
    ErrorCode.STORAGE_UNAVAILABLE: ErrorInfo(
        "storage unavailable",
        "Check that the data directory exists and is writable.",
    ),
    ErrorCode.NETWORK_UNAVAILABLE: ErrorInfo(
        "network unavailable",
        "Check your internet connection. Notifications will retry automatically.",
    ),
    ErrorCode.LOCK_HELD: ErrorInfo(
        "database locked by another process",
        "Another humantime process is writing. Wait a moment or check for stale processes.",
    ),
    ErrorCode.TIMEOUT: ErrorInfo(
        "operation timed out",
        "The operation took too long. Try again or check your network connection.",
    ),
    ErrorCode.PERMISSION_DENIED: ErrorInfo(
        "permission denied",
        "Check file permissions in your data directory (~/.local/share/humantime/).",
    ),
}


class HumantimeError(Exception):
    """Base exception for all Humantime errors."""

    code: ErrorCode | None = None

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class UserError(HumantimeError):
    """An error the user can fix: bad input, missing arguments, duplicates."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        suggestion: str = "",
        field: str = "",
        value: str = "",
    ) -> None:
        super().__init__(message, code=code)
        self.suggestion = suggestion
        self.field = field
        self.value = value

    def __str__(self) -> str:
        if self.field and self.value:
            return f"{self.message}: '{self.value}'"
        return self.message


class SystemLevelError(HumantimeError):
    """An environment failure the user cannot fix directly (disk, permissions, storage)."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        op: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.op = op
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def __str__(self) -> str:
        if self.op:
            return f"{self.message} during {self.op}"
        return self.message


class RecoverableError(HumantimeError):
    """A transient failure that may succeed when retried."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        attempt: int = 0,
        max_attempts: int = 0,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.attempt = attempt
        self.max_attempts = max_attempts
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    @property
    def can_retry(self) -> bool:
        if self.max_attempts <= 0:
            return True
        return self.attempt < self.max_attempts

    def increment_attempt(self) -> None:
        self.attempt += 1

    def __str__(self) -> str:
        if self.attempt > 0 and self.max_attempts > 0:
            return f"{self.message} (attempt {self.attempt}/{self.max_attempts})"
        return self.message


class KeyNotFoundError(HumantimeError, LookupError):
    """Raised by the store and repositories when a key does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"key not found: {key}")
        self.key = key


class KeyCollisionError(UserError):
    """Raised when creating an entity whose derived key is already taken."""

    def __init__(self, key: str, *, field: str = "", value: str = "") -> None:
        super().__init__(
            f"{key} already exists",
            code=ErrorCode.ALREADY_EXISTS,
            suggestion=ERROR_TABLE[ErrorCode.ALREADY_EXISTS].suggestion,
            field=field,
            value=value,
        )
        self.key = key

    def __str__(self) -> str:
        return self.message


def user_error(code: ErrorCode, *, field: str = "", value: str = "", message: str = "") -> UserError:
    """Build a :class:`UserError` from the table entry for ``code``."""

    info = ERROR_TABLE[code]
    return UserError(
        message or info.message,
        code=code,
        suggestion=info.suggestion,
        field=field,
        value=value,
    )


def is_key_not_found(err: BaseException | None) -> bool:
    """Return True if ``err`` (or anything on its cause chain) is a missing-key error."""

    current = err
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        if isinstance(current, KeyNotFoundError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


__all__ = [
    "ERROR_TABLE",
    "ErrorCode",
    "ErrorInfo",
    "HumantimeError",
    "KeyCollisionError",
    "KeyNotFoundError",
    "RecoverableError",
    "SystemLevelError",
    "UserError",
    "is_key_not_found",
    "user_error",
]
