"""Error taxonomy and classification for Humantime."""

from .classify import (
    Category,
    ClassifiedError,
    ExitCode,
    category_hint,
    classify,
    error_code,
    examples_for,
    exit_code_for,
    format_error,
    get_category,
    is_retryable,
    suggestion_for,
    with_category,
)
from .types import (
    ERROR_TABLE,
    ErrorCode,
    ErrorInfo,
    HumantimeError,
    KeyCollisionError,
    KeyNotFoundError,
    RecoverableError,
    SystemLevelError,
    UserError,
    is_key_not_found,
    user_error,
)

__all__ = [
    "Category",
    "ClassifiedError",
    "ERROR_TABLE",
    "ErrorCode",
    "ErrorInfo",
    "ExitCode",
    "HumantimeError",
    "KeyCollisionError",
    "KeyNotFoundError",
    "RecoverableError",
    "SystemLevelError",
    "UserError",
    "category_hint",
    "classify",
    "error_code",
    "examples_for",
    "exit_code_for",
    "format_error",
    "get_category",
    "is_key_not_found",
    "is_retryable",
    "suggestion_for",
    "user_error",
    "with_category",
]
