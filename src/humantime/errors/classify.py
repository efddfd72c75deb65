"""Error classification and user-facing formatting."""

from __future__ import annotations

import errno
from enum import Enum, IntEnum
from typing import Iterator

from .types import (
    ERROR_TABLE,
    ErrorCode,
    HumantimeError,
    RecoverableError,
    SystemLevelError,
    UserError,
)


class Category(str, Enum):
    UNKNOWN = "unknown"
    USER = "user"
    SYSTEM = "system"
    RECOVERABLE = "recoverable"
    INTERNAL = "internal"


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    USER_ERROR = 2
    SYSTEM_ERROR = 3
    RETRYABLE = 4
    INTERNAL_ERROR = 70


_SYSTEM_ERRNOS = frozenset(
    {errno.ENOSPC, errno.EACCES, errno.EPERM, errno.ENOENT, errno.EIO, errno.EROFS}
)
_RECOVERABLE_ERRNOS = frozenset(
    {errno.EAGAIN, errno.EINTR, errno.ETIMEDOUT, errno.ECONNREFUSED, errno.ECONNRESET}
)
_RECOVERABLE_OS_TYPES = (
    TimeoutError,
    ConnectionRefusedError,
    ConnectionResetError,
    InterruptedError,
    BlockingIOError,
)
_SYSTEM_CODES = frozenset(
    {
        ErrorCode.DISK_FULL,
        ErrorCode.DATABASE_CORRUPTED,
        ErrorCode.PERMISSION_DENIED,
        ErrorCode.STORAGE_UNAVAILABLE,
    }
)
_RECOVERABLE_CODES = frozenset(
    {ErrorCode.NETWORK_UNAVAILABLE, ErrorCode.TIMEOUT, ErrorCode.LOCK_HELD}
)
# System-category conditions that are still worth a retry.
_TRANSIENT_SYSTEM_CODES = _RECOVERABLE_CODES
_TRANSIENT_SYSTEM_ERRNOS = frozenset({errno.EIO})

GENERIC_SYSTEM_HINT = "This is a system error. Check system resources and try again."


class ClassifiedError(Exception):
    """Wraps an error with an explicitly chosen category."""

    def __init__(self, error: BaseException, category: Category) -> None:
        super().__init__(str(error))
        self.error = error
        self.category = category
        self.__cause__ = error

    def __str__(self) -> str:
        return str(self.error)


def iter_chain(err: BaseException | None) -> Iterator[BaseException]:
    """Yield ``err`` followed by each link of its cause chain, outermost first."""

    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _os_errno(exc: BaseException) -> int | None:
    if isinstance(exc, OSError) and exc.errno is not None:
        return exc.errno
    return None


def classify(err: BaseException | None) -> Category:
    """Determine the category of an error by walking its cause chain once."""

    if err is None:
        return Category.UNKNOWN

    os_category: Category | None = None
    for link in iter_chain(err):
        match link:
            case UserError():
                return Category.USER
            case SystemLevelError():
                return Category.SYSTEM
            case RecoverableError():
                return Category.RECOVERABLE
            case HumantimeError(code=code) if code in _SYSTEM_CODES:
                return Category.SYSTEM
            case HumantimeError(code=code) if code in _RECOVERABLE_CODES:
                return Category.RECOVERABLE
            case _:
                pass

        if os_category is None:
            os_category = _classify_os_error(link)

    return os_category or Category.UNKNOWN


def _classify_os_error(exc: BaseException) -> Category | None:
    code = _os_errno(exc)
    if code in _SYSTEM_ERRNOS:
        return Category.SYSTEM
    if code in _RECOVERABLE_ERRNOS:
        return Category.RECOVERABLE
    if isinstance(exc, _RECOVERABLE_OS_TYPES):
        return Category.RECOVERABLE
    if isinstance(exc, (PermissionError, FileNotFoundError)):
        return Category.SYSTEM
    return None


def with_category(err: BaseException | None, category: Category) -> ClassifiedError | None:
    """Attach an explicit category to ``err``."""

    if err is None:
        return None
    return ClassifiedError(err, category)


def get_category(err: BaseException | None) -> Category:
    """Return the explicit category if one was attached, otherwise classify."""

    for link in iter_chain(err):
        if isinstance(link, ClassifiedError):
            return link.category
    return classify(err)


def error_code(err: BaseException | None) -> ErrorCode | None:
    """Return the first :class:`ErrorCode` found on the cause chain."""

    for link in iter_chain(err):
        code = getattr(link, "code", None)
        if isinstance(code, ErrorCode):
            return code
    return None


def is_retryable(err: BaseException | None) -> bool:
    """Decide whether a failed delivery should be retried."""

    category = get_category(err)
    if category is Category.RECOVERABLE:
        for link in iter_chain(err):
            if isinstance(link, RecoverableError):
                return link.can_retry
        return True
    if category is Category.SYSTEM:
        if error_code(err) in _TRANSIENT_SYSTEM_CODES:
            return True
        return any(_os_errno(link) in _TRANSIENT_SYSTEM_ERRNOS for link in iter_chain(err))
    return False


def suggestion_for(err: BaseException | None) -> str:
    """Return the suggestion for ``err``: the code table first, then the error's own text."""

    code = error_code(err)
    if code is not None and ERROR_TABLE[code].suggestion:
        return ERROR_TABLE[code].suggestion
    for link in iter_chain(err):
        if isinstance(link, UserError) and link.suggestion:
            return link.suggestion
    return ""


def examples_for(err: BaseException | None) -> tuple[str, ...]:
    code = error_code(err)
    if code is None:
        return ()
    return ERROR_TABLE[code].examples


def category_hint(category: Category) -> str:
    if category is Category.USER:
        return "Check your input and try again. Use --help for usage information."
    if category is Category.SYSTEM:
        return GENERIC_SYSTEM_HINT
    if category is Category.RECOVERABLE:
        return "This error may resolve itself. The operation will be retried automatically."
    return ""


def format_error(err: BaseException | None) -> str:
    """Render ``err`` for display according to its category."""

    if err is None:
        return ""

    category = get_category(err)
    message = str(err)

    if category is Category.USER:
        suggestion = suggestion_for(err)
        if suggestion:
            return f"{message}\n\nTry: {suggestion}"
        return message
    if category is Category.SYSTEM:
        hint = suggestion_for(err) or GENERIC_SYSTEM_HINT
        return f"System error: {message}\n\n{hint}"
    if category is Category.RECOVERABLE:
        return f"{message} (will retry automatically)"
    return message


def exit_code_for(err: BaseException | None) -> ExitCode:
    if err is None:
        return ExitCode.SUCCESS
    return {
        Category.USER: ExitCode.USER_ERROR,
        Category.SYSTEM: ExitCode.SYSTEM_ERROR,
        Category.RECOVERABLE: ExitCode.RETRYABLE,
        Category.INTERNAL: ExitCode.INTERNAL_ERROR,
    }.get(get_category(err), ExitCode.ERROR)


__all__ = [
    "Category",
    "ClassifiedError",
    "ExitCode",
    "category_hint",
    "classify",
    "error_code",
    "examples_for",
    "exit_code_for",
    "format_error",
    "get_category",
    "is_retryable",
    "iter_chain",
    "suggestion_for",
    "with_category",
]
