"""Durable retry queue for webhook deliveries that failed transiently."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Sequence

from ..config import DEFAULT_BACKOFF_SCHEDULE, HumantimeSettings
from ..errors import HumantimeError, format_error, get_category, is_retryable
from ..storage.kv import KeyValueStore, decode_model
from ..storage.models import ensure_aware, mask_url, utcnow, uuid7
from .models import PREFIX_NOTIFICATION, RetryableNotification
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_CHECK_INTERVAL = 30.0
DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass(slots=True)
class PassResult:
    """Ids handled by one :meth:`RetryQueue.process_due` pass."""

    delivered: list[str] = field(default_factory=list)
    rescheduled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.delivered) + len(self.rescheduled) + len(self.failed)


@dataclass(slots=True)
class QueueStats:
    queued: int = 0
    delivered: int = 0
    failed: int = 0
    pending: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RetryQueue:
    """Store-backed queue polled on a timer.

    Entries live under ``notification:`` so they survive restarts. Each pass delivers
    every due entry, drops permanent failures and reschedules transient ones along
    the backoff schedule until ``max_attempts`` is reached.
    """

    def __init__(
        self,
        store: KeyValueStore,
        transport: Transport,
        *,
        backoff_schedule: Sequence[timedelta] = DEFAULT_BACKOFF_SCHEDULE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not backoff_schedule:
            raise ValueError("backoff_schedule must contain at least one delay")
        self._store = store
        self._transport = transport
        self._schedule = tuple(backoff_schedule)
        self._max_attempts = max_attempts
        self._check_interval = check_interval
        self._http_timeout = http_timeout
        self._clock = clock or utcnow
        self._stats = QueueStats()
        self._pass_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        store: KeyValueStore,
        transport: Transport,
        settings: HumantimeSettings,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> RetryQueue:
        return cls(
            store,
            transport,
            backoff_schedule=settings.retry_backoff_schedule,
            max_attempts=settings.retry_max_attempts,
            check_interval=settings.retry_check_interval,
            http_timeout=settings.http_timeout,
            clock=clock,
        )

    def backoff(self, attempt: int) -> timedelta:
        """Delay before the next try after ``attempt`` failures; clamps at the last step."""

        return self._schedule[min(max(attempt, 0), len(self._schedule) - 1)]

    def enqueue(
        self,
        webhook_name: str,
        url: str,
        content_type: str,
        payload: bytes,
        *,
        max_attempts: int | None = None,
        error: BaseException | str | None = None,
    ) -> RetryableNotification:
        now = self._clock()
        entry = RetryableNotification(
            id=str(uuid7(now)),
            webhook_name=webhook_name,
            url=url,
            content_type=content_type,
            payload=payload,
            attempt_count=0,
            max_attempts=max_attempts or self._max_attempts,
            next_attempt_at=now + self.backoff(0),
            created_at=now,
            last_error=str(error) if error is not None else "",
        )
        self._store.set_model(entry)
        self._stats.queued += 1
        logger.info(
            "Notification queued for retry",
            extra={"webhook": webhook_name, "notification_id": entry.id, "url": mask_url(url)},
        )
        return entry

    def list(self) -> list[RetryableNotification]:
        """Pending entries ordered by their next attempt."""

        entries: list[RetryableNotification] = []
        for key, raw in self._store.items_by_prefix(f"{PREFIX_NOTIFICATION}:"):
            try:
                entries.append(decode_model(key, raw, RetryableNotification))
            except HumantimeError as exc:
                logger.warning("Skipping unreadable queue entry", extra={"key": key, "error": str(exc)})
        entries.sort(key=lambda entry: entry.next_attempt_at)
        return entries

    @property
    def pending(self) -> int:
        return len(self._store.list_by_prefix(f"{PREFIX_NOTIFICATION}:"))

    def stats(self) -> QueueStats:
        self._stats.pending = self.pending
        return QueueStats(**self._stats.as_dict())

    def clear(self) -> int:
        """Drop every pending entry and return how many were removed."""

        with self._store.transaction():
            keys = self._store.list_by_prefix(f"{PREFIX_NOTIFICATION}:")
            for key in keys:
                self._store.delete(key)
        if keys:
            logger.info("Cleared retry queue", extra={"removed": len(keys)})
        return len(keys)

    async def process_due(
        self,
        now: datetime | None = None,
        *,
        stop_event: asyncio.Event | None = None,
    ) -> PassResult:
        """Run one pass over entries whose ``next_attempt_at`` is not after ``now``."""

        async with self._pass_lock:
            now = ensure_aware(now) if now is not None else self._clock()
            result = PassResult()
            due = [entry for entry in self.list() if entry.next_attempt_at <= now]
            for entry in due:
                if stop_event is not None and stop_event.is_set():
                    break
                await self._attempt(entry, now, result)
            if result.processed:
                logger.debug(
                    "Retry pass finished",
                    extra={
                        "delivered": len(result.delivered),
                        "rescheduled": len(result.rescheduled),
                        "failed": len(result.failed),
                    },
                )
            return result

    async def _attempt(self, entry: RetryableNotification, now: datetime, result: PassResult) -> None:
        try:
            await asyncio.wait_for(
                self._transport.send(
                    entry.url, entry.content_type, entry.payload, self._http_timeout
                ),
                timeout=self._http_timeout,
            )
        except Exception as exc:
            self._record_failure(entry, exc, now, result)
            return

        self._store.delete(entry.key)
        self._stats.delivered += 1
        result.delivered.append(entry.id)
        logger.info(
            "Queued notification delivered",
            extra={"webhook": entry.webhook_name, "attempts": entry.attempt_count + 1},
        )

    def _record_failure(
        self,
        entry: RetryableNotification,
        exc: Exception,
        now: datetime,
        result: PassResult,
    ) -> None:
        context = {
            "webhook": entry.webhook_name,
            "notification_id": entry.id,
            "category": get_category(exc).value,
            "error": format_error(exc),
        }
        if not is_retryable(exc):
            self._drop(entry, result)
            logger.warning("Notification failed permanently", extra=context)
            return

        entry.attempt_count += 1
        entry.last_error = str(exc)
        if entry.exhausted:
            self._drop(entry, result)
            logger.warning(
                "Notification failed after max attempts",
                extra={**context, "attempts": entry.attempt_count},
            )
            return

        entry.next_attempt_at = now + self.backoff(entry.attempt_count)
        self._store.set_model(entry)
        result.rescheduled.append(entry.id)
        logger.debug(
            "Notification rescheduled",
            extra={**context, "attempts": entry.attempt_count, "next_attempt_at": entry.next_attempt_at.isoformat()},
        )

    def _drop(self, entry: RetryableNotification, result: PassResult) -> None:
        self._store.delete(entry.key)
        self._stats.failed += 1
        result.failed.append(entry.id)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set, one pass every ``check_interval`` seconds."""

        logger.info("Retry queue running", extra={"interval": self._check_interval})
        while not stop_event.is_set():
            try:
                await self.process_due(stop_event=stop_event)
            except HumantimeError as exc:
                logger.warning("Retry pass aborted", extra={"error": format_error(exc)})
            except Exception:
                logger.exception("Retry pass failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._check_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Retry queue stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Launch :meth:`run` as a background task on the running loop."""

        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event))
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        await task


__all__ = [
    "DEFAULT_CHECK_INTERVAL",
    "DEFAULT_HTTP_TIMEOUT",
    "DEFAULT_MAX_ATTEMPTS",
    "PassResult",
    "QueueStats",
    "RetryQueue",
]
