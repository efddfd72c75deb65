"""Fan notifications out to every enabled webhook."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from ..errors import (
    Category,
    ErrorCode,
    HumantimeError,
    KeyNotFoundError,
    format_error,
    get_category,
    is_retryable,
    user_error,
)
from ..storage.models import Webhook
from ..storage.repository import NotifyConfigRepository, WebhookRepository
from .formatters import CONTENT_TYPE_JSON, get_formatter
from .models import Notification, NotificationType
from .queue import RetryQueue
from .transport import Transport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchResult:
    webhook_name: str
    success: bool
    status_code: int = 0
    duration: timedelta = timedelta(0)
    error: BaseException | None = None
    queued: bool = False
    # set when queueing or recording the attempt failed; the delivery outcome still stands
    storage_error: HumantimeError | None = None

    @property
    def category(self) -> Category | None:
        return get_category(self.error) if self.error is not None else None


class Dispatcher:
    """Format and deliver a :class:`Notification` to all enabled webhooks concurrently.

    Transient failures go to the retry queue; every attempt is recorded on the webhook.
    Types switched off in the notification settings are skipped by :meth:`send`; targeted
    sends through :meth:`send_to` and :meth:`test` always go out.
    """

    def __init__(
        self,
        webhooks: WebhookRepository,
        transport: Transport,
        *,
        queue: RetryQueue | None = None,
        notify_config: NotifyConfigRepository | None = None,
        http_timeout: float = 30.0,
    ) -> None:
        self._webhooks = webhooks
        self._transport = transport
        self._queue = queue
        self._notify_config = notify_config
        self._http_timeout = http_timeout

    async def send(self, notification: Notification) -> list[DispatchResult]:
        if self._notify_config is not None and not self._notify_config.get().is_type_enabled(
            notification.type
        ):
            logger.debug(
                "Notification type disabled; not sent", extra={"type": notification.type.value}
            )
            return []
        webhooks = self._webhooks.list_enabled()
        if not webhooks:
            logger.debug("No enabled webhooks; notification not sent")
            return []
        return list(
            await asyncio.gather(*(self._deliver(notification, webhook) for webhook in webhooks))
        )

    async def send_to(self, notification: Notification, name: str) -> DispatchResult:
        """Deliver to one webhook by name, enabled or not."""

        if not self._webhooks.exists(name):
            return DispatchResult(
                webhook_name=name,
                success=False,
                error=user_error(ErrorCode.WEBHOOK_NOT_FOUND, field="name", value=name),
            )
        return await self._deliver(notification, self._webhooks.get(name))

    async def test(self, name: str) -> DispatchResult:
        notification = Notification(
            type=NotificationType.TEST,
            title="Humantime Test",
            message=(
                "This is a test notification from Humantime. "
                "If you see this, your webhook is configured correctly!"
            ),
        ).with_field("Webhook", name)
        return await self.send_to(notification, name)

    def count_enabled(self) -> int:
        return len(self._webhooks.list_enabled())

    async def _deliver(self, notification: Notification, webhook: Webhook) -> DispatchResult:
        body = get_formatter(webhook.type)(notification)
        result = DispatchResult(webhook_name=webhook.name, success=False)
        try:
            delivery = await asyncio.wait_for(
                self._transport.send(webhook.url, CONTENT_TYPE_JSON, body, self._http_timeout),
                timeout=self._http_timeout,
            )
        except Exception as exc:
            result.error = exc
            if self._queue is not None and is_retryable(exc):
                try:
                    self._queue.enqueue(webhook.name, webhook.url, CONTENT_TYPE_JSON, body, error=exc)
                    result.queued = True
                except HumantimeError as queue_exc:
                    result.storage_error = queue_exc
                    logger.error(
                        "Could not queue notification for retry",
                        extra={"webhook": webhook.name, "error": format_error(queue_exc)},
                    )
            logger.warning(
                "Webhook delivery failed",
                extra={
                    "webhook": webhook.name,
                    "url": webhook.masked_url,
                    "error": str(exc),
                    "queued": result.queued,
                },
            )
        else:
            result.success = True
            result.status_code = delivery.status_code
            result.duration = delivery.duration

        try:
            self._webhooks.record_delivery(webhook.name, result.error)
        except KeyNotFoundError:
            logger.debug("Webhook removed during delivery", extra={"webhook": webhook.name})
        except HumantimeError as exc:
            result.storage_error = result.storage_error or exc
            logger.error(
                "Could not record delivery",
                extra={"webhook": webhook.name, "error": format_error(exc)},
            )
        return result


__all__ = ["DispatchResult", "Dispatcher"]
