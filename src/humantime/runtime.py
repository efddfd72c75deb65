"""Runtime bootstrap: logging and wiring of the store, repositories and notifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .config import HumantimeSettings, load_settings
from .notify.dispatcher import Dispatcher
from .notify.queue import RetryQueue
from .notify.transport import HttpxTransport, Transport
from .storage.active import ActiveBlockRepository
from .storage.blocks import BlockRepository
from .storage.kv import KeyValueStore, StoreOptions
from .storage.repository import (
    ConfigRepository,
    GoalRepository,
    NotifyConfigRepository,
    ProjectRepository,
    TaskRepository,
    WebhookRepository,
)
from .storage.safety import DiskUsageFn
from .tracking import TrackingService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for Humantime processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


@dataclass(slots=True)
class Runtime:
    """Everything a CLI command or the background scheduler needs, built from one settings object."""

    settings: HumantimeSettings
    store: KeyValueStore
    blocks: BlockRepository
    projects: ProjectRepository
    tasks: TaskRepository
    goals: GoalRepository
    webhooks: WebhookRepository
    config: ConfigRepository
    notify_config: NotifyConfigRepository
    active: ActiveBlockRepository
    tracking: TrackingService
    transport: Transport
    queue: RetryQueue
    dispatcher: Dispatcher

    @classmethod
    def create(
        cls,
        settings: HumantimeSettings | None = None,
        *,
        transport: Transport | None = None,
        clock: Callable[[], datetime] | None = None,
        disk_usage: DiskUsageFn | None = None,
    ) -> Runtime:
        settings = settings or load_settings()
        options = StoreOptions.from_settings(settings)
        options.disk_usage = disk_usage
        store = KeyValueStore.open(options, clock=clock)

        transport = transport or HttpxTransport()
        webhooks = WebhookRepository(store, clock=clock)
        queue = RetryQueue.from_settings(store, transport, settings, clock=clock)
        tracking = TrackingService(store, clock=clock)
        notify_config = NotifyConfigRepository(store)

        logger.debug(
            "Runtime ready",
            extra={"data_dir": str(settings.data_dir), "in_memory": store.in_memory},
        )
        return cls(
            settings=settings,
            store=store,
            blocks=tracking.blocks,
            projects=tracking.projects,
            tasks=tracking.tasks,
            goals=GoalRepository(store),
            webhooks=webhooks,
            config=tracking.config,
            notify_config=notify_config,
            active=tracking.active,
            tracking=tracking,
            transport=transport,
            queue=queue,
            dispatcher=Dispatcher(
                webhooks,
                transport,
                queue=queue,
                notify_config=notify_config,
                http_timeout=settings.http_timeout,
            ),
        )

    def close(self) -> None:
        if self.queue.running:
            logger.warning("Closing runtime while the retry queue is still running")
        self.store.close()

    async def aclose(self) -> None:
        """Stop the retry queue and close the store."""

        await self.queue.stop()
        self.close()

    def __enter__(self) -> Runtime:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> Runtime:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


__all__ = ["Runtime", "configure_logging"]
