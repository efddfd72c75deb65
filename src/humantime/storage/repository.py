"""Typed repositories layered over the key-value store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel

from ..errors import KeyCollisionError, KeyNotFoundError
from .kv import KeyValueStore, decode_model
from .models import (
    KEY_CONFIG,
    KEY_NOTIFY_CONFIG,
    KEY_UNDO,
    PREFIX_GOAL,
    PREFIX_PROJECT,
    PREFIX_TASK,
    PREFIX_WEBHOOK,
    Block,
    Config,
    Goal,
    NotifyConfig,
    Project,
    Task,
    UndoAction,
    UndoState,
    Webhook,
    goal_key,
    project_key,
    task_key,
    task_prefix,
    utcnow,
    webhook_key,
)

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=BaseModel)


class Repository(Generic[EntityT]):
    """CRUD over every entity stored under ``<prefix>:``.

    Subclasses set ``prefix`` and ``model`` and translate natural ids into keys in
    :meth:`key_for`. Repositories hold no state besides the store reference.
    """

    prefix: str = ""
    model: type[EntityT]

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def key_for(self, *ids: str) -> str:
        raise NotImplementedError

    def create(self, entity: EntityT) -> EntityT:
        """Persist ``entity``; raise :class:`KeyCollisionError` if its key is taken."""

        key = entity.key  # type: ignore[attr-defined]
        with self._store.transaction():
            if self._store.exists(key):
                raise KeyCollisionError(key, field="key", value=key)
            self._store.set_model(entity)  # type: ignore[arg-type]
        return entity

    def get(self, *ids: str) -> EntityT:
        return self._store.get_model(self.key_for(*ids), self.model)

    def update(self, entity: EntityT) -> EntityT:
        self._store.set_model(entity)  # type: ignore[arg-type]
        return entity

    def delete(self, *ids: str) -> None:
        self._store.delete(self.key_for(*ids))

    def exists(self, *ids: str) -> bool:
        return self._store.exists(self.key_for(*ids))

    def list(self) -> list[EntityT]:
        return self._decode_all(f"{self.prefix}:")

    def _decode_all(self, prefix: str) -> list[EntityT]:
        return [decode_model(key, raw, self.model) for key, raw in self._store.items_by_prefix(prefix)]

    def _get_or_create(self, key: str, factory: Callable[[], EntityT]) -> tuple[EntityT, bool]:
        with self._store.transaction():
            try:
                return self._store.get_model(key, self.model), False
            except KeyNotFoundError:
                entity = factory()
                self._store.set_model(entity)  # type: ignore[arg-type]
        logger.debug("Created entity", extra={"key": key})
        return entity, True


class ProjectRepository(Repository[Project]):
    prefix = PREFIX_PROJECT
    model = Project

    def key_for(self, *ids: str) -> str:
        (sid,) = ids
        return project_key(sid)

    def get_or_create(self, sid: str, display_name: str = "") -> tuple[Project, bool]:
        """Return the project for ``sid``, creating it when absent. The first display name wins."""

        return self._get_or_create(
            project_key(sid), lambda: Project(sid=sid, display_name=display_name or sid)
        )


class TaskRepository(Repository[Task]):
    prefix = PREFIX_TASK
    model = Task

    def key_for(self, *ids: str) -> str:
        project_sid, sid = ids
        return task_key(project_sid, sid)

    def get_or_create(
        self, project_sid: str, sid: str, display_name: str = ""
    ) -> tuple[Task, bool]:
        return self._get_or_create(
            task_key(project_sid, sid),
            lambda: Task(project_sid=project_sid, sid=sid, display_name=display_name or sid),
        )

    def list_by_project(self, project_sid: str) -> list[Task]:
        return self._decode_all(task_prefix(project_sid))


class GoalRepository(Repository[Goal]):
    prefix = PREFIX_GOAL
    model = Goal

    def key_for(self, *ids: str) -> str:
        (project_sid,) = ids
        return goal_key(project_sid)

    def upsert(self, goal: Goal) -> Goal:
        """Create or replace the single goal of a project."""

        self._store.set_model(goal)
        return goal


class WebhookRepository(Repository[Webhook]):
    prefix = PREFIX_WEBHOOK
    model = Webhook

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(store)
        self._clock = clock or utcnow

    def key_for(self, *ids: str) -> str:
        (name,) = ids
        return webhook_key(name)

    def list_enabled(self) -> list[Webhook]:
        return [webhook for webhook in self.list() if webhook.enabled]

    def enable(self, name: str) -> Webhook:
        return self._modify(name, enabled=True)

    def disable(self, name: str) -> Webhook:
        return self._modify(name, enabled=False)

    def record_delivery(self, name: str, error: BaseException | str | None = None) -> Webhook:
        """Stamp ``last_used`` and store (or clear) ``last_error`` after a delivery attempt."""

        return self._modify(
            name,
            last_used=self._clock(),
            last_error=str(error) if error is not None else "",
        )

    def _modify(self, name: str, **changes: object) -> Webhook:
        with self._store.transaction():
            webhook = self.get(name)
            for attr, value in changes.items():
                setattr(webhook, attr, value)
            self._store.set_model(webhook)
        return webhook


class ConfigRepository:
    """Access to the lazily created configuration singleton."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self) -> Config:
        try:
            return self._store.get_model(KEY_CONFIG, Config)
        except KeyNotFoundError:
            pass

        with self._store.transaction():
            try:
                return self._store.get_model(KEY_CONFIG, Config)
            except KeyNotFoundError:
                config = Config()
                self._store.set_model(config)
        logger.info("Initialized configuration", extra={"user_key": config.user_key})
        return config

    def update(self, config: Config) -> Config:
        self._store.set_model(config)
        return config


class NotifyConfigRepository:
    """Notification settings; defaults are served until something is saved."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self) -> NotifyConfig:
        try:
            return self._store.get_model(KEY_NOTIFY_CONFIG, NotifyConfig)
        except KeyNotFoundError:
            return NotifyConfig()

    def set(self, config: NotifyConfig) -> NotifyConfig:
        # re-run the validators in case the instance was built with model_construct
        config = NotifyConfig.model_validate(config.model_dump())
        self._store.set_model(config)
        return config


class UndoRepository:
    """Remembers the last start, stop or delete so it can be reversed."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self) -> UndoState | None:
        try:
            return self._store.get_model(KEY_UNDO, UndoState)
        except KeyNotFoundError:
            return None

    def set(self, state: UndoState) -> UndoState:
        self._store.set_model(state)
        return state

    def clear(self) -> None:
        self._store.delete(KEY_UNDO)

    def save_start(self, block_key: str) -> UndoState:
        return self.set(UndoState(action=UndoAction.START, block_key=block_key))

    def save_stop(self, block: Block) -> UndoState:
        return self.set(
            UndoState(action=UndoAction.STOP, block_key=block.key, block_snapshot=block.model_copy())
        )

    def save_delete(self, block: Block) -> UndoState:
        return self.set(
            UndoState(action=UndoAction.DELETE, block_key=block.key, block_snapshot=block.model_copy())
        )


__all__ = [
    "ConfigRepository",
    "GoalRepository",
    "NotifyConfigRepository",
    "ProjectRepository",
    "Repository",
    "TaskRepository",
    "UndoRepository",
    "WebhookRepository",
]
