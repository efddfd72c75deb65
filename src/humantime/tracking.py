"""Start, stop, resume and undo commands driving the active-tracking state machine."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from .errors import ErrorCode, KeyNotFoundError, user_error
from .storage.active import ActiveBlockRepository
from .storage.blocks import BlockRepository
from .storage.kv import KeyValueStore
from .storage.models import Block, UndoAction, ensure_aware, utcnow, validate_sid
from .storage.repository import (
    ConfigRepository,
    ProjectRepository,
    TaskRepository,
    UndoRepository,
)

logger = logging.getLogger(__name__)


class TrackingService:
    """High-level tracking commands. Each command runs in a single store transaction."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or utcnow
        self.blocks = BlockRepository(store, clock=self._clock)
        self.projects = ProjectRepository(store)
        self.tasks = TaskRepository(store)
        self.active = ActiveBlockRepository(store)
        self.config = ConfigRepository(store)
        self.last_action = UndoRepository(store)

    def _now(self, at: datetime | None) -> datetime:
        return ensure_aware(at) if at is not None else self._clock()

    def current(self) -> Block | None:
        return self.active.get_active_block(self.blocks)

    def start(
        self,
        project_sid: str,
        task_sid: str = "",
        note: str = "",
        at: datetime | None = None,
    ) -> Block:
        """Begin tracking ``project_sid`` (and optionally a task), ending any running block at ``at``."""

        if not project_sid:
            raise user_error(ErrorCode.PROJECT_REQUIRED, field="project_sid")
        validate_sid(project_sid, "project_sid")
        if task_sid:
            validate_sid(task_sid, "task_sid")
        started_at = self._now(at)

        with self._store.transaction():
            running = self.current()
            if running is not None:
                self._close(running, started_at)

            self.projects.get_or_create(project_sid, project_sid)
            if task_sid:
                self.tasks.get_or_create(project_sid, task_sid, task_sid)

            owner_key = self.config.get().user_key
            block = self.blocks.create_started(owner_key, project_sid, task_sid, note, started_at)
            self.active.set_active(block.key)
            self.last_action.save_start(block.key)

        logger.info(
            "Tracking started",
            extra={"block": block.key, "project_sid": project_sid, "task_sid": task_sid},
        )
        return block

    def stop(self, at: datetime | None = None) -> Block:
        """End the running block at ``at`` and go Idle."""

        ended_at = self._now(at)
        with self._store.transaction():
            running = self.current()
            if running is None:
                raise user_error(ErrorCode.NO_ACTIVE_TRACKING)
            self._close(running, ended_at)
            self.active.clear_active()
            self.last_action.save_stop(running)

        logger.info("Tracking stopped", extra={"block": running.key, "duration": str(running.duration())})
        return running

    def resume(self, at: datetime | None = None) -> Block:
        """Start a new block on the project and task of the previous block."""

        previous = self.active.get_previous_block(self.blocks)
        if previous is None:
            raise user_error(ErrorCode.NO_PREVIOUS_BLOCK)
        return self.start(previous.project_sid, previous.task_sid, at=at)

    def delete_block(self, block_key: str) -> Block:
        """Delete a block, keeping a snapshot so :meth:`undo` can bring it back."""

        with self._store.transaction():
            try:
                block = self.blocks.get(block_key)
            except KeyNotFoundError:
                raise user_error(ErrorCode.BLOCK_NOT_FOUND, field="key", value=block_key) from None
            self.blocks.delete(block.key)
            self.active.forget(block.key)
            self.last_action.save_delete(block)

        logger.info("Block deleted", extra={"block": block.key})
        return block

    def undo(self) -> Block | None:
        """Reverse the last start, stop or delete.

        Undoing a start deletes the block it created. Undoing a stop reopens the block
        and makes it active again, which is refused while another block is tracking.
        Undoing a delete restores the saved snapshot under its original key. Returns the
        affected block, or None when there is nothing to undo.
        """

        with self._store.transaction():
            state = self.last_action.get()
            if state is None:
                return None

            if state.action is UndoAction.DELETE:
                block = state.block_snapshot
                if block is not None:
                    self.blocks.update(block)
                    if block.is_active and self.current() is None:
                        self.active.set_active(block.key)
            else:
                try:
                    block = self.blocks.get(state.block_key)
                except KeyNotFoundError:
                    block = None
                if block is not None and state.action is UndoAction.START:
                    self.blocks.delete(block.key)
                    self.active.forget(block.key)
                elif block is not None:
                    running = self.current()
                    if running is not None:
                        raise user_error(ErrorCode.ALREADY_TRACKING, field="key", value=running.key)
                    block.timestamp_end = None
                    self.blocks.update(block)
                    self.active.set_active(block.key)

            self.last_action.clear()

        if block is None:
            logger.info("Nothing left to undo", extra={"action": state.action.value})
        else:
            logger.info("Undid last action", extra={"action": state.action.value, "block": block.key})
        return block

    def _close(self, block: Block, end: datetime) -> None:
        if end < block.timestamp_start:
            raise user_error(
                ErrorCode.END_BEFORE_START, field="timestamp_end", value=end.isoformat()
            )
        block.timestamp_end = end
        self.blocks.update(block)


__all__ = ["TrackingService"]
