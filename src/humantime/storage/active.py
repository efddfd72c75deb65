"""The active-tracking state machine.

A single ``active`` record names the block being tracked (Tracking) or nothing
(Idle), plus the block tracked before it. Every transition is a read-modify-write
inside one store transaction, so concurrent writers serialize on whole transitions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import KeyNotFoundError
from .kv import KeyValueStore
from .models import KEY_ACTIVE, ActiveBlock, Block

if TYPE_CHECKING:
    from .blocks import BlockRepository

logger = logging.getLogger(__name__)


class ActiveBlockRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self) -> ActiveBlock:
        """Return the singleton, creating an Idle one on first access."""

        try:
            return self._store.get_model(KEY_ACTIVE, ActiveBlock)
        except KeyNotFoundError:
            pass
        with self._store.transaction():
            return self._load_or_init()

    def _load_or_init(self) -> ActiveBlock:
        try:
            return self._store.get_model(KEY_ACTIVE, ActiveBlock)
        except KeyNotFoundError:
            active = ActiveBlock()
            self._store.set_model(active)
            return active

    def set_active(self, block_key: str) -> ActiveBlock:
        """Install ``block_key`` as active, rotating any current block into ``previous``."""

        with self._store.transaction():
            active = self._load_or_init()
            if active.is_tracking and active.active_block_key != block_key:
                active.previous_block_key = active.active_block_key
            active.active_block_key = block_key
            self._store.set_model(active)
        logger.debug(
            "Active block set",
            extra={"active": active.active_block_key, "previous": active.previous_block_key},
        )
        return active

    def clear_active(self) -> ActiveBlock:
        """Move the active block into ``previous`` and go Idle. A no-op while Idle."""

        with self._store.transaction():
            active = self._load_or_init()
            if not active.is_tracking:
                return active
            active.previous_block_key = active.active_block_key
            active.active_block_key = ""
            self._store.set_model(active)
        logger.debug("Active block cleared", extra={"previous": active.previous_block_key})
        return active

    def forget(self, block_key: str) -> ActiveBlock:
        """Drop ``block_key`` from both pointers without rotating, for blocks that no longer exist."""

        with self._store.transaction():
            active = self._load_or_init()
            if block_key not in (active.active_block_key, active.previous_block_key):
                return active
            if active.active_block_key == block_key:
                active.active_block_key = ""
            if active.previous_block_key == block_key:
                active.previous_block_key = ""
            self._store.set_model(active)
        logger.debug("Block dropped from active state", extra={"key": block_key})
        return active

    def is_tracking(self) -> bool:
        return self.get().is_tracking

    def get_active_block(self, blocks: BlockRepository) -> Block | None:
        return self._resolve(self.get().active_block_key, blocks)

    def get_previous_block(self, blocks: BlockRepository) -> Block | None:
        return self._resolve(self.get().previous_block_key, blocks)

    @staticmethod
    def _resolve(key: str, blocks: BlockRepository) -> Block | None:
        if not key:
            return None
        try:
            return blocks.get(key)
        except KeyNotFoundError:
            logger.debug("Active pointer references a missing block", extra={"key": key})
            return None


__all__ = ["ActiveBlockRepository"]
