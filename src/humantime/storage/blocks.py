"""Block repository and its time-based queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .kv import KeyValueStore
from .models import PREFIX_BLOCK, Block, block_key, ensure_aware, new_block_key, utcnow
from .repository import Repository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BlockFilter:
    """Criteria for :meth:`BlockRepository.list_filtered`; empty fields match everything."""

    project_sid: str = ""
    task_sid: str = ""
    start_after: datetime | None = None
    end_before: datetime | None = None
    limit: int = 0


class BlockRepository(Repository[Block]):
    prefix = PREFIX_BLOCK
    model = Block

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(store)
        self._clock = clock or utcnow

    def key_for(self, *ids: str) -> str:
        (block_id,) = ids
        if block_id.startswith(f"{PREFIX_BLOCK}:"):
            return block_id
        return block_key(block_id)

    def create(self, entity: Block) -> Block:
        """Assign a fresh time-ordered key when missing and persist the block."""

        if not entity.key:
            entity.key = new_block_key(self._clock())
        self._store.set_model(entity)
        logger.debug(
            "Created block",
            extra={"key": entity.key, "project_sid": entity.project_sid, "task_sid": entity.task_sid},
        )
        return entity

    def create_started(
        self,
        owner_key: str,
        project_sid: str,
        task_sid: str = "",
        note: str = "",
        start: datetime | None = None,
    ) -> Block:
        block = Block(
            owner_key=owner_key,
            project_sid=project_sid,
            task_sid=task_sid,
            note=note,
            timestamp_start=start or self._clock(),
        )
        return self.create(block)

    def list_filtered(self, criteria: BlockFilter | None = None) -> list[Block]:
        """Blocks matching every set field of ``criteria``, newest start first."""

        criteria = criteria or BlockFilter()
        now = self._clock()
        start_after = ensure_aware(criteria.start_after) if criteria.start_after else None
        end_before = ensure_aware(criteria.end_before) if criteria.end_before else None

        matches: list[Block] = []
        for block in self.list():
            if criteria.project_sid and block.project_sid != criteria.project_sid:
                continue
            if criteria.task_sid and block.task_sid != criteria.task_sid:
                continue
            if start_after is not None and block.timestamp_start < start_after:
                continue
            if end_before is not None and block.effective_end(now) > end_before:
                continue
            matches.append(block)

        # sort() is stable; keys are time-ordered so ties resolve the same way every call.
        matches.sort(key=lambda block: block.timestamp_start, reverse=True)
        if criteria.limit > 0:
            matches = matches[: criteria.limit]
        return matches

    def list_by_project(self, project_sid: str) -> list[Block]:
        return self.list_filtered(BlockFilter(project_sid=project_sid))

    def list_by_project_and_task(self, project_sid: str, task_sid: str) -> list[Block]:
        return self.list_filtered(BlockFilter(project_sid=project_sid, task_sid=task_sid))

    def list_by_time_range(self, start: datetime, end: datetime) -> list[Block]:
        """Blocks intersecting the closed interval ``[start, end]``; open blocks run until now."""

        start, end = ensure_aware(start), ensure_aware(end)
        now = self._clock()
        return [
            block
            for block in self.list()
            if block.timestamp_start <= end and block.effective_end(now) >= start
        ]


__all__ = ["BlockFilter", "BlockRepository"]
