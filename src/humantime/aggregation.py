"""Duration rollups over blocks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .storage.models import Block, utcnow


@dataclass(slots=True)
class ProjectAggregate:
    project_sid: str
    block_count: int = 0
    duration: timedelta = timedelta(0)


@dataclass(slots=True)
class TaskAggregate:
    project_sid: str
    task_sid: str
    block_count: int = 0
    duration: timedelta = timedelta(0)


def total_duration(blocks: Iterable[Block], now: datetime | None = None) -> timedelta:
    """Sum block durations; open blocks count up to ``now``."""

    now = now or utcnow()
    return sum((block.duration(now) for block in blocks), timedelta(0))


def aggregate_by_project(
    blocks: Iterable[Block], now: datetime | None = None
) -> list[ProjectAggregate]:
    """Per-project totals, longest first. Equal durations keep first-seen order."""

    now = now or utcnow()
    groups: dict[str, ProjectAggregate] = {}
    for block in blocks:
        aggregate = groups.get(block.project_sid)
        if aggregate is None:
            aggregate = groups[block.project_sid] = ProjectAggregate(block.project_sid)
        aggregate.block_count += 1
        aggregate.duration += block.duration(now)
    return sorted(groups.values(), key=lambda agg: agg.duration, reverse=True)


def aggregate_by_task(blocks: Iterable[Block], now: datetime | None = None) -> list[TaskAggregate]:
    now = now or utcnow()
    groups: dict[tuple[str, str], TaskAggregate] = {}
    for block in blocks:
        group_key = (block.project_sid, block.task_sid)
        aggregate = groups.get(group_key)
        if aggregate is None:
            aggregate = groups[group_key] = TaskAggregate(*group_key)
        aggregate.block_count += 1
        aggregate.duration += block.duration(now)
    return sorted(groups.values(), key=lambda agg: agg.duration, reverse=True)


__all__ = [
    "ProjectAggregate",
    "TaskAggregate",
    "aggregate_by_project",
    "aggregate_by_task",
    "total_duration",
]
