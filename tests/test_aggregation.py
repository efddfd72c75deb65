from __future__ import annotations

from datetime import timedelta

from humantime.aggregation import aggregate_by_project, aggregate_by_task, total_duration
from humantime.storage import Block

from conftest import T0


def _block(project: str, task: str, start: timedelta, end: timedelta | None) -> Block:
    return Block(
        project_sid=project,
        task_sid=task,
        timestamp_start=T0 + start,
        timestamp_end=T0 + end if end is not None else None,
    )


def test_total_duration_counts_open_block_to_now() -> None:
    blocks = [
        _block("alpha", "", timedelta(hours=-2), timedelta(hours=-1)),
        _block("alpha", "", timedelta(hours=-4), timedelta(hours=-3)),
        _block("beta", "", timedelta(minutes=-30), None),
    ]

    assert total_duration(blocks, now=T0) == timedelta(hours=2, minutes=30)


def test_total_duration_of_nothing() -> None:
    assert total_duration([], now=T0) == timedelta(0)


def test_projects_sorted_longest_first_with_stable_ties() -> None:
    blocks = [
        _block("a", "", timedelta(hours=-10), timedelta(hours=-9)),
        _block("b", "", timedelta(hours=-8), timedelta(hours=-7)),
        _block("c", "", timedelta(hours=-6), timedelta(hours=-5)),
        _block("b", "", timedelta(hours=-4), timedelta(hours=-3)),
    ]

    result = aggregate_by_project(blocks, now=T0)

    assert [agg.project_sid for agg in result] == ["b", "a", "c"]
    assert result[0].block_count == 2
    assert result[0].duration == timedelta(hours=2)
    assert result[1].duration == result[2].duration == timedelta(hours=1)


def test_tasks_grouped_per_project() -> None:
    blocks = [
        _block("a", "design", timedelta(hours=-5), timedelta(hours=-4)),
        _block("b", "design", timedelta(hours=-4), timedelta(hours=-2)),
        _block("a", "design", timedelta(minutes=-20), None),
        _block("a", "", timedelta(hours=-1), timedelta(minutes=-30)),
    ]

    result = aggregate_by_task(blocks, now=T0)

    assert [(agg.project_sid, agg.task_sid) for agg in result] == [
        ("b", "design"),
        ("a", "design"),
        ("a", ""),
    ]
    assert result[1].block_count == 2
    assert result[1].duration == timedelta(hours=1, minutes=20)
