from __future__ import annotations

from datetime import timedelta

import pytest

from humantime.errors import ErrorCode, UserError
from humantime.tracking import TrackingService


@pytest.fixture
def tracking(store, clock) -> TrackingService:
    return TrackingService(store, clock=clock)


def test_start_creates_block_project_and_task(tracking: TrackingService, clock) -> None:
    block = tracking.start("alpha", "design", "kickoff")

    assert block.is_active
    assert block.timestamp_start == clock.now
    assert block.owner_key == tracking.config.get().user_key
    assert tracking.current() == block
    assert tracking.projects.get("alpha").display_name == "alpha"
    assert tracking.tasks.exists("alpha", "design")
    assert tracking.active.is_tracking()


def test_start_while_tracking_closes_running_block(tracking: TrackingService, clock) -> None:
    first = tracking.start("alpha")
    clock.advance(minutes=30)

    second = tracking.start("beta")

    closed = tracking.blocks.get(first.key)
    assert closed.timestamp_end == clock.now
    assert closed.duration() == timedelta(minutes=30)
    assert tracking.current() == second
    active = tracking.active.get()
    assert active.active_block_key == second.key
    assert active.previous_block_key == first.key


def test_stop_ends_block_and_goes_idle(tracking: TrackingService, clock) -> None:
    started = tracking.start("alpha")
    clock.advance(hours=1)

    stopped = tracking.stop()

    assert stopped.key == started.key
    assert stopped.timestamp_end == clock.now
    assert tracking.current() is None
    assert tracking.active.get().previous_block_key == started.key


def test_stop_when_idle(tracking: TrackingService) -> None:
    with pytest.raises(UserError) as excinfo:
        tracking.stop()

    assert excinfo.value.code is ErrorCode.NO_ACTIVE_TRACKING


def test_stop_before_start_leaves_state_untouched(tracking: TrackingService, clock) -> None:
    started = tracking.start("alpha")

    with pytest.raises(UserError) as excinfo:
        tracking.stop(at=clock.now - timedelta(minutes=5))

    assert excinfo.value.code is ErrorCode.END_BEFORE_START
    assert tracking.blocks.get(started.key).timestamp_end is None
    assert tracking.active.get().active_block_key == started.key


def test_resume_after_stop(tracking: TrackingService, clock) -> None:
    first = tracking.start("alpha", "design")
    clock.advance(minutes=10)
    tracking.stop()
    clock.advance(minutes=10)

    resumed = tracking.resume()

    assert resumed.key != first.key
    assert (resumed.project_sid, resumed.task_sid) == ("alpha", "design")
    assert resumed.timestamp_start == clock.now
    assert tracking.active.get().previous_block_key == first.key


def test_resume_while_tracking_switches_back(tracking: TrackingService, clock) -> None:
    tracking.start("alpha", "design")
    clock.advance(minutes=10)
    interruption = tracking.start("beta")
    clock.advance(minutes=5)

    resumed = tracking.resume()

    assert resumed.project_sid == "alpha"
    assert tracking.blocks.get(interruption.key).timestamp_end == clock.now
    assert tracking.current() == resumed


def test_resume_without_history(tracking: TrackingService) -> None:
    with pytest.raises(UserError) as excinfo:
        tracking.resume()

    assert excinfo.value.code is ErrorCode.NO_PREVIOUS_BLOCK


def test_start_requires_project(tracking: TrackingService) -> None:
    with pytest.raises(UserError) as excinfo:
        tracking.start("")

    assert excinfo.value.code is ErrorCode.PROJECT_REQUIRED
    assert not tracking.active.is_tracking()


def test_start_rejects_malformed_ids(tracking: TrackingService) -> None:
    with pytest.raises(UserError) as excinfo:
        tracking.start("alpha", "bad:task")

    assert excinfo.value.code is ErrorCode.INVALID_SID
    assert tracking.blocks.list() == []


def test_undo_with_nothing_recorded(tracking: TrackingService) -> None:
    assert tracking.undo() is None


def test_undo_start_removes_block_and_goes_idle(tracking: TrackingService) -> None:
    block = tracking.start("alpha", "design")

    undone = tracking.undo()

    assert undone.key == block.key
    assert not tracking.blocks.exists(block.key)
    assert tracking.current() is None
    assert tracking.active.get().previous_block_key == ""
    assert tracking.last_action.get() is None
    assert tracking.undo() is None


def test_undo_stop_reopens_block(tracking: TrackingService, clock) -> None:
    block = tracking.start("alpha")
    clock.advance(minutes=20)
    tracking.stop()

    reopened = tracking.undo()

    assert reopened.key == block.key
    assert reopened.is_active
    assert tracking.blocks.get(block.key).timestamp_end is None
    assert tracking.current() == reopened
    assert tracking.last_action.get() is None


def test_undo_stop_refused_while_other_block_tracks(tracking: TrackingService, clock) -> None:
    first = tracking.start("alpha")
    clock.advance(minutes=20)
    tracking.stop()
    stopped_state = tracking.last_action.get()
    second = tracking.blocks.create_started("user", "beta", start=clock.now)
    tracking.active.set_active(second.key)

    with pytest.raises(UserError) as excinfo:
        tracking.undo()

    assert excinfo.value.code is ErrorCode.ALREADY_TRACKING
    assert tracking.blocks.get(first.key).timestamp_end is not None
    assert tracking.last_action.get() == stopped_state


def test_undo_delete_restores_snapshot(tracking: TrackingService, clock) -> None:
    block = tracking.start("alpha", "design", "kickoff")
    clock.advance(minutes=45)
    stopped = tracking.stop()

    deleted = tracking.delete_block(block.key)
    assert not tracking.blocks.exists(block.key)
    assert tracking.active.get().previous_block_key == ""

    restored = tracking.undo()

    assert deleted == stopped
    assert restored == stopped
    assert tracking.blocks.get(block.key) == stopped
    assert tracking.current() is None


def test_delete_active_block_goes_idle(tracking: TrackingService) -> None:
    block = tracking.start("alpha")

    tracking.delete_block(block.key)

    assert tracking.current() is None
    assert not tracking.active.is_tracking()
    assert tracking.undo() == block
    assert tracking.current() == block


def test_delete_missing_block(tracking: TrackingService) -> None:
    with pytest.raises(UserError) as excinfo:
        tracking.delete_block("block:missing")

    assert excinfo.value.code is ErrorCode.BLOCK_NOT_FOUND


def test_undo_start_of_vanished_block_clears_state(tracking: TrackingService) -> None:
    block = tracking.start("alpha")
    tracking.blocks.delete(block.key)

    assert tracking.undo() is None
    assert tracking.last_action.get() is None
