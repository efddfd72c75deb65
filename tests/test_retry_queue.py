from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from humantime.config import DEFAULT_BACKOFF_SCHEDULE
from humantime.errors import ErrorCode, RecoverableError, UserError
from humantime.notify import DeliveryResult, RetryQueue
from humantime.storage import KeyValueStore


class StubTransport:
    """Replays scripted outcomes; ``None`` means a 204 delivery."""

    def __init__(self, outcomes=None, *, on_send=None, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, str, bytes]] = []
        self.on_send = on_send
        self.delay = delay

    async def send(self, url, content_type, body, timeout):
        self.calls.append((url, content_type, body))
        if self.on_send is not None:
            self.on_send()
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return DeliveryResult(status_code=204, duration=timedelta(milliseconds=5))


def _unavailable() -> RecoverableError:
    return RecoverableError("webhook returned HTTP 503", code=ErrorCode.NETWORK_UNAVAILABLE)


def _queue(store, transport, clock, **kwargs) -> RetryQueue:
    return RetryQueue(store, transport, clock=clock, **kwargs)


def _enqueue(queue: RetryQueue, name: str = "team"):
    return queue.enqueue(name, "https://hooks.slack.com/services/T/B/C", "application/json", b'{"text":"hi"}')


def test_enqueue_schedules_first_attempt(store, clock) -> None:
    queue = _queue(store, StubTransport(), clock)

    entry = _enqueue(queue)

    assert entry.attempt_count == 0
    assert entry.next_attempt_at == clock.now + timedelta(seconds=5)
    assert entry.key == f"notification:{entry.id}"
    assert queue.pending == 1
    assert queue.list() == [entry]


def test_entries_not_yet_due_are_left_alone(store, clock) -> None:
    transport = StubTransport()
    queue = _queue(store, transport, clock)
    _enqueue(queue)

    result = asyncio.run(queue.process_due())

    assert result.processed == 0
    assert transport.calls == []
    assert queue.pending == 1


def test_successful_retry_removes_entry(store, clock) -> None:
    transport = StubTransport()
    queue = _queue(store, transport, clock)
    entry = _enqueue(queue)
    clock.advance(seconds=5)

    result = asyncio.run(queue.process_due())

    assert result.delivered == [entry.id]
    assert transport.calls == [(entry.url, "application/json", b'{"text":"hi"}')]
    assert queue.pending == 0
    assert queue.stats().delivered == 1


def test_permanent_failure_is_dropped(store, clock) -> None:
    rejected = UserError("webhook returned HTTP 404", code=ErrorCode.WEBHOOK_REJECTED)
    queue = _queue(store, StubTransport([rejected]), clock)
    entry = _enqueue(queue)

    result = asyncio.run(queue.process_due(clock.now + timedelta(minutes=1)))

    assert result.failed == [entry.id]
    assert queue.pending == 0
    assert queue.stats().failed == 1


def test_transient_failure_is_rescheduled(store, clock) -> None:
    queue = _queue(store, StubTransport([_unavailable]), clock)
    entry = _enqueue(queue)
    attempt_at = clock.advance(seconds=5)

    result = asyncio.run(queue.process_due())

    assert result.rescheduled == [entry.id]
    (stored,) = queue.list()
    assert stored.attempt_count == 1
    assert stored.next_attempt_at == attempt_at + timedelta(seconds=30)
    assert "503" in stored.last_error


def test_gives_up_after_max_attempts(store, clock) -> None:
    transport = StubTransport([_unavailable] * 10)
    queue = _queue(store, transport, clock, max_attempts=5)
    entry = _enqueue(queue)

    outcomes = []
    for _ in range(10):
        clock.advance(hours=1)
        result = asyncio.run(queue.process_due())
        outcomes.append(result)
        if not queue.pending:
            break

    assert len(transport.calls) == 5
    assert sum(len(result.rescheduled) for result in outcomes) == 4
    assert outcomes[-1].failed == [entry.id]
    assert queue.pending == 0


def test_backoff_clamps_at_last_step(store, clock) -> None:
    queue = _queue(store, StubTransport(), clock)

    assert queue.backoff(0) == timedelta(seconds=5)
    assert queue.backoff(2) == timedelta(minutes=2)
    assert queue.backoff(4) == timedelta(minutes=15)
    assert queue.backoff(12) == timedelta(minutes=15)
    assert queue.backoff(-1) == DEFAULT_BACKOFF_SCHEDULE[0]


def test_empty_schedule_rejected(store) -> None:
    with pytest.raises(ValueError):
        RetryQueue(store, StubTransport(), backoff_schedule=())


def test_entries_survive_restart(file_store_options, clock) -> None:
    with KeyValueStore.open(file_store_options) as kv:
        entry = _enqueue(_queue(kv, StubTransport(), clock))

    transport = StubTransport()
    with KeyValueStore.open(file_store_options) as kv:
        queue = _queue(kv, transport, clock)
        (restored,) = queue.list()
        assert restored.id == entry.id
        assert restored.payload == entry.payload

        result = asyncio.run(queue.process_due(clock.now + timedelta(seconds=5)))

        assert result.delivered == [entry.id]
        assert queue.pending == 0


def test_stop_event_is_checked_between_entries(store, clock) -> None:
    async def scenario():
        stop = asyncio.Event()
        transport = StubTransport(on_send=stop.set)
        queue = _queue(store, transport, clock)
        _enqueue(queue, "first")
        _enqueue(queue, "second")
        result = await queue.process_due(clock.now + timedelta(minutes=1), stop_event=stop)
        return result, transport, queue

    result, transport, queue = asyncio.run(scenario())

    assert result.processed == 1
    assert len(transport.calls) == 1
    assert queue.pending == 1


def test_run_exits_when_stopped(store, clock) -> None:
    async def scenario():
        stop = asyncio.Event()
        queue = _queue(store, StubTransport(on_send=stop.set), clock, check_interval=0.01)
        _enqueue(queue)
        clock.advance(seconds=5)
        await asyncio.wait_for(queue.run(stop), timeout=5)
        return queue

    queue = asyncio.run(scenario())

    assert queue.pending == 0


def test_background_task_start_and_stop(store, clock) -> None:
    async def scenario():
        queue = _queue(store, StubTransport(), clock, check_interval=0.01)
        _enqueue(queue)
        clock.advance(seconds=5)
        queue.start()
        assert queue.running
        while queue.pending:
            await asyncio.sleep(0.01)
        await queue.stop()
        return queue

    queue = asyncio.run(scenario())

    assert not queue.running
    assert queue.stats().delivered == 1


def test_slow_delivery_times_out_and_is_rescheduled(store, clock) -> None:
    queue = _queue(store, StubTransport(delay=1.0), clock, http_timeout=0.01)
    entry = _enqueue(queue)

    result = asyncio.run(queue.process_due(clock.now + timedelta(seconds=5)))

    assert result.rescheduled == [entry.id]
    assert queue.list()[0].attempt_count == 1


def test_clear_removes_everything(store, clock) -> None:
    queue = _queue(store, StubTransport(), clock)
    for name in ("a", "b", "c"):
        _enqueue(queue, name)

    assert queue.clear() == 3
    assert queue.pending == 0
    assert queue.clear() == 0


def test_binary_payload_survives_storage(store, clock) -> None:
    transport = StubTransport()
    queue = _queue(store, transport, clock)
    body = b"\xff\xfe\x00binary"

    entry = queue.enqueue("team", "https://example.com/hook", "application/octet-stream", body)
    (stored,) = queue.list()
    result = asyncio.run(queue.process_due(clock.now + timedelta(seconds=5)))

    assert stored.payload == body
    assert stored == entry
    assert result.delivered == [entry.id]
    assert transport.calls == [("https://example.com/hook", "application/octet-stream", body)]


def test_run_survives_unexpected_pass_failure(store, clock, monkeypatch, caplog) -> None:
    calls = []

    async def scenario():
        stop = asyncio.Event()
        queue = _queue(store, StubTransport(), clock, check_interval=0.01)

        async def flaky_pass(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise RuntimeError("boom")
            stop.set()

        monkeypatch.setattr(queue, "process_due", flaky_pass)
        await asyncio.wait_for(queue.run(stop), timeout=5)

    with caplog.at_level(logging.ERROR, logger="humantime.notify.queue"):
        asyncio.run(scenario())

    assert len(calls) == 2
    assert any(
        record.getMessage() == "Retry pass failed" and record.exc_info for record in caplog.records
    )
