from __future__ import annotations

import threading
from datetime import timedelta

from humantime.storage import (
    ActiveBlockRepository,
    Block,
    BlockRepository,
    KeyValueStore,
)

from conftest import T0


def test_singleton_is_created_idle(store) -> None:
    active = ActiveBlockRepository(store).get()

    assert active.key == "active"
    assert not active.is_tracking
    assert active.previous_block_key == ""
    assert store.exists("active")


def test_set_active_rotates_previous(store) -> None:
    repo = ActiveBlockRepository(store)

    repo.set_active("b1")
    repo.set_active("b2")

    active = repo.get()
    assert active.active_block_key == "b2"
    assert active.previous_block_key == "b1"
    assert active.is_tracking


def test_clear_active_moves_key_to_previous(store) -> None:
    repo = ActiveBlockRepository(store)

    repo.set_active("b1")
    repo.clear_active()

    active = repo.get()
    assert active.active_block_key == ""
    assert active.previous_block_key == "b1"
    assert not active.is_tracking
    assert not repo.is_tracking()


def test_clear_while_idle_keeps_previous(store) -> None:
    repo = ActiveBlockRepository(store)
    repo.set_active("b1")
    repo.clear_active()

    repo.clear_active()

    assert repo.get().previous_block_key == "b1"


def test_set_after_idle_keeps_last_previous(store) -> None:
    repo = ActiveBlockRepository(store)
    repo.set_active("b1")
    repo.clear_active()

    repo.set_active("b2")

    active = repo.get()
    assert active.active_block_key == "b2"
    assert active.previous_block_key == "b1"


def test_resolves_blocks_and_tolerates_stale_pointers(store, clock) -> None:
    blocks = BlockRepository(store, clock=clock)
    repo = ActiveBlockRepository(store)
    first = blocks.create(Block(project_sid="alpha", timestamp_start=T0, timestamp_end=T0 + timedelta(hours=1)))
    second = blocks.create(Block(project_sid="beta", timestamp_start=T0 + timedelta(hours=1)))

    assert repo.get_active_block(blocks) is None
    repo.set_active(first.key)
    repo.set_active(second.key)

    assert repo.get_active_block(blocks) == second
    assert repo.get_previous_block(blocks) == first

    blocks.delete(first.key)
    assert repo.get_previous_block(blocks) is None


def test_single_active_key_across_processes(file_store_options) -> None:
    stores = [KeyValueStore.open(file_store_options) for _ in range(2)]
    keys_by_worker = [[f"w{index}-{n}" for n in range(15)] for index in range(2)]
    errors: list[BaseException] = []

    def worker(kv: KeyValueStore, keys: list[str]) -> None:
        repo = ActiveBlockRepository(kv)
        try:
            for key in keys:
                repo.set_active(key)
                repo.clear_active()
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=(kv, keys))
        for kv, keys in zip(stores, keys_by_worker)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    try:
        assert not errors
        active = ActiveBlockRepository(stores[0]).get()
        all_keys = {key for keys in keys_by_worker for key in keys}
        assert active.active_block_key == ""
        assert active.previous_block_key in all_keys
        assert ActiveBlockRepository(stores[1]).get() == active
    finally:
        for kv in stores:
            kv.close()
