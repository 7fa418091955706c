from __future__ import annotations

import logging

import pytest

from taskledger.channels import BoardBroadcaster, InvalidationScope, LocalCache, build_topic


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_build_topic():
    assert build_topic(7, "updated") == "board-7:updated"
    with pytest.raises(ValueError):
        build_topic(7, "exploded")


def test_scope_keys_skip_missing_ids():
    scope = InvalidationScope(board_id=7, task_id=5, subtask_id=11)

    assert scope.keys() == ["board:7", "task:5", "subtask:11"]


def test_cache_expires_entries():
    clock = FakeClock()
    cache = LocalCache(ttl_seconds=10, clock=clock)
    cache.set("task:5", {"title": "Launch"})

    assert cache.get("task:5") == {"title": "Launch"}
    clock.now += 11
    assert cache.get("task:5") is None
    assert len(cache) == 0


def test_cache_get_or_load_only_loads_once():
    cache = LocalCache()
    calls = []

    def loader():
        calls.append(1)
        return "value"

    assert cache.get_or_load("task:1:view", loader) == "value"
    assert cache.get_or_load("task:1:view", loader) == "value"
    assert len(calls) == 1


def test_invalidate_drops_every_key_in_scope_and_nothing_else():
    cache = LocalCache()
    for key in ("task:5", "task:5:view", "task:50:view", "subtask:11:view", "board:7", "board:8"):
        cache.set(key, key)

    cache.invalidate(InvalidationScope(board_id=7, task_id=5, subtask_id=11))

    assert cache.get("task:5") is None
    assert cache.get("task:5:view") is None
    assert cache.get("subtask:11:view") is None
    assert cache.get("board:7") is None
    assert cache.get("task:50:view") == "task:50:view"
    assert cache.get("board:8") == "board:8"


def test_broadcaster_fans_out_per_board():
    broadcaster = BoardBroadcaster(buffer_size=2)
    seen = []
    unsubscribe = broadcaster.subscribe(7, lambda topic, payload: seen.append((topic, payload["id"])))

    broadcaster.publish("board-7:updated", {"id": 1})
    broadcaster.publish("board-8:updated", {"id": 2})
    unsubscribe()
    broadcaster.publish("board-7:created", {"id": 3})
    broadcaster.publish("board-7:deleted", {"id": 4})

    assert seen == [("board-7:updated", 1)]
    assert [topic for topic, _ in broadcaster.recent(7)] == ["board-7:created", "board-7:deleted"]
    assert broadcaster.recent(9) == []


def test_scope_keys_include_removed_descendants():
    scope = InvalidationScope(task_id=5, removed_subtask_ids=(11, 12), removed_nano_ids=(30,))

    assert scope.keys() == ["task:5", "subtask:11", "subtask:12", "nano:30"]


def test_failing_subscriber_does_not_stop_fan_out(caplog):
    broadcaster = BoardBroadcaster()
    seen = []

    def broken(topic, payload):
        raise RuntimeError("client gone")

    broadcaster.subscribe(7, broken)
    broadcaster.subscribe(7, lambda topic, payload: seen.append(topic))

    with caplog.at_level(logging.ERROR, logger="taskledger.channels"):
        broadcaster.publish("board-7:updated", {"id": 1})

    assert seen == ["board-7:updated"]
    assert "Subscriber failed for board-7:updated" in caplog.text
    assert broadcaster.recent(7) == [("board-7:updated", {"id": 1})]
