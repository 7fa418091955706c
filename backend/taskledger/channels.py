"""Side-effect channels the propagator talks to.

The propagator only depends on the protocols below; the app wires in the
in-process implementations. Every channel is fire-and-forget from the core's
point of view.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from threading import RLock
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from typing_extensions import Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

EVENT_KINDS: Tuple[str, ...] = ("created", "updated", "deleted", "reordered")


class InvalidationScope(BaseModel):
    """Every container id touched by one mutation."""

    model_config = ConfigDict(frozen=True)
    board_id: Optional[int] = None
    list_id: Optional[int] = None
    task_id: Optional[int] = None
    subtask_id: Optional[int] = None
    nano_id: Optional[int] = None
    # Descendants removed together with a deleted container.
    removed_subtask_ids: Tuple[int, ...] = ()
    removed_nano_ids: Tuple[int, ...] = ()

    def keys(self) -> List[str]:
        pairs = [
            ("board", self.board_id),
            ("list", self.list_id),
            ("task", self.task_id),
            ("subtask", self.subtask_id),
            ("nano", self.nano_id),
        ]
        pairs.extend(("subtask", value) for value in self.removed_subtask_ids)
        pairs.extend(("nano", value) for value in self.removed_nano_ids)
        return [f"{name}:{value}" for name, value in pairs if value is not None]


def build_topic(board_id: int, event: str) -> str:
    if event not in EVENT_KINDS:
        raise ValueError(f"Unknown event kind: {event}")
    return f"board-{board_id}:{event}"


class CacheInvalidator(Protocol):
    def invalidate(self, scope: InvalidationScope) -> None: ...


class Broadcaster(Protocol):
    def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...


class CompletionScheduler(Protocol):
    def on_completed(self, level: str, container_id: int, status: str) -> None: ...


class LocalCache:
    """Read-through cache keyed by container ids (``task:5``, ``task:5:view``...)."""

    def __init__(self, ttl_seconds: int = 120, clock: Callable[[], float] = time.monotonic):
        self._lock = RLock()
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            expires_at, value = cached
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + (self._ttl if ttl is None else ttl), value)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, scope: InvalidationScope) -> None:
        prefixes = scope.keys()
        with self._lock:
            stale = [
                key
                for key in self._entries
                if any(key == prefix or key.startswith(f"{prefix}:") for prefix in prefixes)
            ]
            for key in stale:
                del self._entries[key]
        logger.debug("Invalidated %d cache key(s) for %s", len(stale), prefixes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BoardBroadcaster:
    """Fan-out of board events to in-process subscribers with a short replay buffer."""

    def __init__(self, buffer_size: int = 100):
        self._lock = RLock()
        self._buffer_size = buffer_size
        self._recent: Dict[str, Deque[Tuple[str, Dict[str, Any]]]] = defaultdict(
            lambda: deque(maxlen=self._buffer_size)
        )
        self._subscribers: Dict[str, List[Callable[[str, Dict[str, Any]], None]]] = defaultdict(list)

    @staticmethod
    def _room(topic: str) -> str:
        return topic.split(":", 1)[0]

    def subscribe(self, board_id: int, callback: Callable[[str, Dict[str, Any]], None]) -> Callable[[], None]:
        room = f"board-{board_id}"
        with self._lock:
            self._subscribers[room].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[room]:
                    self._subscribers[room].remove(callback)

        return unsubscribe

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        room = self._room(topic)
        with self._lock:
            self._recent[room].append((topic, payload))
            subscribers = list(self._subscribers.get(room, []))
        for callback in subscribers:
            try:
                callback(topic, payload)
            except Exception:
                logger.exception("Subscriber failed for %s", topic)

    def recent(self, board_id: int) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return list(self._recent.get(f"board-{board_id}", []))


class LoggingCompletionScheduler:
    """Default completion hook: records the completion in the log only."""

    def on_completed(self, level: str, container_id: int, status: str) -> None:
        logger.info("%s %s reached terminal status %r", level, container_id, status)
