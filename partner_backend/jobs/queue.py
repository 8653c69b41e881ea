"""In-memory priority + delay queue for side-effect tasks.

Ready tasks sit in a heap ordered by (priority, seq); tasks with a retry delay
sit in a second heap ordered by ready time and are promoted on dequeue once
due. Keeping the two apart means a delayed high-priority retry never blocks a
lower-priority task that is ready now.

Tasks exposing ``key()`` are de-duplicated while pending: enqueueing a task
whose key is already waiting returns the existing entry.
"""
from __future__ import annotations

import heapq
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from partner_backend.config import QUEUE_SETTINGS
from partner_backend.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    task: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int

    @property
    def key(self) -> Optional[str]:
        key_fn = getattr(self.task, "key", None)
        return key_fn() if callable(key_fn) else None


def resolve_priority(priority: str) -> int:
    priorities = QUEUE_SETTINGS.get("priorities", {})
    if not isinstance(priorities, dict) or priority not in priorities:
        raise ValueError(f"Unknown priority '{priority}'")
    return int(priorities[priority])


class PriorityDelayQueue:
    def __init__(self) -> None:
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._capacity = int(QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._cv = threading.Condition(threading.RLock())
        self._ready: list[tuple[int, int, QueueItem]] = []
        self._delayed: list[tuple[float, int, int, QueueItem]] = []
        self._pending: dict[str, QueueItem] = {}
        self._seq = 0
        self._closed = False

    def _promote_due(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            _, priority_value, seq, item = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (priority_value, seq, item))

    def _pop_ready(self) -> QueueItem:
        _, _, item = heapq.heappop(self._ready)
        if item.key is not None:
            self._pending.pop(item.key, None)
        return item

    def enqueue(self, task: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        priority_value = resolve_priority(priority)
        with self._cv:
            if self._closed:
                raise RuntimeError("Queue shutdown")
            if self.depth() >= self._capacity:
                raise OverflowError("Queue capacity exceeded")

            now = time.time()
            self._seq += 1
            item = QueueItem(
                task=task,
                priority_label=priority,
                priority_value=priority_value,
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=self._seq,
            )
            key = item.key
            if key is not None and key in self._pending:
                logger.debug("Task already pending, not enqueued again", task_key=key)
                return self._pending[key]

            if item.ready_at <= now:
                heapq.heappush(self._ready, (priority_value, item.seq, item))
            else:
                heapq.heappush(self._delayed, (item.ready_at, priority_value, item.seq, item))
            if key is not None:
                self._pending[key] = item

            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Return the next ready task, or None when empty (non-blocking), timed out or shut down."""
        deadline = None if timeout is None else time.time() + timeout
        with self._cv:
            while True:
                now = time.time()
                self._promote_due(now)
                if self._ready:
                    return self._pop_ready().task
                if self._closed or not block:
                    return None
                if deadline is not None and now >= deadline:
                    return None

                wait_for = None if deadline is None else deadline - now
                if self._delayed:
                    until_due = max(0.0, self._delayed[0][0] - now)
                    wait_for = until_due if wait_for is None else min(wait_for, until_due)
                self._cv.wait(timeout=wait_for)

    def shutdown(self) -> None:
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Drop every pending task (used by tests)."""
        with self._cv:
            self._ready.clear()
            self._delayed.clear()
            self._pending.clear()
            self._cv.notify_all()

    def depth(self) -> int:
        return len(self._ready) + len(self._delayed)

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._cv:
            return {
                "backend": "memory",
                "depth": self.depth(),
                "ready": len(self._ready),
                "scheduled": len(self._delayed),
                "shutdown": self._closed,
            }


__all__ = ["PriorityDelayQueue", "QueueItem", "resolve_priority"]
