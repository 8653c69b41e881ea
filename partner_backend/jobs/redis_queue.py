"""Redis-backed side-effect task queue with in-memory fallback.

Tasks survive an application restart when Redis is reachable:

- ``QUEUE_SETTINGS["redis_ready_key"]`` (list): serialized tasks ready to run,
  pushed on the right and popped from the left (FIFO).
- ``QUEUE_SETTINGS["redis_scheduled_key"]`` (sorted set): delayed retries
  scored by their ready timestamp, moved to the ready list once due.

Every operation checks the connection first and transparently falls back to
a PriorityDelayQueue while Redis is unavailable. Priorities are recorded in
the payload but Redis ordering is FIFO.
"""
from __future__ import annotations

import dataclasses
import json
import threading
import time
from typing import Any, Optional

import redis

from partner_backend.config import QUEUE_SETTINGS
from partner_backend.jobs.queue import PriorityDelayQueue, QueueItem, resolve_priority
from partner_backend.jobs.tasks import TASK_TYPES
from partner_backend.utils import get_logger

logger = get_logger(__name__)


def serialize_task(item: QueueItem) -> str:
    task = item.task
    task_type = type(task).__name__
    if task_type not in TASK_TYPES:
        raise TypeError(f"Cannot serialize task of type {task_type}")
    return json.dumps({
        "task_type": task_type,
        "task": dataclasses.asdict(task),
        "priority_label": item.priority_label,
        "priority_value": item.priority_value,
        "enqueued_at": item.enqueued_at,
        "ready_at": item.ready_at,
        "seq": item.seq,
    })


def deserialize_task(raw: bytes | str) -> Optional[QueueItem]:
    """Rebuild a QueueItem; returns None for payloads of unknown task types."""
    text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
    data = json.loads(text)
    task_cls = TASK_TYPES.get(data.get("task_type"))
    if task_cls is None:
        logger.warning("Unknown task type in Redis queue", task_type=data.get("task_type"))
        return None
    now = time.time()
    return QueueItem(
        task=task_cls(**data.get("task", {})),
        priority_label=data.get("priority_label", "normal"),
        priority_value=int(data.get("priority_value", 5)),
        enqueued_at=float(data.get("enqueued_at", now)),
        ready_at=float(data.get("ready_at", now)),
        seq=int(data.get("seq", 0)),
    )


def _as_int(value: Any) -> int:
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class RedisQueue:
    def __init__(self) -> None:
        self._redis_url = str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key = str(QUEUE_SETTINGS.get("redis_ready_key", "partners:ready_tasks"))
        self._scheduled_key = str(QUEUE_SETTINGS.get("redis_scheduled_key", "partners:scheduled_tasks"))
        self._health_check_timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]

        self._fallback = PriorityDelayQueue()
        self._client: Optional[redis.Redis] = None
        self._active = False
        self._lock = threading.RLock()
        self._closed = False
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.from_url(self._redis_url, socket_connect_timeout=self._health_check_timeout)
            self._client.ping()
            self._active = True
            logger.info("Connected to Redis task queue", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._client = None
            self._active = False
            logger.warning("Redis unavailable, using in-memory task queue", error=str(e))

    def _mark_down(self, operation: str, error: Exception) -> None:
        logger.error("Redis queue operation failed", operation=operation, error=str(error))
        self._active = False

    def health_check(self) -> bool:
        with self._lock:
            if self._client is None:
                self._connect()
                return self._active
            try:
                self._client.ping()
            except (redis.RedisError, ConnectionError) as e:
                if self._active:
                    logger.warning("Redis connection lost, using in-memory task queue", error=str(e))
                self._active = False
                return False
            if not self._active:
                logger.info("Redis connection restored")
            self._active = True
            return True

    def _promote_due(self) -> None:
        assert self._client is not None
        due = self._client.zrangebyscore(self._scheduled_key, 0, time.time())
        for raw in due or []:
            # zrem wins the race when several workers share the sorted set
            if self._client.zrem(self._scheduled_key, raw):
                self._client.rpush(self._ready_key, raw)

    def enqueue(self, task: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        priority_value = resolve_priority(priority)
        with self._lock:
            if self._closed:
                raise RuntimeError("Queue shutdown")
            if not self.health_check() or self._client is None:
                return self._fallback.enqueue(task, priority=priority, delay_seconds=delay_seconds)

            now = time.time()
            item = QueueItem(
                task=task,
                priority_label=priority,
                priority_value=priority_value,
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=int(now * 1000),
            )
            try:
                payload = serialize_task(item)
                if item.ready_at <= now:
                    self._client.rpush(self._ready_key, payload)
                else:
                    self._client.zadd(self._scheduled_key, {payload: item.ready_at})
            except redis.RedisError as e:
                self._mark_down("enqueue", e)
                return self._fallback.enqueue(task, priority=priority, delay_seconds=delay_seconds)

            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Return the next ready task, preferring anything left in the fallback queue.

        Only the connection check and the promotion of due retries run under
        the lock; the blocking wait does not, so producers can keep enqueueing.
        """
        local = self._fallback.dequeue(block=False)
        if local is not None:
            return local

        with self._lock:
            if self._closed:
                return None
            client = self._client if self.health_check() else None
            if client is not None:
                try:
                    self._promote_due()
                except redis.RedisError as e:
                    self._mark_down("promote", e)
                    client = None

        if client is None:
            return self._fallback.dequeue(block=block, timeout=timeout)

        try:
            if block:
                # BLPOP takes whole seconds; 0 would block forever
                wait = max(1, int(timeout)) if timeout is not None else 0
                result = client.blpop([self._ready_key], timeout=wait)
                raw = result[1] if isinstance(result, (list, tuple)) and len(result) == 2 else None
            else:
                raw = client.lpop(self._ready_key)
        except redis.RedisError as e:
            with self._lock:
                self._mark_down("dequeue", e)
            return self._fallback.dequeue(block=False)

        if raw is None:
            return None
        try:
            item = deserialize_task(raw)
        except (ValueError, TypeError) as e:
            logger.error("Dropping undecodable task payload", error=str(e))
            return None
        return item.task if item is not None else None

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            self._fallback.shutdown()

    def purge(self) -> None:
        """Drop every pending task (used by tests)."""
        with self._lock:
            self._fallback.purge()
            if not self.health_check() or self._client is None:
                return
            try:
                self._client.delete(self._ready_key, self._scheduled_key)
            except redis.RedisError as e:
                self._mark_down("purge", e)

    def depth(self) -> int:
        with self._lock:
            if not self.health_check() or self._client is None:
                return self._fallback.depth()
            try:
                ready = _as_int(self._client.llen(self._ready_key))
                scheduled = _as_int(self._client.zcard(self._scheduled_key))
            except redis.RedisError as e:
                self._mark_down("depth", e)
                return self._fallback.depth()
            return ready + scheduled + self._fallback.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if not self.health_check() or self._client is None:
                snap = self._fallback.snapshot()
                snap["redis_active"] = False
                return snap
            try:
                ready = _as_int(self._client.llen(self._ready_key))
                scheduled = _as_int(self._client.zcard(self._scheduled_key))
            except redis.RedisError as e:
                self._mark_down("snapshot", e)
                snap = self._fallback.snapshot()
                snap["redis_active"] = False
                return snap
            return {
                "backend": "redis",
                "depth": ready + scheduled,
                "ready": ready,
                "scheduled": scheduled,
                "fallback_depth": self._fallback.depth(),
                "shutdown": self._closed,
                "redis_active": True,
            }


__all__ = ["RedisQueue", "serialize_task", "deserialize_task"]
