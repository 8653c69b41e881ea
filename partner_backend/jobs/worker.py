"""Background worker thread draining the side-effect task queue."""
from __future__ import annotations

import asyncio
import dataclasses
import threading
import time
from collections import deque
from typing import Any, Callable, Optional, Protocol, Union

from sqlalchemy.orm import Session

from partner_backend.config import BACKOFF_POLICY, QUEUE_SETTINGS
from partner_backend.database import SessionLocal
from partner_backend.jobs.queue import PriorityDelayQueue
from partner_backend.jobs.redis_queue import RedisQueue
from partner_backend.jobs.tasks import TASK_TYPES
from partner_backend.services.side_effects import ClientFactory, execute_task
from partner_backend.utils import get_logger
from partner_backend.utils.logger import StructuredLogger
from partner_backend.utils.backoff import attempts_exhausted, compute_backoff_seconds

logger = get_logger(__name__)

# Most recent permanently failed tasks, oldest dropped first
FAILED_TASKS: deque[dict] = deque(maxlen=int(QUEUE_SETTINGS.get("failed_tasks_max", 500)))  # type: ignore[arg-type]


class TaskQueue(Protocol):
    def enqueue(self, task: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Any: ...
    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


class TaskWorker:
    def __init__(
        self,
        queue: TaskQueue,
        *,
        poll_timeout: float = 5.0,
        session_factory: Callable[[], Session] = SessionLocal,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.queue = queue
        self.poll_timeout = poll_timeout
        self.session_factory = session_factory
        self.client_factory = client_factory
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="side-effect-worker", daemon=True)
        self._thread.start()
        logger.info("Side-effect worker started")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the loop to exit, wake a blocked dequeue and wait for the thread.

        Returns False when the thread is still running after ``timeout``.
        """
        if timeout is None:
            timeout = float(QUEUE_SETTINGS.get("worker_join_timeout", 10.0))  # type: ignore[arg-type]
        self._stop_event.set()
        self.queue.shutdown()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Side-effect worker did not stop in time", timeout_seconds=timeout)
            return False
        logger.info("Side-effect worker stopped")
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once(timeout=self.poll_timeout)
            except Exception as e:
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def run_once(self, *, timeout: Optional[float] = 0.0) -> bool:
        """Process at most one task. Returns False when nothing was ready."""
        task = self.queue.dequeue(block=bool(timeout), timeout=timeout)
        if task is None:
            return False
        if type(task).__name__ not in TASK_TYPES:
            logger.warning("Skipping unknown task type", task_type=type(task).__name__)
            return True
        self._process(task)
        return True

    def _process(self, task: Any) -> None:
        task_logger = logger.bind(task_type=type(task).__name__, task_key=task.key(), attempt=task.attempt, correlation_id=task.correlation_id)
        started = time.time()
        session = self.session_factory()
        try:
            status = asyncio.run(execute_task(task, session, self.client_factory))
            task_logger.info(
                "Side-effect task finished",
                status=status,
                duration_ms=round((time.time() - started) * 1000, 2),
            )
        except Exception as e:
            session.rollback()
            self._retry_or_drop(task, e, task_logger)
        finally:
            session.close()

    def _retry_or_drop(self, task: Any, error: Exception, task_logger: Optional[StructuredLogger] = None) -> None:
        task_logger = task_logger or logger
        max_attempts = int(BACKOFF_POLICY["max_attempts"])
        if attempts_exhausted(task.attempt, max_attempts):
            task_logger.error(
                "Side-effect task failed permanently",
                error=str(error),
                exc_info=True,
            )
            self._record_failure(task, error)
            return

        delay = compute_backoff_seconds(task.attempt)
        task_logger.warning(
            "Side-effect task failed, retrying",
            retry_in_seconds=round(delay, 2),
            error=str(error),
        )
        try:
            self.queue.enqueue(dataclasses.replace(task, attempt=task.attempt + 1), priority="low", delay_seconds=delay)
        except RuntimeError as e:
            # queue closed while the task was running
            task_logger.error("Retry dropped, task queue is shut down", error=str(e))
            self._record_failure(task, error)

    @staticmethod
    def _record_failure(task: Any, error: Exception) -> None:
        FAILED_TASKS.append({
            "task_type": type(task).__name__,
            "task_key": task.key(),
            "attempts": task.attempt,
            "error": str(error),
        })


def create_queue() -> Union[PriorityDelayQueue, RedisQueue]:
    """Redis-backed queue when enabled and reachable, otherwise in-memory."""
    if QUEUE_SETTINGS.get("use_redis", False):
        redis_queue = RedisQueue()
        if redis_queue.health_check():
            logger.info("Using Redis-backed task queue")
            return redis_queue
        logger.warning("Redis server is not reachable; using in-memory task queue")
    logger.info("Using in-memory task queue")
    return PriorityDelayQueue()


__all__ = ["TaskWorker", "FAILED_TASKS", "create_queue"]
