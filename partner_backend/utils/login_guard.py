"""In-memory admin login lockout.

Tracks failed admin token attempts per client address. After
``max_failed_attempts`` consecutive failures the address is locked out for
``lockout_seconds``; a successful attempt clears its record.

Records have a bounded lifetime: an entry that is neither locked nor
touched for ``record_ttl_seconds`` is dropped on the next sweep, and the map
never grows beyond ``max_tracked_clients`` (oldest entries are evicted
first). One guard instance is created per application and stored on
``app.state.admin_login_guard``.

Return semantics:
    is_locked(key) -> (locked: bool, retry_after_seconds: int)
    record_failure(key) -> LoginAttemptRecord
    record_success(key) -> None
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from partner_backend.config import ADMIN_AUTH_SETTINGS


@dataclass
class LoginAttemptRecord:
    failures: int = 0
    locked_until: float = 0.0
    last_seen: float = 0.0

    def expires_at(self, ttl_seconds: float) -> float:
        return max(self.locked_until, self.last_seen + ttl_seconds)


class AdminLoginGuard:
    def __init__(
        self,
        *,
        max_failed_attempts: Optional[int] = None,
        lockout_seconds: Optional[float] = None,
        record_ttl_seconds: Optional[float] = None,
        max_tracked_clients: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_failed_attempts = int(max_failed_attempts or ADMIN_AUTH_SETTINGS["max_failed_attempts"])
        self.lockout_seconds = float(lockout_seconds or ADMIN_AUTH_SETTINGS["lockout_seconds"])
        self.record_ttl_seconds = float(record_ttl_seconds or ADMIN_AUTH_SETTINGS["record_ttl_seconds"])
        self.max_tracked_clients = int(max_tracked_clients or ADMIN_AUTH_SETTINGS["max_tracked_clients"])
        self._clock = clock
        self._records: "OrderedDict[str, LoginAttemptRecord]" = OrderedDict()
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        expired = [k for k, r in self._records.items() if r.expires_at(self.record_ttl_seconds) <= now]
        for key in expired:
            del self._records[key]
        while len(self._records) > self.max_tracked_clients:
            self._records.popitem(last=False)

    def is_locked(self, key: str) -> tuple[bool, int]:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            record = self._records.get(key)
            if record is None or record.locked_until <= now:
                return False, 0
            return True, int(record.locked_until - now) + 1

    def record_failure(self, key: str) -> LoginAttemptRecord:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            record = self._records.pop(key, None) or LoginAttemptRecord()
            record.failures += 1
            record.last_seen = now
            if record.failures >= self.max_failed_attempts:
                record.locked_until = now + self.lockout_seconds
            # re-insert so eviction order follows recency
            self._records[key] = record
            return record

    def record_success(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def tracked_clients(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._records)


__all__ = ["AdminLoginGuard", "LoginAttemptRecord"]
