import time

import pytest

from partner_backend.config import QUEUE_SETTINGS
from partner_backend.jobs.queue import PriorityDelayQueue
from partner_backend.jobs.tasks import CheckoutAffiliateTask, TapfiliateSyncTask, WaitlistForwardTask


def test_priority_queue_ordering():
    q = PriorityDelayQueue()
    q.enqueue(WaitlistForwardTask(email="low@example.com"), priority="low")
    q.enqueue(CheckoutAffiliateTask(email="high@example.com", checkout_session_id="cs_1"), priority="high")
    q.enqueue(TapfiliateSyncTask(application_id=3), priority="normal")
    snap = q.snapshot()
    assert snap.get("ready") == 3
    assert snap.get("depth") == 3

    order = [type(q.dequeue(block=False)).__name__ for _ in range(3)]
    assert order == ["CheckoutAffiliateTask", "TapfiliateSyncTask", "WaitlistForwardTask"]
    assert q.dequeue(block=False) is None


def test_same_priority_is_fifo():
    q = PriorityDelayQueue()
    for application_id in (1, 2, 3):
        q.enqueue(TapfiliateSyncTask(application_id=application_id))
    assert [q.dequeue(block=False).application_id for _ in range(3)] == [1, 2, 3]


def test_delayed_task_waits_without_blocking_ready_ones():
    q = PriorityDelayQueue()
    q.enqueue(TapfiliateSyncTask(application_id=1), priority="high", delay_seconds=0.2)
    q.enqueue(WaitlistForwardTask(email="now@example.com"), priority="low")

    assert isinstance(q.dequeue(block=False), WaitlistForwardTask)
    assert q.dequeue(block=False) is None
    assert q.snapshot()["scheduled"] == 1

    time.sleep(0.25)
    assert q.dequeue(block=False).application_id == 1


def test_blocking_dequeue_times_out_when_empty():
    q = PriorityDelayQueue()
    started = time.time()
    assert q.dequeue(block=True, timeout=0.1) is None
    assert time.time() - started >= 0.09


def test_pending_tasks_are_deduplicated_by_key():
    q = PriorityDelayQueue()
    first = q.enqueue(WaitlistForwardTask(email="a@example.com"))
    again = q.enqueue(WaitlistForwardTask(email="a@example.com"))
    assert again is first
    assert q.depth() == 1

    q.dequeue(block=False)
    # once handed out the key may be queued again
    q.enqueue(WaitlistForwardTask(email="a@example.com"))
    assert q.depth() == 1


def test_unknown_priority_rejected():
    q = PriorityDelayQueue()
    with pytest.raises(ValueError):
        q.enqueue(TapfiliateSyncTask(application_id=1), priority="urgent")


def test_capacity_limit(monkeypatch):
    monkeypatch.setitem(QUEUE_SETTINGS, "max_in_memory", 2)
    q = PriorityDelayQueue()
    q.enqueue(TapfiliateSyncTask(application_id=1))
    q.enqueue(TapfiliateSyncTask(application_id=2))
    with pytest.raises(OverflowError):
        q.enqueue(TapfiliateSyncTask(application_id=3))


def test_shutdown_refuses_new_work_and_releases_waiters():
    q = PriorityDelayQueue()
    q.shutdown()
    assert q.dequeue(block=True, timeout=5) is None
    assert q.snapshot()["shutdown"] is True
    with pytest.raises(RuntimeError):
        q.enqueue(TapfiliateSyncTask(application_id=1))
