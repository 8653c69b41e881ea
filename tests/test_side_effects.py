"""Worker-driven side effects: waitlist forwarding, Tapfiliate provisioning, checkout affiliates."""
import asyncio
import json
import threading
from collections import deque

import pytest

import partner_backend.jobs.worker as worker_module
import partner_backend.services.side_effects as side_effects
from partner_backend.config import QUEUE_SETTINGS
from partner_backend.integrations.waitlist import WaitlistForwardError
from partner_backend.jobs.tasks import CheckoutAffiliateTask, TapfiliateSyncTask, WaitlistForwardTask
from partner_backend.jobs.worker import FAILED_TASKS
from partner_backend.models.db import AdminLog, ApplicationStatus, Partner


@pytest.fixture(autouse=True)
def _clear_failed_tasks():
    FAILED_TASKS.clear()
    yield
    FAILED_TASKS.clear()


@pytest.fixture()
def approved_partner(application_factory, partner_factory):
    application = application_factory(name="Ada Obi", email="ada@example.com", status=ApplicationStatus.APPROVED)
    partner = partner_factory(None, name="Ada", email="ada@example.com", application_id=application.id)
    return application, partner


def test_tapfiliate_sync_creates_links_and_enrolls(tapfiliate_configured, approved_partner, fake_tapfiliate, make_worker, task_queue, db_session, admin_log_actions):
    application, partner = approved_partner
    fake = fake_tapfiliate()
    task_queue.enqueue(TapfiliateSyncTask(application_id=application.id))

    assert make_worker(fake).run_once() is True

    assert fake.created == [{"id": "aff-1", "email": "ada@example.com", "firstname": "Ada", "lastname": "Obi"}]
    assert fake.program_adds == [{"program_id": "partner-program", "affiliate_id": "aff-1", "approved": True}]
    db_session.expire_all()
    assert db_session.get(Partner, partner.id).tapfiliate_affiliate_id == "aff-1"
    assert admin_log_actions() == ["link_affiliate", "tapfiliate_sync"]
    sync_log = db_session.query(AdminLog).filter_by(action="tapfiliate_sync").one()
    assert sync_log.details == "Affiliate aff-1 synced to program partner-program"


def test_tapfiliate_sync_reuses_existing_affiliate_id(tapfiliate_configured, application_factory, partner_factory, fake_tapfiliate, make_worker, task_queue):
    application = application_factory(status=ApplicationStatus.APPROVED)
    partner_factory("existing", application_id=application.id)
    fake = fake_tapfiliate()
    task_queue.enqueue(TapfiliateSyncTask(application_id=application.id))

    make_worker(fake).run_once()

    assert fake.created == []
    assert fake.program_adds[0]["affiliate_id"] == "existing"


def test_tapfiliate_sync_skipped_when_unconfigured(approved_partner, fake_tapfiliate, make_worker, task_queue, admin_log_actions):
    application, _ = approved_partner
    fake = fake_tapfiliate()
    task_queue.enqueue(TapfiliateSyncTask(application_id=application.id))

    make_worker(fake).run_once()

    assert fake.created == []
    assert admin_log_actions() == []
    assert task_queue.depth() == 0


def test_tapfiliate_sync_skipped_for_unknown_application(tapfiliate_configured, fake_tapfiliate, make_worker, task_queue):
    fake = fake_tapfiliate()
    task_queue.enqueue(TapfiliateSyncTask(application_id=12345))

    make_worker(fake).run_once()

    assert fake.created == []
    assert task_queue.depth() == 0


def test_failed_task_is_rescheduled_with_backoff(tapfiliate_configured, approved_partner, fake_tapfiliate, make_worker, task_queue, db_session):
    application, partner = approved_partner
    task_queue.enqueue(TapfiliateSyncTask(application_id=application.id))

    make_worker(fake_tapfiliate(fail_create=True)).run_once()

    snapshot = task_queue.snapshot()
    assert snapshot["ready"] == 0
    assert snapshot["scheduled"] == 1
    retry = task_queue._delayed[0][3].task
    assert retry.attempt == 2
    assert retry.application_id == application.id
    db_session.expire_all()
    assert db_session.get(Partner, partner.id).tapfiliate_affiliate_id is None
    assert len(FAILED_TASKS) == 0


def test_exhausted_task_is_recorded_as_failed(tapfiliate_configured, approved_partner, fake_tapfiliate, make_worker, task_queue):
    application, _ = approved_partner
    task_queue.enqueue(TapfiliateSyncTask(application_id=application.id, attempt=3))

    make_worker(fake_tapfiliate(fail_add=True)).run_once()

    assert task_queue.depth() == 0
    assert len(FAILED_TASKS) == 1
    assert FAILED_TASKS[0]["task_key"] == f"tapfiliate:{application.id}"
    assert FAILED_TASKS[0]["attempts"] == 3


def test_waitlist_forward_calls_landing_endpoint(monkeypatch, make_worker, task_queue):
    forwarded = []

    async def fake_forward(email):
        forwarded.append(email)
        return True

    monkeypatch.setattr(side_effects, "forward_email_to_waitlist", fake_forward)
    task_queue.enqueue(WaitlistForwardTask(email="ada@example.com"))

    make_worker().run_once()

    assert forwarded == ["ada@example.com"]


def test_waitlist_forward_failure_is_retried(monkeypatch, make_worker, task_queue):
    async def failing_forward(email):
        raise WaitlistForwardError("Waitlist endpoint returned HTTP 502")

    monkeypatch.setattr(side_effects, "forward_email_to_waitlist", failing_forward)
    task_queue.enqueue(WaitlistForwardTask(email="ada@example.com"))

    make_worker().run_once()

    assert task_queue.snapshot()["scheduled"] == 1


def test_waitlist_forward_without_url_is_skipped(make_worker, task_queue):
    task_queue.enqueue(WaitlistForwardTask(email="ada@example.com"))
    assert make_worker().run_once() is True
    assert task_queue.depth() == 0


def test_checkout_reuses_partner_affiliate(tapfiliate_configured, partner_factory, fake_tapfiliate, make_worker, task_queue, db_session):
    partner_factory("aff-77", email="buyer@example.com")
    fake = fake_tapfiliate()
    task_queue.enqueue(CheckoutAffiliateTask(email="Buyer@example.com", checkout_session_id="cs_1"))

    make_worker(fake).run_once()

    assert fake.created == []
    assert fake.program_adds[0]["affiliate_id"] == "aff-77"
    log = db_session.query(AdminLog).filter_by(action="stripe_affiliate").one()
    assert log.admin_identifier == "stripe"
    assert json.loads(log.details)["checkout_session_id"] == "cs_1"


def test_checkout_creates_and_links_affiliate_for_known_partner(tapfiliate_configured, partner_factory, fake_tapfiliate, make_worker, task_queue, db_session):
    partner = partner_factory(None, email="buyer@example.com")
    fake = fake_tapfiliate()
    task_queue.enqueue(CheckoutAffiliateTask(email="buyer@example.com", name="Grace Hopper", checkout_session_id="cs_2"))

    make_worker(fake).run_once()

    assert fake.created[0]["firstname"] == "Grace"
    db_session.expire_all()
    assert db_session.get(Partner, partner.id).tapfiliate_affiliate_id == "aff-1"


def test_checkout_for_unknown_email_still_enrolls_affiliate(tapfiliate_configured, fake_tapfiliate, make_worker, task_queue, db_session):
    fake = fake_tapfiliate()
    task_queue.enqueue(CheckoutAffiliateTask(email="stranger@example.com", checkout_session_id="cs_3"))

    make_worker(fake).run_once()

    assert [c["email"] for c in fake.created] == ["stranger@example.com"]
    assert fake.program_adds[0]["affiliate_id"] == "aff-1"
    assert db_session.query(Partner).count() == 0


def test_duplicate_tasks_are_collapsed_while_pending(task_queue):
    first = task_queue.enqueue(TapfiliateSyncTask(application_id=1))
    second = task_queue.enqueue(TapfiliateSyncTask(application_id=1))
    assert first is second
    assert task_queue.depth() == 1


def test_failed_task_record_is_bounded(monkeypatch, make_worker):
    assert FAILED_TASKS.maxlen == QUEUE_SETTINGS["failed_tasks_max"]
    monkeypatch.setattr(worker_module, "FAILED_TASKS", deque(maxlen=2))
    worker = make_worker()

    for application_id in (1, 2, 3):
        worker._retry_or_drop(TapfiliateSyncTask(application_id=application_id, attempt=3), RuntimeError("boom"))

    assert [f["task_key"] for f in worker_module.FAILED_TASKS] == ["tapfiliate:2", "tapfiliate:3"]


def test_stop_joins_idle_worker_thread(make_worker):
    worker = make_worker()
    worker.start()
    assert worker._thread.is_alive()

    assert worker.stop(timeout=2) is True
    assert not worker._thread.is_alive()


def test_stop_waits_for_running_task(monkeypatch, make_worker, task_queue):
    started = threading.Event()
    forwarded = []

    async def slow_forward(email):
        started.set()
        await asyncio.sleep(0.3)
        forwarded.append(email)
        return True

    monkeypatch.setattr(side_effects, "forward_email_to_waitlist", slow_forward)
    task_queue.enqueue(WaitlistForwardTask(email="ada@example.com"))
    worker = make_worker()
    worker.start()
    assert started.wait(timeout=2)

    assert worker.stop(timeout=5) is True
    assert forwarded == ["ada@example.com"]


def test_retry_after_shutdown_is_recorded_as_failed(make_worker, task_queue):
    worker = make_worker()
    task_queue.shutdown()

    worker._retry_or_drop(WaitlistForwardTask(email="ada@example.com"), RuntimeError("timeout"))

    assert len(FAILED_TASKS) == 1
    assert FAILED_TASKS[0]["attempts"] == 1
