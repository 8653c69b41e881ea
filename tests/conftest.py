"""Pytest fixtures, factories and fakes.

All model modules are imported through partner_backend.models.db before
create_all() so relationship back_populates targets exist.
"""
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'partner_backend' resolves without an editable install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from partner_backend.main import app  # type: ignore
from partner_backend.database import Base  # type: ignore
from partner_backend.api import deps  # type: ignore
import partner_backend.config as config  # noqa: E402
from partner_backend.integrations.tapfiliate import TapfiliateAPIError  # noqa: E402
from partner_backend.jobs.queue import PriorityDelayQueue  # noqa: E402
from partner_backend.jobs.worker import TaskWorker  # noqa: E402
from partner_backend.models.db import (  # noqa: E402
    AdminLog, ApplicationStatus, Partner, PartnerApplication, PartnerEarning,
)
from partner_backend.utils.login_guard import AdminLoginGuard  # noqa: E402

ADMIN_TOKEN = "test-admin-token"

# File-based SQLite so the test thread and worker sessions share one database
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_partners.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Rebind module-level session factories captured at import time
import partner_backend.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore
import partner_backend.main as _main  # noqa: E402
_main.SessionLocal = TestingSessionLocal  # type: ignore


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_partners.db")
    except OSError:
        pass


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolate_test_state(monkeypatch):
    """Fresh tables, queue, login guard and credentials for every test.

    Tests bypass the app lifespan, so the queue and guard it would create are
    installed on app.state here. No worker thread runs; tests drain the queue
    explicitly with TaskWorker.run_once().
    """
    session = TestingSessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()

    queue = PriorityDelayQueue()
    app.state.task_queue = queue
    app.state.admin_login_guard = AdminLoginGuard()

    monkeypatch.setattr(config, "ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", False)
    monkeypatch.setattr(config, "LANDING_WAITLIST_URL", None)
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)
    monkeypatch.setitem(config.TAPFILIATE_SETTINGS, "api_key", None)
    monkeypatch.setitem(config.TAPFILIATE_SETTINGS, "program_id", None)
    yield
    queue.purge()


def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture()
def task_queue():
    return app.state.task_queue


@pytest.fixture()
def tapfiliate_configured(monkeypatch):
    monkeypatch.setitem(config.TAPFILIATE_SETTINGS, "api_key", "tf-test-key")
    monkeypatch.setitem(config.TAPFILIATE_SETTINGS, "program_id", "partner-program")


# ---------- Fakes ----------

class FakeTapfiliateClient:
    """In-memory stand-in for TapfiliateClient.

    ``pages`` maps page number -> list of conversion dicts; pages not listed
    are empty. ``fail_on_page`` makes that page raise like an HTTP 500.
    """

    def __init__(
        self,
        pages: Optional[Dict[int, List[Dict[str, Any]]]] = None,
        *,
        fail_on_page: Optional[int] = None,
        full_page: Optional[List[Dict[str, Any]]] = None,
        fail_create: bool = False,
        fail_add: bool = False,
    ):
        self.pages = pages or {}
        self.fail_on_page = fail_on_page
        self.full_page = full_page
        self.fail_create = fail_create
        self.fail_add = fail_add
        self.conversion_calls: List[Dict[str, Any]] = []
        self.created: List[Dict[str, Any]] = []
        self.program_adds: List[Dict[str, Any]] = []

    async def list_conversions(self, *, program_id, date_from, date_to, page):
        self.conversion_calls.append({"program_id": program_id, "date_from": date_from, "date_to": date_to, "page": page})
        if self.fail_on_page == page:
            raise TapfiliateAPIError("Tapfiliate GET /conversions/ returned HTTP 500", status=500, body="boom")
        if self.full_page is not None:
            return list(self.full_page)
        return list(self.pages.get(page, []))

    async def create_affiliate(self, *, email, firstname=None, lastname=None):
        if self.fail_create:
            raise TapfiliateAPIError("Tapfiliate POST /affiliates/ returned HTTP 503", status=503)
        affiliate_id = f"aff-{len(self.created) + 1}"
        self.created.append({"id": affiliate_id, "email": email, "firstname": firstname, "lastname": lastname})
        return affiliate_id

    async def add_affiliate_to_program(self, *, program_id, affiliate_id, approved=True):
        if self.fail_add:
            raise TapfiliateAPIError("Tapfiliate POST /programs/ returned HTTP 502", status=502)
        self.program_adds.append({"program_id": program_id, "affiliate_id": affiliate_id, "approved": approved})
        return {"affiliate": {"id": affiliate_id}, "approved": approved}


@pytest.fixture()
def fake_tapfiliate():
    return FakeTapfiliateClient


@pytest.fixture()
def make_worker(task_queue):
    def _make(client=None):
        return TaskWorker(
            task_queue,
            poll_timeout=0.1,
            session_factory=TestingSessionLocal,
            client_factory=(lambda: client) if client is not None else None,
        )
    return _make


@pytest.fixture()
def make_conversion():
    def _make(affiliate_id: Any, amount: Any, currency: Optional[str] = "usd", **extra) -> Dict[str, Any]:
        record: Dict[str, Any] = {"amount": amount, "affiliate": {"id": affiliate_id}}
        if currency is not None:
            record["currency"] = currency
        record.update(extra)
        return record
    return _make


# ---------- Data factory helpers ----------

@pytest.fixture()
def application_factory(db_session):
    counter = {"n": 0}

    def _create(name: str = "Ada Obi", email: Optional[str] = None, status: ApplicationStatus = ApplicationStatus.PENDING):
        counter["n"] += 1
        application = PartnerApplication(
            name=name,
            email=email or f"applicant{counter['n']}@example.com",
            country="Nigeria",
            motivation="I run a study group.",
            terms_accepted=True,
            status=status,
        )
        db_session.add(application)
        db_session.commit()
        db_session.refresh(application)
        return application
    return _create


@pytest.fixture()
def partner_factory(db_session):
    counter = {"n": 0}

    def _create(affiliate_id: Optional[str] = None, *, name: str = "Partner", email: Optional[str] = None, application_id: Optional[int] = None):
        counter["n"] += 1
        partner = Partner(
            name=f"{name} {counter['n']}",
            email=email or f"partner{counter['n']}@example.com",
            tapfiliate_affiliate_id=affiliate_id,
            application_id=application_id,
        )
        db_session.add(partner)
        db_session.commit()
        db_session.refresh(partner)
        return partner
    return _create


@pytest.fixture()
def earnings_rows(db_session):
    def _rows(**filters):
        db_session.expire_all()
        return db_session.query(PartnerEarning).filter_by(**filters).all()
    return _rows


@pytest.fixture()
def admin_log_actions(db_session):
    def _actions():
        db_session.expire_all()
        return [log.action for log in db_session.query(AdminLog).order_by(AdminLog.id).all()]
    return _actions
