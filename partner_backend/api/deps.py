"""
Dependencies for database sessions, admin authentication and the task queue.
"""
import secrets
from typing import Any, Generator, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

import partner_backend.config as config
from partner_backend.database import SessionLocal
from partner_backend.utils import get_logger
from partner_backend.utils.login_guard import AdminLoginGuard

logger = get_logger(__name__)

ADMIN_IDENTIFIER = "admin"
LOCKED_OUT_MESSAGE = "Too many failed admin attempts. Access is locked for 2 hours."
UNAUTHORIZED_MESSAGE = "Unauthorized. Invalid admin token."


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Rolls back on error and always closes the session.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def client_address(request: Request) -> str:
    """Key used for login attempt tracking.

    The peer address, unless ``TRUST_PROXY_HEADERS`` is on, in which case the
    first ``X-Forwarded-For`` hop written by the proxy is used.
    """
    if config.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "global"


def get_login_guard(request: Request) -> AdminLoginGuard:
    guard = getattr(request.app.state, "admin_login_guard", None)
    if guard is None:
        guard = AdminLoginGuard()
        request.app.state.admin_login_guard = guard
    return guard


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_admin(request: Request) -> str:
    """
    Admin bearer-token check with per-address lockout.

    Raises:
        HTTPException 429: address is locked out after repeated failures
        HTTPException 401: token missing, wrong, or no admin token configured
    """
    guard = get_login_guard(request)
    key = client_address(request)
    request_id = request.headers.get("X-Request-ID", "unknown")

    locked, retry_after = guard.is_locked(key)
    if locked:
        logger.warning("Admin access locked out", client=key, retry_after=retry_after, request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=LOCKED_OUT_MESSAGE,
            headers={"Retry-After": str(retry_after)},
        )

    expected = config.ADMIN_API_TOKEN
    provided = _bearer_token(request)
    if not expected or not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
        record = guard.record_failure(key)
        logger.warning(
            "Admin authentication failed",
            client=key,
            failures=record.failures,
            token_configured=bool(expected),
            request_id=request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UNAUTHORIZED_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    guard.record_success(key)
    return ADMIN_IDENTIFIER


def get_task_queue(request: Request) -> Optional[Any]:
    return getattr(request.app.state, "task_queue", None)


def enqueue_task(request: Request, task: Any, *, priority: str = "normal") -> bool:
    """Hand a side-effect task to the worker queue. Never fails the request."""
    queue = get_task_queue(request)
    if queue is None:
        logger.warning("Task queue not initialised; dropping task", task_type=type(task).__name__)
        return False
    try:
        queue.enqueue(task, priority=priority)
    except (RuntimeError, OverflowError, ValueError) as e:
        logger.error("Failed to enqueue task", task_type=type(task).__name__, error=str(e))
        return False
    return True
