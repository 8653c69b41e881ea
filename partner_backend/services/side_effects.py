"""Handlers for queued side-effect tasks.

Each handler runs inside the worker thread with its own Session. Handlers
raise on retryable failures (transport errors, non-2xx responses) and return
a short status string otherwise; configuration gaps are logged and skipped
rather than retried.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from partner_backend.config import TAPFILIATE_SETTINGS
from partner_backend.integrations.tapfiliate import TapfiliateClient, split_name
from partner_backend.integrations.waitlist import forward_email_to_waitlist
from partner_backend.jobs.tasks import CheckoutAffiliateTask, TapfiliateSyncTask, WaitlistForwardTask
from partner_backend.models.db import AdminAction, Partner, PartnerApplication
from partner_backend.services.partner_applications import (
    AffiliateConflictError,
    find_partner_by_email,
    link_affiliate_id,
    record_admin_action,
)
from partner_backend.utils import get_logger

logger = get_logger(__name__)

ClientFactory = Callable[[], Any]

SKIPPED = "skipped"
DONE = "done"


def tapfiliate_configured() -> bool:
    return bool(TAPFILIATE_SETTINGS.get("api_key") and TAPFILIATE_SETTINGS.get("program_id"))


def _store_affiliate_id(session: Session, partner_id: int, affiliate_id: str) -> str:
    """Link the id, or return whatever id the partner already carries."""
    try:
        partner = link_affiliate_id(session, partner_id, affiliate_id, admin_identifier="system")
    except AffiliateConflictError:
        existing = session.get(Partner, partner_id)
        if existing is not None and existing.tapfiliate_affiliate_id:
            logger.warning(
                "Partner already linked to a different affiliate; keeping existing id",
                partner_id=partner_id,
                existing_affiliate_id=existing.tapfiliate_affiliate_id,
                new_affiliate_id=affiliate_id,
            )
            return existing.tapfiliate_affiliate_id
        raise
    return str(partner.tapfiliate_affiliate_id)


async def handle_waitlist_forward(task: WaitlistForwardTask, session: Session, client_factory: Optional[ClientFactory] = None) -> str:
    forwarded = await forward_email_to_waitlist(task.email)
    return DONE if forwarded else SKIPPED


async def handle_tapfiliate_sync(task: TapfiliateSyncTask, session: Session, client_factory: Optional[ClientFactory] = None) -> str:
    """Provision a Tapfiliate affiliate for an approved application."""
    if not tapfiliate_configured():
        logger.warning("Tapfiliate is not configured; skipping affiliate sync", application_id=task.application_id)
        return SKIPPED

    application = session.get(PartnerApplication, task.application_id)
    if application is None or not application.email:
        logger.warning("Application missing or has no email; skipping affiliate sync", application_id=task.application_id)
        return SKIPPED
    partner = application.partner
    if partner is None:
        logger.warning("Application has no partner record; skipping affiliate sync", application_id=task.application_id)
        return SKIPPED

    client = (client_factory or TapfiliateClient.from_settings)()
    program_id = str(TAPFILIATE_SETTINGS["program_id"])

    affiliate_id = partner.tapfiliate_affiliate_id
    if not affiliate_id:
        firstname, lastname = split_name(application.name)
        created_id = await client.create_affiliate(email=application.email, firstname=firstname, lastname=lastname)
        affiliate_id = _store_affiliate_id(session, partner.id, created_id)

    await client.add_affiliate_to_program(program_id=program_id, affiliate_id=affiliate_id, approved=True)

    record_admin_action(
        session,
        AdminAction.TAPFILIATE_SYNC,
        application_id=application.id,
        details=f"Affiliate {affiliate_id} synced to program {program_id}",
    )
    session.commit()
    logger.info("Tapfiliate affiliate synced", application_id=application.id, affiliate_id=affiliate_id)
    return DONE


async def handle_checkout_affiliate(task: CheckoutAffiliateTask, session: Session, client_factory: Optional[ClientFactory] = None) -> str:
    """Create (or reuse) a Tapfiliate affiliate for a completed Stripe checkout."""
    if not tapfiliate_configured():
        logger.warning("Tapfiliate is not configured; skipping checkout affiliate", checkout_session_id=task.checkout_session_id)
        return SKIPPED
    if not task.email:
        logger.warning("Checkout session has no customer email", checkout_session_id=task.checkout_session_id)
        return SKIPPED

    client = (client_factory or TapfiliateClient.from_settings)()
    program_id = str(TAPFILIATE_SETTINGS["program_id"])
    partner = find_partner_by_email(session, task.email)

    if partner is not None and partner.tapfiliate_affiliate_id:
        affiliate_id = partner.tapfiliate_affiliate_id
    else:
        firstname, lastname = split_name(task.name or (partner.name if partner else None))
        affiliate_id = await client.create_affiliate(email=task.email, firstname=firstname, lastname=lastname)
        if partner is not None:
            affiliate_id = _store_affiliate_id(session, partner.id, affiliate_id)

    await client.add_affiliate_to_program(program_id=program_id, affiliate_id=affiliate_id, approved=True)

    record_admin_action(
        session,
        AdminAction.STRIPE_AFFILIATE,
        application_id=partner.application_id if partner else None,
        details={
            "email": task.email,
            "affiliate_id": affiliate_id,
            "partner_id": partner.id if partner else None,
            "checkout_session_id": task.checkout_session_id,
        },
        admin_identifier="stripe",
    )
    session.commit()
    logger.info("Checkout affiliate provisioned", affiliate_id=affiliate_id, partner_id=partner.id if partner else None)
    return DONE


TASK_HANDLERS = {
    WaitlistForwardTask: handle_waitlist_forward,
    TapfiliateSyncTask: handle_tapfiliate_sync,
    CheckoutAffiliateTask: handle_checkout_affiliate,
}


async def execute_task(task: Any, session: Session, client_factory: Optional[ClientFactory] = None) -> str:
    handler = TASK_HANDLERS.get(type(task))
    if handler is None:
        raise TypeError(f"No handler for task type {type(task).__name__}")
    return await handler(task, session, client_factory)


__all__ = [
    "execute_task",
    "handle_waitlist_forward",
    "handle_tapfiliate_sync",
    "handle_checkout_affiliate",
    "tapfiliate_configured",
    "TASK_HANDLERS",
    "SKIPPED",
    "DONE",
]
