"""Partner application review, partner records and the admin audit log.

All functions take an open Session and commit their own unit of work, so the
endpoints stay thin. Queue side effects (waitlist forwarding, Tapfiliate
provisioning) are enqueued by the caller after a successful commit.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from partner_backend.models.db import AdminAction, AdminLog, ApplicationStatus, Partner, PartnerApplication
from partner_backend.models.schemas import PartnerApplicationCreate
from partner_backend.utils import get_logger, log_business_event
from partner_backend.utils.time import utc_now

logger = get_logger(__name__)

DEFAULT_ADMIN_IDENTIFIER = "admin"
RECENT_ADMIN_LOGS_LIMIT = 200


class DuplicateApplicationError(ValueError):
    pass


class ApplicationNotFoundError(LookupError):
    pass


class PartnerNotFoundError(LookupError):
    pass


class AffiliateConflictError(ValueError):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ------------------------------ Audit log --------------------------------- #

def record_admin_action(
    session: Session,
    action: AdminAction | str,
    *,
    application_id: Optional[int] = None,
    details: Optional[Dict[str, Any] | str] = None,
    admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER,
) -> AdminLog:
    """Add an admin log row to the session (the caller commits)."""
    action_value = action.value if isinstance(action, AdminAction) else str(action)
    if isinstance(details, dict):
        details_text: Optional[str] = json.dumps(details, default=str, sort_keys=True)
    else:
        details_text = details
    entry = AdminLog(
        admin_identifier=admin_identifier,
        action=action_value,
        application_id=application_id,
        details=details_text,
    )
    session.add(entry)
    log_business_event(
        event_type=f"admin_{action_value}",
        details={"application_id": application_id},
        admin_identifier=admin_identifier,
    )
    return entry


def list_admin_logs(session: Session, *, limit: Optional[int] = RECENT_ADMIN_LOGS_LIMIT) -> List[AdminLog]:
    stmt = select(AdminLog).order_by(AdminLog.created_at.desc(), AdminLog.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars().all())


def clear_admin_logs(session: Session, *, admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER) -> int:
    """Delete every log row, then record the clearing itself."""
    deleted = session.execute(delete(AdminLog)).rowcount or 0
    record_admin_action(
        session,
        AdminAction.CLEAR_LOGS,
        details={"deleted": deleted},
        admin_identifier=admin_identifier,
    )
    session.commit()
    return deleted


# ----------------------------- Applications ------------------------------- #

def create_application(session: Session, payload: PartnerApplicationCreate) -> PartnerApplication:
    email = normalize_email(str(payload.email))
    existing = session.execute(
        select(PartnerApplication.id).where(func.lower(PartnerApplication.email) == email)
    ).first()
    if existing is not None:
        raise DuplicateApplicationError("This email has already been used for a partner application.")

    application = PartnerApplication(
        name=payload.name,
        email=email,
        whatsapp=payload.whatsapp,
        country=payload.country,
        audience_size=payload.audience_size,
        platform=payload.platform,
        motivation=payload.motivation,
        terms_accepted=payload.terms_accepted,
        status=ApplicationStatus.PENDING,
    )
    session.add(application)
    try:
        session.commit()
    except IntegrityError as e:
        # Concurrent submission with the same email
        session.rollback()
        raise DuplicateApplicationError("This email has already been used for a partner application.") from e
    session.refresh(application)
    logger.info("Partner application received", application_id=application.id)
    return application


def list_applications(session: Session, status: ApplicationStatus) -> List[PartnerApplication]:
    stmt = select(PartnerApplication).where(PartnerApplication.status == status)
    if status == ApplicationStatus.PENDING:
        stmt = stmt.order_by(PartnerApplication.created_at.desc(), PartnerApplication.id.desc())
    else:
        stmt = stmt.order_by(
            PartnerApplication.approved_at.is_(None),
            PartnerApplication.approved_at.desc(),
            PartnerApplication.created_at.desc(),
            PartnerApplication.id.desc(),
        )
    return list(session.execute(stmt).scalars().all())


def export_applications(session: Session) -> List[PartnerApplication]:
    stmt = select(PartnerApplication).order_by(PartnerApplication.created_at.desc(), PartnerApplication.id.desc())
    return list(session.execute(stmt).scalars().all())


def _get_application_or_raise(session: Session, application_id: int) -> PartnerApplication:
    application = session.get(PartnerApplication, application_id)
    if application is None:
        raise ApplicationNotFoundError(f"Application {application_id} not found")
    return application


def ensure_partner_for_application(session: Session, application: PartnerApplication) -> Partner:
    """Return the application's partner, creating or re-attaching one if needed."""
    if application.partner is not None:
        return application.partner

    partner = session.execute(
        select(Partner).where(func.lower(Partner.email) == normalize_email(application.email))
    ).scalar_one_or_none()
    if partner is not None and partner.application_id is None:
        partner.application_id = application.id
        partner.name = application.name
        return partner
    if partner is not None:
        raise AffiliateConflictError(
            f"Partner email {application.email} already belongs to application {partner.application_id}"
        )

    partner = Partner(application_id=application.id, name=application.name, email=normalize_email(application.email))
    session.add(partner)
    return partner


def approve_application(
    session: Session,
    application_id: int,
    *,
    admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER,
) -> Tuple[PartnerApplication, Partner]:
    application = _get_application_or_raise(session, application_id)
    application.status = ApplicationStatus.APPROVED
    application.approved_at = utc_now()
    application.approved_by = admin_identifier
    partner = ensure_partner_for_application(session, application)
    record_admin_action(
        session,
        AdminAction.APPROVE,
        application_id=application.id,
        details={"email": application.email},
        admin_identifier=admin_identifier,
    )
    session.commit()
    session.refresh(application)
    session.refresh(partner)
    return application, partner


def reject_application(
    session: Session,
    application_id: int,
    *,
    reason: Optional[str] = None,
    admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER,
) -> PartnerApplication:
    application = _get_application_or_raise(session, application_id)
    application.status = ApplicationStatus.REJECTED
    application.notes = reason
    record_admin_action(
        session,
        AdminAction.REJECT,
        application_id=application.id,
        details=reason or None,
        admin_identifier=admin_identifier,
    )
    session.commit()
    session.refresh(application)
    return application


def clear_applications(session: Session, *, admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER) -> int:
    """Delete every application. Partners survive with application_id detached."""
    session.execute(
        update(Partner).where(Partner.application_id.is_not(None)).values(application_id=None)
    )
    deleted = session.execute(delete(PartnerApplication)).rowcount or 0
    record_admin_action(
        session,
        AdminAction.CLEAR_ALL,
        details={"deleted": deleted},
        admin_identifier=admin_identifier,
    )
    session.commit()
    session.expire_all()
    return deleted


# ------------------------------- Partners --------------------------------- #

def list_partners(session: Session) -> List[Partner]:
    return list(session.execute(select(Partner).order_by(Partner.created_at.desc(), Partner.id.desc())).scalars().all())


def find_partner_by_email(session: Session, email: str) -> Optional[Partner]:
    return session.execute(
        select(Partner).where(func.lower(Partner.email) == normalize_email(email))
    ).scalar_one_or_none()


def link_affiliate_id(
    session: Session,
    partner_id: int,
    affiliate_id: str,
    *,
    admin_identifier: str = DEFAULT_ADMIN_IDENTIFIER,
) -> Partner:
    """Store a Tapfiliate affiliate id on a partner. First write wins.

    Re-linking the same id is a no-op. Raises AffiliateConflictError when the
    partner already carries a different id or the id belongs to another
    partner.
    """
    affiliate_id = affiliate_id.strip()
    partner = session.get(Partner, partner_id)
    if partner is None:
        raise PartnerNotFoundError(f"Partner {partner_id} not found")

    owner = session.execute(
        select(Partner.id).where(Partner.tapfiliate_affiliate_id == affiliate_id, Partner.id != partner_id)
    ).scalar_one_or_none()
    if owner is not None:
        raise AffiliateConflictError(f"Affiliate id {affiliate_id} is already linked to partner {owner}")

    result = session.execute(
        update(Partner)
        .where(Partner.id == partner_id, Partner.tapfiliate_affiliate_id.is_(None))
        .values(tapfiliate_affiliate_id=affiliate_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.refresh(partner)
        if partner.tapfiliate_affiliate_id == affiliate_id:
            return partner
        session.rollback()
        raise AffiliateConflictError(
            f"Partner {partner_id} is already linked to affiliate {partner.tapfiliate_affiliate_id}"
        )

    record_admin_action(
        session,
        AdminAction.LINK_AFFILIATE,
        application_id=partner.application_id,
        details={"partner_id": partner_id, "affiliate_id": affiliate_id},
        admin_identifier=admin_identifier,
    )
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise AffiliateConflictError(f"Affiliate id {affiliate_id} is already linked to another partner") from e
    session.refresh(partner)
    logger.info("Affiliate id linked", partner_id=partner_id, affiliate_id=affiliate_id)
    return partner


__all__ = [
    "record_admin_action",
    "list_admin_logs",
    "clear_admin_logs",
    "create_application",
    "list_applications",
    "export_applications",
    "ensure_partner_for_application",
    "approve_application",
    "reject_application",
    "clear_applications",
    "list_partners",
    "find_partner_by_email",
    "link_affiliate_id",
    "normalize_email",
    "DuplicateApplicationError",
    "ApplicationNotFoundError",
    "PartnerNotFoundError",
    "AffiliateConflictError",
]
