"""
Partner application endpoints: public intake and admin review.
"""
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from partner_backend.api.deps import enqueue_task, get_db, require_admin
from partner_backend.jobs.tasks import TapfiliateSyncTask, WaitlistForwardTask
from partner_backend.models.db.enums import ApplicationStatus
from partner_backend.models.schemas import (
    ApplicationRejection,
    PartnerApplicationCreate,
    PartnerApplicationRead,
    ResponseBase,
)
from partner_backend.services.partner_applications import (
    AffiliateConflictError,
    ApplicationNotFoundError,
    DuplicateApplicationError,
    approve_application,
    clear_applications,
    create_application,
    export_applications,
    list_applications,
    reject_application,
)
from partner_backend.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


def _serialize(applications) -> List[dict]:
    return [PartnerApplicationRead.model_validate(a).model_dump(mode="json") for a in applications]


@router.post(
    "/partner-application",
    response_model=ResponseBase,
    summary="Submit a partner application"
)
async def submit_application(
    payload: PartnerApplicationCreate,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    """Store a pending application and forward the email to the landing waitlist."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    try:
        application = create_application(db, payload)
    except DuplicateApplicationError as e:
        logger.warning("Duplicate partner application", request_id=request_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error("Saving partner application failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error saving application. Please try again later."
        )

    enqueue_task(request, WaitlistForwardTask(email=application.email, correlation_id=request_id))

    log_business_event(
        event_type="partner_application_submitted",
        details={"application_id": application.id, "country": application.country},
        request_id=request_id
    )
    log_performance(
        operation="submit_partner_application",
        duration_ms=(time.time() - start_time) * 1000
    )
    return ResponseBase(
        success=True,
        message="Application submitted successfully. We will review and get back to you."
    )


@router.get(
    "/partner-applications/export",
    response_model=ResponseBase,
    summary="Export all applications"
)
async def export_all_applications(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        applications = export_applications(db)
    except Exception as e:
        logger.error("Exporting applications failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error exporting applications.")
    return ResponseBase(data={"applications": _serialize(applications)})


@router.get(
    "/partner-applications/{application_status}",
    response_model=ResponseBase,
    summary="List applications by status"
)
async def get_applications(
    application_status: ApplicationStatus,
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        applications = list_applications(db, application_status)
    except Exception as e:
        logger.error(
            "Fetching applications failed",
            status=application_status.value,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Error fetching applications.")
    return ResponseBase(data={"applications": _serialize(applications)})


@router.post(
    "/partner-applications/{application_id}/approve",
    response_model=ResponseBase,
    summary="Approve an application"
)
async def approve(
    application_id: int,
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    """Approve, create the partner record and queue Tapfiliate provisioning."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        application, partner = approve_application(db, application_id, admin_identifier=admin)
    except ApplicationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AffiliateConflictError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error("Approving application failed", application_id=application_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error approving application.")

    enqueue_task(request, TapfiliateSyncTask(application_id=application.id, correlation_id=request_id))
    logger.info("Application approved", application_id=application.id, partner_id=partner.id, request_id=request_id)
    return ResponseBase(
        message="Partner application approved.",
        data={"application_id": application.id, "partner_id": partner.id}
    )


@router.post(
    "/partner-applications/{application_id}/reject",
    response_model=ResponseBase,
    summary="Reject an application"
)
async def reject(
    application_id: int,
    request: Request,
    body: ApplicationRejection | None = None,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    reason = body.reason if body else None
    try:
        application = reject_application(db, application_id, reason=reason, admin_identifier=admin)
    except ApplicationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error("Rejecting application failed", application_id=application_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error rejecting application.")
    return ResponseBase(message="Partner application rejected.", data={"application_id": application.id})


@router.delete(
    "/partner-applications",
    response_model=ResponseBase,
    summary="Delete all applications"
)
async def delete_all_applications(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        deleted = clear_applications(db, admin_identifier=admin)
    except Exception as e:
        logger.error("Clearing applications failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error clearing applications.")
    logger.warning("All partner applications deleted", deleted=deleted, request_id=request_id)
    return ResponseBase(message="All partner applications have been deleted.", data={"deleted": deleted})
