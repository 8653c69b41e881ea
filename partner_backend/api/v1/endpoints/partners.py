"""
Partner listing and Tapfiliate affiliate linking.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from partner_backend.api.deps import get_db, require_admin
from partner_backend.models.schemas import AffiliateLink, PartnerRead, ResponseBase
from partner_backend.services.partner_applications import (
    AffiliateConflictError,
    PartnerNotFoundError,
    link_affiliate_id,
    list_partners,
)
from partner_backend.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=ResponseBase, summary="List partners")
async def get_partners(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    partners = list_partners(db)
    return ResponseBase(data={"partners": [PartnerRead.model_validate(p).model_dump(mode="json") for p in partners]})


@router.put("/{partner_id}/affiliate", response_model=ResponseBase, summary="Link a Tapfiliate affiliate id")
async def set_partner_affiliate(
    partner_id: int,
    payload: AffiliateLink,
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    """Link once; a partner's affiliate id is never overwritten."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        partner = link_affiliate_id(db, partner_id, payload.tapfiliate_affiliate_id, admin_identifier=admin)
    except PartnerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AffiliateConflictError as e:
        logger.warning("Affiliate link rejected", partner_id=partner_id, error=str(e), request_id=request_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ResponseBase(message="Affiliate id linked.", data={"partner": PartnerRead.model_validate(partner).model_dump(mode="json")})
