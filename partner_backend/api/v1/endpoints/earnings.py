"""
Partner earnings ledger endpoints: monthly sync trigger and ledger listing.
"""
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from partner_backend.api.deps import get_db, require_admin
from partner_backend.models.db import AdminAction, PartnerEarning
from partner_backend.models.schemas import (
    EarningsSyncRequest,
    EarningsSyncResponse,
    EarningsTotalRead,
    PartnerEarningRead,
)
from partner_backend.services.earnings_sync import (
    ConversionFetchError,
    InvalidPeriodError,
    LedgerWriteError,
    TapfiliateNotConfiguredError,
    parse_period,
    sync_partner_earnings,
)
from partner_backend.services.partner_applications import record_admin_action
from partner_backend.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/sync",
    response_model=EarningsSyncResponse,
    response_model_exclude_none=True,
    summary="Recompute the earnings ledger for one month"
)
async def trigger_earnings_sync(
    payload: EarningsSyncRequest,
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> EarningsSyncResponse:
    """Fetch the month's Tapfiliate conversions and overwrite the ledger rows.

    Error mapping:
      - invalid period -> 422
      - Tapfiliate not configured -> 503
      - conversion page fetch failed -> 502 (no ledger rows written)
      - ledger write failed -> 500 (safe to re-run)
    """
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Earnings sync triggered", period=payload.period, request_id=request_id)

    try:
        summary = await sync_partner_earnings(db, payload.period)
    except InvalidPeriodError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except TapfiliateNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ConversionFetchError as e:
        logger.error("Earnings sync aborted: conversion fetch failed", period=payload.period, page=e.page, upstream_status=e.status, request_id=request_id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except LedgerWriteError as e:
        logger.error("Earnings sync aborted: ledger write failed", period=payload.period, error=str(e), request_id=request_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to write earnings ledger")

    record_admin_action(
        db,
        AdminAction.EARNINGS_SYNC,
        details={"period": summary.period, "buckets": len(summary.totals)},
        admin_identifier=admin,
    )
    db.commit()

    log_performance(
        operation="trigger_earnings_sync",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"period": summary.period, "buckets": len(summary.totals)}
    )
    return EarningsSyncResponse(
        period=summary.period,
        totals=[
            EarningsTotalRead(
                partner_id=t.partner_id,
                currency=t.currency,
                gross=float(t.gross),
                net=float(t.net),
                commission_rate=float(t.commission_rate),
                commission_amount=float(t.commission_amount),
            )
            for t in summary.totals
        ],
        note=summary.note,
    )


@router.get(
    "",
    response_model=List[PartnerEarningRead],
    summary="List ledger rows"
)
async def list_partner_earnings(
    request: Request,
    period: Optional[str] = Query(None, description="YYYY-MM"),
    partner_id: Optional[int] = Query(None, ge=1),
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> List[PartnerEarningRead]:
    stmt = select(PartnerEarning)
    if period is not None:
        try:
            sync_period = parse_period(period)
        except InvalidPeriodError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
        stmt = stmt.where(PartnerEarning.period == sync_period.period_date)
    if partner_id is not None:
        stmt = stmt.where(PartnerEarning.partner_id == partner_id)
    stmt = stmt.order_by(PartnerEarning.period.desc(), PartnerEarning.partner_id, PartnerEarning.currency)
    rows = db.execute(stmt).scalars().all()
    return [PartnerEarningRead.model_validate(row) for row in rows]
