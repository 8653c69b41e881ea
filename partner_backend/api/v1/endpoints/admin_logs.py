"""
Admin audit log endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from partner_backend.api.deps import get_db, require_admin
from partner_backend.models.schemas import AdminLogRead, ResponseBase
from partner_backend.services.partner_applications import clear_admin_logs, list_admin_logs
from partner_backend.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _serialize(logs) -> list[dict]:
    return [AdminLogRead.model_validate(entry).model_dump(mode="json") for entry in logs]


@router.get("", response_model=ResponseBase, summary="Latest admin log entries")
async def get_admin_logs(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        logs = list_admin_logs(db)
    except Exception as e:
        logger.error("Fetching admin logs failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching admin logs.")
    return ResponseBase(data={"logs": _serialize(logs)})


@router.get("/export", response_model=ResponseBase, summary="Export every admin log entry")
async def export_admin_logs(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        logs = list_admin_logs(db, limit=None)
    except Exception as e:
        logger.error("Exporting admin logs failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error exporting logs.")
    return ResponseBase(data={"logs": _serialize(logs)})


@router.delete("", response_model=ResponseBase, summary="Delete all admin logs")
async def delete_admin_logs(
    request: Request,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        deleted = clear_admin_logs(db, admin_identifier=admin)
    except Exception as e:
        logger.error("Clearing admin logs failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Error clearing logs.")
    return ResponseBase(message="All admin logs have been deleted.", data={"deleted": deleted})
