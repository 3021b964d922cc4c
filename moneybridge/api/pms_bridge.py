"""
PMS bridge API - preview, sync, status and drift comparison.

All endpoints answer 503 when the PMS database is not configured or cannot
be reached, so the feature can be left disabled without breaking the app.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.api.deps import get_current_user
from moneybridge.config import get_settings
from moneybridge.database import get_db
from moneybridge.integrations.pms import (
    PmsNotConfiguredError,
    PmsUnavailableError,
    month_bounds,
)
from moneybridge.schemas.pms import (
    PmsCompareResponse,
    PmsPreviewResponse,
    PmsStatusResponse,
    PmsSyncRequest,
    PmsSyncResponse,
)
from moneybridge.services.pms_bridge import (
    PMS_SOURCE_KEY,
    compare_pms_with_ledger,
    current_month,
    get_pms_status,
    preview_pms_revenues,
    sync_pms_revenues,
)
from moneybridge.utils.locks import LockTimeoutError, sync_lock

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/pms-bridge", tags=["pms-bridge"])

PMS_NOT_CONFIGURED = "PMS database is not configured (set PMS_DATABASE_URL)"
PMS_UNAVAILABLE = "PMS database is unavailable"


def resolve_period(start_month: Optional[str], end_month: Optional[str]) -> tuple[str, str]:
    """Apply defaults and validate; raises 400 on malformed or inverted months."""
    start = start_month or get_settings().pms_default_start_month
    end = end_month or current_month()
    try:
        month_bounds(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return start, end


def _unavailable(e: Exception) -> HTTPException:
    if isinstance(e, PmsNotConfiguredError):
        return HTTPException(status_code=503, detail=PMS_NOT_CONFIGURED)
    logger.error("PMS bridge unavailable: %s", str(e))
    return HTTPException(status_code=503, detail=PMS_UNAVAILABLE)


@router.get("/preview", response_model=PmsPreviewResponse)
async def get_preview(
    start_month: Optional[str] = Query(None, alias="startMonth"),
    end_month: Optional[str] = Query(None, alias="endMonth"),
    user_id: int = Depends(get_current_user),
):
    """Monthly PMS revenue that a sync would write, without writing it."""
    start, end = resolve_period(start_month, end_month)
    try:
        return PmsPreviewResponse(**await preview_pms_revenues(start, end))
    except (PmsNotConfiguredError, PmsUnavailableError) as e:
        raise _unavailable(e)


@router.post("/sync", response_model=PmsSyncResponse)
async def post_sync(
    payload: Optional[PmsSyncRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    payload = payload or PmsSyncRequest()
    start, end = resolve_period(payload.start_month, payload.end_month)
    try:
        async with sync_lock(PMS_SOURCE_KEY):
            result = await sync_pms_revenues(db, start, end)
    except LockTimeoutError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (PmsNotConfiguredError, PmsUnavailableError) as e:
        raise _unavailable(e)

    logger.info(
        "Manual PMS sync by user %s", user_id,
        extra={"user_id": user_id, "period": f"{start}..{end}"},
    )
    message = (
        f"PMS sync complete: {result['synced']} added, "
        f"{result['updated']} updated, {result['skipped']} skipped"
    )
    return PmsSyncResponse(message=message, **result)


@router.get("/status", response_model=PmsStatusResponse)
async def get_status(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    """Always 200: reports configuration and connectivity instead of failing."""
    configured = bool(get_settings().pms_database_url)
    return PmsStatusResponse(**await get_pms_status(db, configured))


@router.get("/compare", response_model=PmsCompareResponse)
async def get_compare(
    start_month: Optional[str] = Query(None, alias="startMonth"),
    end_month: Optional[str] = Query(None, alias="endMonth"),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    """Per-month PMS revenue against income recorded in the ledger."""
    start, end = resolve_period(start_month, end_month)
    try:
        return PmsCompareResponse(**await compare_pms_with_ledger(db, start, end))
    except (PmsNotConfiguredError, PmsUnavailableError) as e:
        raise _unavailable(e)
