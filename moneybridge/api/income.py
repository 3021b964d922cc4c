"""
Income API - public webhook receiver plus admin endpoints for sources and
the webhook review inbox.

The receiver answers 200 {"received": true} for unknown or inactive source
keys, and for the pull-only PMS bridge key, so the endpoint cannot be used
to enumerate configured sources.
Admin endpoints require a bearer JWT.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.api.deps import get_current_user
from moneybridge.config import get_settings
from moneybridge.database import get_db
from moneybridge.schemas.income import (
    BatchConfirmResponse,
    BatchConfirmWebhookRequest,
    ConfirmResultResponse,
    ConfirmWebhookRequest,
    IncomeSourceCreate,
    IncomeSourceResponse,
    IncomeSourceUpdate,
    IncomeWebhookResponse,
    MessageResponse,
    PendingCountResponse,
    RejectWebhookRequest,
    WebhookListResponse,
    WebhookStatus,
)
from moneybridge.services.income_sources import (
    DuplicateSourceKeyError,
    create_source,
    deactivate_source,
    get_active_source_by_key,
    get_source,
    list_sources,
    serialize_source,
    update_source,
)
from moneybridge.services.income_webhooks import (
    count_pending,
    get_webhook,
    list_webhooks,
    receive_webhook,
)
from moneybridge.services.review import (
    batch_confirm_webhooks,
    confirm_webhook,
    reject_webhook,
    reprocess_webhook,
)
from moneybridge.services.pms_bridge import PMS_SOURCE_KEY

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/income", tags=["income"])

ERROR_STATUS = {
    "not_found": 404,
    "invalid_state": 400,
    "amount_unavailable": 400,
}


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _raise_for_result(result: dict) -> None:
    if not result.get("success"):
        status_code = ERROR_STATUS.get(result.get("error_code"), 400)
        raise HTTPException(status_code=status_code, detail=result.get("error"))


# === PUBLIC RECEIVER ===

@router.post("/webhook/{source_key}")
async def receive_income_webhook(
    source_key: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Receive a payment notification for a configured source."""
    # The PMS bridge source is fed by the pull sync only
    source = None
    if source_key != PMS_SOURCE_KEY:
        source = await get_active_source_by_key(db, source_key)
    if not source:
        logger.info("Webhook for unknown source key ignored", extra={"source_key": source_key})
        return {"received": True}

    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    headers = request.headers
    settings = get_settings()
    try:
        result = await asyncio.wait_for(
            receive_webhook(
                db,
                source,
                raw_payload=payload,
                raw_body=body,
                authorization=headers.get("authorization"),
                signature_header=headers.get("x-signature") or headers.get("x-hub-signature-256"),
                request_ip=_client_ip(request),
                request_headers=dict(headers),
            ),
            timeout=settings.webhook_timeout_seconds,
        )
    except asyncio.TimeoutError:
        await db.rollback()
        logger.error(
            "Webhook processing timed out after %.1fs", settings.webhook_timeout_seconds,
            extra={"source_key": source_key},
        )
        return JSONResponse(status_code=503, content={"error": "Temporarily unavailable"})

    if not result["success"]:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    if result.get("is_duplicate"):
        return {"received": True, "duplicate": True, "id": result["webhook_id"]}
    return {"received": True, "id": result["webhook_id"]}


# === SOURCES ===

@router.get("/sources", response_model=list[IncomeSourceResponse])
async def get_sources(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    """All sources, secrets masked."""
    sources = await list_sources(db)
    return [IncomeSourceResponse(**serialize_source(s)) for s in sources]


@router.get("/sources/{source_id}", response_model=IncomeSourceResponse)
async def get_source_detail(
    source_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    """Single source with plaintext secrets, for the edit form."""
    source = await get_source(db, source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Income source not found")
    return IncomeSourceResponse(**serialize_source(source, mask=False))


@router.post("/sources", response_model=IncomeSourceResponse, status_code=201)
async def post_source(
    payload: IncomeSourceCreate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    try:
        source = await create_source(db, payload)
    except DuplicateSourceKeyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Source %s created by user %s", source.source_key, user_id, extra={"user_id": user_id})
    return IncomeSourceResponse(**serialize_source(source))


@router.put("/sources/{source_id}", response_model=IncomeSourceResponse)
async def put_source(
    source_id: int,
    payload: IncomeSourceUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    try:
        source = await update_source(db, source_id, payload)
    except DuplicateSourceKeyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not source:
        raise HTTPException(status_code=404, detail="Income source not found")
    return IncomeSourceResponse(**serialize_source(source))


@router.delete("/sources/{source_id}", response_model=MessageResponse)
async def delete_source(
    source_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    """Soft delete: the source stops accepting deliveries, history is kept."""
    if not await deactivate_source(db, source_id):
        raise HTTPException(status_code=404, detail="Income source not found")
    return MessageResponse(message="Income source deactivated", id=source_id)


# === WEBHOOK INBOX ===

@router.get("/webhooks", response_model=WebhookListResponse)
async def get_webhooks(
    status: Optional[WebhookStatus] = Query(None),
    source_id: Optional[int] = Query(None, alias="sourceId", gt=0),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    result = await list_webhooks(
        db,
        status=status,
        source_id=source_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return WebhookListResponse(
        data=[IncomeWebhookResponse.model_validate(w) for w in result["data"]],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
    )


@router.get("/webhooks/pending-count", response_model=PendingCountResponse)
async def get_pending_count(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    return PendingCountResponse(count=await count_pending(db))


@router.get("/webhooks/{webhook_id}", response_model=IncomeWebhookResponse)
async def get_webhook_detail(
    webhook_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    webhook = await get_webhook(db, webhook_id)
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return IncomeWebhookResponse.model_validate(webhook)


@router.post("/webhooks/batch-confirm", response_model=BatchConfirmResponse)
async def post_batch_confirm(
    payload: BatchConfirmWebhookRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    result = await batch_confirm_webhooks(
        db,
        payload.ids,
        user_id,
        payload.project_id,
        category_id=payload.category_id,
        review_note=payload.review_note,
    )
    return BatchConfirmResponse(
        results=[ConfirmResultResponse(**r) for r in result["results"]],
        success_count=result["success_count"],
        fail_count=result["fail_count"],
    )


@router.post("/webhooks/{webhook_id}/confirm", response_model=ConfirmResultResponse)
async def post_confirm(
    webhook_id: int,
    payload: ConfirmWebhookRequest,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    result = await confirm_webhook(
        db,
        webhook_id,
        user_id,
        payload.project_id,
        category_id=payload.category_id,
        item_name=payload.item_name,
        review_note=payload.review_note,
    )
    _raise_for_result(result)
    return ConfirmResultResponse(**result)


@router.post("/webhooks/{webhook_id}/reject", response_model=MessageResponse)
async def post_reject(
    webhook_id: int,
    payload: Optional[RejectWebhookRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    review_note = payload.review_note if payload else None
    result = await reject_webhook(db, webhook_id, user_id, review_note)
    _raise_for_result(result)
    return MessageResponse(message="Webhook rejected", id=webhook_id, status="rejected")


@router.post("/webhooks/{webhook_id}/reprocess", response_model=MessageResponse)
async def post_reprocess(
    webhook_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user),
):
    result = await reprocess_webhook(db, webhook_id, user_id)
    _raise_for_result(result)
    return MessageResponse(message="Webhook returned to pending", id=webhook_id, status="pending")
