"""
Income webhook ingestion and inbox queries.

receive_webhook() pipeline:
1. IP allowlist
2. Credential verification (bearer token / HMAC-SHA256 per source auth_type)
3. Field mapping
4. Dedup on (source_id, external transaction id)
5. Currency projection
6. Persist as pending + atomic source stats update (one commit)
7. Optional auto-confirm into the ledger (separate transaction)

Receipt is committed before auto-confirm so a ledger failure never loses the
raw evidence; the row simply stays pending with error_message set.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, and_, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.config import get_settings
from moneybridge.models.income_source import IncomeSource
from moneybridge.models.income_webhook import IncomeWebhook
from moneybridge.services.income_sources import get_source_secrets
from moneybridge.services.ledger import materialize_webhook
from moneybridge.services.review import apply_confirmation
from moneybridge.utils.field_mapping import parse_webhook_payload
from moneybridge.utils.webhook_signatures import (
    extract_bearer_token,
    verify_bearer_token,
    verify_hmac_signature,
    verify_ip_allowlist,
)

logger = logging.getLogger(__name__)

HOME_CURRENCY = "TWD"
AUTH_FAILED = "Authentication failed"

# Numeric(12, 2) holds magnitudes below 10^10
MAX_AMOUNT = Decimal("1e10")
TEXT_COLUMN_LENGTH = 255
CURRENCY_COLUMN_LENGTH = 10

REDACTED_HEADERS = frozenset({
    "authorization",
    "cookie",
    "x-signature",
    "x-hub-signature-256",
    "x-api-key",
})


def redact_headers(headers: Optional[dict]) -> dict:
    """Copy of request headers safe to persist: credentials are replaced."""
    if not headers:
        return {}
    return {
        k: ("[REDACTED]" if k.lower() in REDACTED_HEADERS else v)
        for k, v in headers.items()
    }


def _clip(value: Optional[str], limit: int = TEXT_COLUMN_LENGTH) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


def _storable_amount(parsed) -> Optional[Decimal]:
    """Parsed amount rounded to cents, or None when it cannot be stored."""
    if not parsed.has_usable_amount or abs(parsed.amount) >= MAX_AMOUNT:
        return None
    amount = parsed.amount.quantize(Decimal("0.01"))
    if abs(amount) >= MAX_AMOUNT:
        return None
    return amount


def _check_credentials(
    source: IncomeSource,
    raw_body: bytes,
    authorization: Optional[str],
    signature_header: Optional[str],
    strict: bool,
) -> tuple[Optional[str], Optional[bool]]:
    """
    Returns (failure_reason or None, signature_valid).

    Single-mode sources with a configured secret require that credential.
    For auth_type=both a missing credential is skipped as long as at least
    one configured credential is presented; in strict mode both are required.
    A presented-but-wrong credential always fails.
    """
    api_token, webhook_secret = get_source_secrets(source)
    token = extract_bearer_token(authorization)

    signature_valid = None
    if webhook_secret and signature_header:
        signature_valid = verify_hmac_signature(raw_body, signature_header, webhook_secret)

    checks_token = source.auth_type in ("token", "both")
    checks_hmac = source.auth_type in ("hmac", "both")

    if checks_token and api_token and token and not verify_bearer_token(token, api_token):
        return "invalid_token", signature_valid
    if checks_hmac and webhook_secret and signature_header and not signature_valid:
        return "invalid_signature", signature_valid

    token_required = checks_token and bool(api_token)
    hmac_required = checks_hmac and bool(webhook_secret)

    if not token_required and not hmac_required:
        if strict:
            return "no_credentials_configured", signature_valid
        logger.warning(
            "Source %s has no %s secret configured; accepting unauthenticated delivery",
            source.source_key, source.auth_type,
            extra={"source_key": source.source_key},
        )
        return None, signature_valid

    token_missing = token_required and not token
    hmac_missing = hmac_required and not signature_header

    if source.auth_type == "both" and not strict:
        if token_missing and hmac_missing:
            return "missing_credentials", signature_valid
        if token_missing and not hmac_required:
            return "missing_token", signature_valid
        if hmac_missing and not token_required:
            return "missing_signature", signature_valid
        return None, signature_valid

    if token_missing:
        return "missing_token", signature_valid
    if hmac_missing:
        return "missing_signature", signature_valid
    return None, signature_valid


async def _find_existing(
    db: AsyncSession, source_id: int, transaction_id: str,
) -> Optional[int]:
    result = await db.execute(
        select(IncomeWebhook.id).where(
            and_(
                IncomeWebhook.source_id == source_id,
                IncomeWebhook.external_transaction_id == transaction_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def increment_source_stats(db: AsyncSession, source_id: int, count: int = 1) -> None:
    """SQL-side increment so concurrent deliveries never lose counts."""
    now = datetime.now(timezone.utc)
    await db.execute(
        update(IncomeSource)
        .where(IncomeSource.id == source_id)
        .values(
            total_received=IncomeSource.total_received + count,
            last_received_at=now,
            updated_at=now,
        )
    )


async def receive_webhook(
    db: AsyncSession,
    source: IncomeSource,
    raw_payload: Any,
    raw_body: bytes,
    authorization: Optional[str] = None,
    signature_header: Optional[str] = None,
    request_ip: Optional[str] = None,
    request_headers: Optional[dict] = None,
) -> dict:
    """
    Authenticate, parse, dedup and persist one delivery.

    Returns:
        {"success": True, "webhook_id": int, "is_duplicate": bool}
        {"success": False, "error": str, "reason": str}  - reason is for logs only
    """
    settings = get_settings()
    source_id = source.id
    source_key = source.source_key
    log_extra = {"source_id": source_id, "source_key": source_key}

    if not verify_ip_allowlist(request_ip, source.allowed_ips):
        logger.warning("Webhook IP %s not allowed for %s", request_ip, source_key, extra=log_extra)
        return {"success": False, "error": AUTH_FAILED, "reason": "ip_not_allowed"}

    reason, signature_valid = _check_credentials(
        source, raw_body, authorization, signature_header, settings.strict_webhook_auth,
    )
    if reason:
        logger.warning("Webhook auth failed for %s: %s", source_key, reason, extra=log_extra)
        return {"success": False, "error": AUTH_FAILED, "reason": reason}

    parsed = parse_webhook_payload(raw_payload, source.field_mapping)
    # Blank ids carry no identity and must not collide on the unique index
    transaction_id = _clip((parsed.transaction_id or "").strip() or None)

    if transaction_id:
        existing_id = await _find_existing(db, source_id, transaction_id)
        if existing_id is not None:
            logger.info(
                "Duplicate webhook %s for %s (existing id=%s)",
                transaction_id, source_key, existing_id, extra=log_extra,
            )
            return {"success": True, "webhook_id": existing_id, "is_duplicate": True}

    currency = (parsed.currency or source.default_currency or HOME_CURRENCY).strip().upper()
    currency = currency[:CURRENCY_COLUMN_LENGTH]
    amount = _storable_amount(parsed)
    if parsed.amount is not None and amount is None:
        logger.warning(
            "Unparsable or out-of-range amount in webhook for %s", source_key, extra=log_extra,
        )
    amount_twd = amount if currency == HOME_CURRENCY else None

    auto_confirm = source.auto_confirm
    default_project_id = source.default_project_id
    default_category_id = source.default_category_id

    webhook = IncomeWebhook(
        source_id=source_id,
        external_transaction_id=transaction_id,
        raw_payload=raw_payload,
        request_ip=request_ip,
        request_headers=redact_headers(request_headers),
        signature_valid=signature_valid,
        parsed_amount=amount,
        parsed_currency=currency,
        parsed_amount_twd=amount_twd,
        parsed_description=parsed.description,
        parsed_paid_at=parsed.paid_at,
        parsed_payer_name=_clip(parsed.payer_name),
        parsed_payer_contact=_clip(parsed.payer_contact),
        parsed_order_id=_clip(parsed.order_id),
        status="pending",
    )
    db.add(webhook)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same transaction
        await db.rollback()
        existing_id = await _find_existing(db, source_id, transaction_id) if transaction_id else None
        if existing_id is None:
            raise
        logger.info(
            "Duplicate webhook %s for %s detected on insert (existing id=%s)",
            transaction_id, source_key, existing_id, extra=log_extra,
        )
        return {"success": True, "webhook_id": existing_id, "is_duplicate": True}

    webhook_id = webhook.id
    await increment_source_stats(db, source_id)
    await db.commit()

    logger.info(
        "Webhook %s received for %s amount=%s %s",
        webhook_id, source_key, amount, currency,
        extra={**log_extra, "webhook_id": webhook_id},
    )

    if auto_confirm:
        await _auto_confirm(db, webhook, default_project_id, default_category_id)

    return {"success": True, "webhook_id": webhook_id, "is_duplicate": False}


async def _auto_confirm(
    db: AsyncSession,
    webhook: IncomeWebhook,
    project_id: Optional[int],
    category_id: Optional[int],
) -> bool:
    """Materialize right away. On any failure the webhook stays pending for manual review."""
    webhook_id = webhook.id
    log_extra = {"webhook_id": webhook_id, "source_id": webhook.source_id}

    if not project_id:
        error = "Auto-confirm skipped: source has no default project"
    elif webhook.parsed_amount is None:
        error = "Auto-confirm skipped: amount unavailable"
    else:
        try:
            link = await materialize_webhook(db, webhook, project_id, category_id=category_id)
            apply_confirmation(webhook, link, user_id=None)
            await db.commit()
            logger.info("Webhook %s auto-confirmed", webhook_id, extra=log_extra)
            return True
        except SQLAlchemyError as e:
            await db.rollback()
            error = f"Auto-confirm failed: {str(e)[:200]}"

    logger.warning("Webhook %s left pending: %s", webhook_id, error, extra=log_extra)
    await db.execute(
        update(IncomeWebhook)
        .where(IncomeWebhook.id == webhook_id)
        .values(error_message=error, updated_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return False


async def list_webhooks(
    db: AsyncSession,
    status: Optional[str] = None,
    source_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Newest-first page of webhooks plus the total matching count."""
    conditions = []
    if status:
        conditions.append(IncomeWebhook.status == status)
    if source_id:
        conditions.append(IncomeWebhook.source_id == source_id)
    if date_from:
        conditions.append(IncomeWebhook.created_at >= date_from)
    if date_to:
        conditions.append(IncomeWebhook.created_at <= date_to)

    count_query = select(func.count(IncomeWebhook.id))
    query = select(IncomeWebhook)
    if conditions:
        count_query = count_query.where(and_(*conditions))
        query = query.where(and_(*conditions))

    total = (await db.execute(count_query)).scalar() or 0

    query = (
        query.order_by(IncomeWebhook.created_at.desc(), IncomeWebhook.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await db.execute(query)).scalars().all()

    return {"data": list(rows), "total": total, "page": page, "page_size": page_size}


async def get_webhook(db: AsyncSession, webhook_id: int) -> Optional[IncomeWebhook]:
    result = await db.execute(select(IncomeWebhook).where(IncomeWebhook.id == webhook_id))
    return result.scalar_one_or_none()


async def count_pending(db: AsyncSession, source_id: Optional[int] = None) -> int:
    query = select(func.count(IncomeWebhook.id)).where(IncomeWebhook.status == "pending")
    if source_id:
        query = query.where(IncomeWebhook.source_id == source_id)
    return (await db.execute(query)).scalar() or 0
