"""
Review workflow for income webhooks.

State machine:
    pending   -> confirmed   (confirm: materializes ledger rows)
    pending   -> rejected    (reject)
    confirmed -> pending     (reprocess)
    rejected  -> pending     (reprocess)

Every operation returns a result dict instead of raising. Failures carry an
error_code the API layer maps to a status: not_found, invalid_state,
amount_unavailable.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.models.income_webhook import IncomeWebhook
from moneybridge.services.ledger import LedgerLink, materialize_webhook

logger = logging.getLogger(__name__)


def _failure(webhook_id: int, error: str, error_code: str) -> dict:
    return {
        "success": False,
        "webhook_id": webhook_id,
        "error": error,
        "error_code": error_code,
    }


async def _load_for_update(db: AsyncSession, webhook_id: int) -> Optional[IncomeWebhook]:
    # Row lock serializes concurrent reviewers of the same webhook on Postgres
    result = await db.execute(
        select(IncomeWebhook).where(IncomeWebhook.id == webhook_id).with_for_update()
    )
    return result.scalar_one_or_none()


def apply_confirmation(
    webhook: IncomeWebhook,
    link: LedgerLink,
    user_id: Optional[int],
    review_note: Optional[str] = None,
) -> None:
    now = datetime.now(timezone.utc)
    webhook.status = "confirmed"
    webhook.linked_item_id = link.payment_item_id
    webhook.linked_record_id = link.payment_record_id
    webhook.reviewed_by_user_id = user_id
    webhook.reviewed_at = now
    webhook.processed_at = now
    webhook.error_message = None
    if review_note is not None:
        webhook.review_note = review_note
    webhook.updated_at = now


async def confirm_webhook(
    db: AsyncSession,
    webhook_id: int,
    user_id: Optional[int],
    project_id: int,
    category_id: Optional[int] = None,
    item_name: Optional[str] = None,
    review_note: Optional[str] = None,
) -> dict:
    """
    Confirm a pending webhook and materialize it into the ledger.
    The caller owns the transaction.
    """
    webhook = await _load_for_update(db, webhook_id)
    if not webhook:
        return _failure(webhook_id, "Webhook not found", "not_found")

    if webhook.status != "pending":
        return _failure(
            webhook_id,
            f"Webhook is already {webhook.status}; only pending webhooks can be confirmed",
            "invalid_state",
        )

    if webhook.parsed_amount is None or not webhook.parsed_amount.is_finite():
        return _failure(
            webhook_id,
            "Webhook has no usable amount; fix the source field mapping and reprocess",
            "amount_unavailable",
        )

    link = await materialize_webhook(
        db, webhook, project_id, category_id=category_id, item_name=item_name,
    )
    apply_confirmation(webhook, link, user_id, review_note)
    await db.flush()

    logger.info(
        "Webhook %s confirmed by user %s", webhook_id, user_id,
        extra={"webhook_id": webhook_id, "user_id": user_id, "source_id": webhook.source_id},
    )
    return {
        "success": True,
        "webhook_id": webhook_id,
        "payment_item_id": link.payment_item_id,
        "payment_record_id": link.payment_record_id,
    }


async def reject_webhook(
    db: AsyncSession,
    webhook_id: int,
    user_id: Optional[int],
    review_note: Optional[str] = None,
) -> dict:
    webhook = await _load_for_update(db, webhook_id)
    if not webhook:
        return _failure(webhook_id, "Webhook not found", "not_found")

    if webhook.status != "pending":
        return _failure(
            webhook_id,
            f"Webhook is already {webhook.status}; only pending webhooks can be rejected",
            "invalid_state",
        )

    now = datetime.now(timezone.utc)
    webhook.status = "rejected"
    webhook.reviewed_by_user_id = user_id
    webhook.reviewed_at = now
    webhook.review_note = review_note
    webhook.updated_at = now
    await db.flush()

    logger.info(
        "Webhook %s rejected by user %s", webhook_id, user_id,
        extra={"webhook_id": webhook_id, "user_id": user_id},
    )
    return {"success": True, "webhook_id": webhook_id, "status": "rejected"}


async def reprocess_webhook(
    db: AsyncSession,
    webhook_id: int,
    user_id: Optional[int] = None,
) -> dict:
    """
    Send a confirmed or rejected webhook back to pending.

    Ledger rows created by an earlier confirmation are left in place; only
    the links are cleared. The warning log below is the trail for manually
    voiding them.
    """
    webhook = await _load_for_update(db, webhook_id)
    if not webhook:
        return _failure(webhook_id, "Webhook not found", "not_found")

    if webhook.status == "pending":
        return _failure(webhook_id, "Webhook is already pending", "invalid_state")

    if webhook.linked_item_id or webhook.linked_record_id:
        logger.warning(
            "Webhook %s reprocessed; ledger item=%s record=%s remain and are now unlinked",
            webhook_id, webhook.linked_item_id, webhook.linked_record_id,
            extra={"webhook_id": webhook_id, "user_id": user_id},
        )

    previous_status = webhook.status
    webhook.status = "pending"
    webhook.reviewed_by_user_id = None
    webhook.reviewed_at = None
    webhook.review_note = None
    webhook.linked_item_id = None
    webhook.linked_record_id = None
    webhook.processed_at = None
    webhook.error_message = None
    webhook.updated_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(
        "Webhook %s reprocessed (%s -> pending)", webhook_id, previous_status,
        extra={"webhook_id": webhook_id, "user_id": user_id},
    )
    return {"success": True, "webhook_id": webhook_id, "status": "pending"}


async def batch_confirm_webhooks(
    db: AsyncSession,
    webhook_ids: list[int],
    user_id: Optional[int],
    project_id: int,
    category_id: Optional[int] = None,
    review_note: Optional[str] = None,
) -> dict:
    """
    Confirm each id in order. Each confirmation commits on its own so one
    failure never undoes another.
    """
    results = []
    for webhook_id in webhook_ids:
        try:
            result = await confirm_webhook(
                db, webhook_id, user_id, project_id,
                category_id=category_id, review_note=review_note,
            )
            if result["success"]:
                await db.commit()
            else:
                await db.rollback()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                "Batch confirm failed for webhook %s: %s", webhook_id, str(e),
                extra={"webhook_id": webhook_id, "user_id": user_id},
            )
            result = _failure(webhook_id, "Database error while confirming", "database_error")
        results.append(result)

    success_count = sum(1 for r in results if r["success"])
    logger.info(
        "Batch confirm: %d succeeded, %d failed", success_count, len(results) - success_count,
        extra={"user_id": user_id},
    )
    return {
        "results": results,
        "success_count": success_count,
        "fail_count": len(results) - success_count,
    }
