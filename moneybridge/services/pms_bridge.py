"""
PMS bridge - pulls monthly branch revenue from the PMS and upserts it into
the income webhook inbox as pending rows.

Each (branch, month) maps to one synthetic webhook keyed pms_{branch_id}_{YYYY-MM},
so re-running a month in progress updates the row instead of duplicating it.
PMS rows are never auto-confirmed.
"""
import calendar
import logging
import secrets
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.integrations.pms import (
    PmsMonthlyRevenue,
    PmsUnavailableError,
    check_pms_connection,
    fetch_monthly_revenues,
    month_bounds,
)
from moneybridge.models.income_source import IncomeSource
from moneybridge.models.income_webhook import IncomeWebhook
from moneybridge.models.ledger import PaymentItem
from moneybridge.services.income_webhooks import count_pending, increment_source_stats
from moneybridge.utils.encryption import encrypt_value

logger = logging.getLogger(__name__)

PMS_SOURCE_KEY = "pms-bridge"
PMS_SOURCE_NAME = "浯島 PMS 績效管理系統"
AMOUNT_TOLERANCE = Decimal("0.01")

# Drift comparison thresholds
MIN_LEDGER_RECORDS = 10
MATCH_THRESHOLD = Decimal("1000")


def current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def build_external_id(branch_id: int, month: str) -> str:
    return f"pms_{branch_id}_{month}"


def last_day_of_month(month: str) -> date:
    year, mon = int(month[:4]), int(month[5:7])
    return date(year, mon, calendar.monthrange(year, mon)[1])


def build_raw_payload(rev: PmsMonthlyRevenue) -> dict:
    return {
        "source": "pms-bridge",
        "branch_id": rev.branch_id,
        "branch_name": rev.branch_name,
        "branch_code": rev.branch_code,
        "month": rev.month,
        "last_entry_date": rev.last_entry_date.isoformat(),
        "revenue": str(rev.revenue) if rev.revenue is not None else None,
        "date": last_day_of_month(rev.month).isoformat(),
    }


def build_description(rev: PmsMonthlyRevenue) -> str:
    return f"PMS 月度收入 {rev.month} - {rev.branch_name}（{rev.branch_code or '-'}）"


def _to_amount(value) -> Optional[Decimal]:
    """Positive finite Decimal or None."""
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount.quantize(Decimal("0.01"))


async def ensure_pms_bridge_source(db: AsyncSession) -> int:
    """Return the bridge source id, creating the source on first use."""
    result = await db.execute(
        select(IncomeSource.id).where(IncomeSource.source_key == PMS_SOURCE_KEY)
    )
    source_id = result.scalar_one_or_none()
    if source_id is not None:
        return source_id

    source = IncomeSource(
        source_name=PMS_SOURCE_NAME,
        source_key=PMS_SOURCE_KEY,
        source_type="custom_api",
        description="PMS 每月最後一筆累計營收（自動同步）",
        auth_type="token",
        # Pull-only source; nobody is ever given this token
        api_token=encrypt_value(secrets.token_urlsafe(32)),
        allowed_ips=[],
        field_mapping={},
        default_currency="TWD",
        is_active=True,
        auto_confirm=False,
    )
    db.add(source)
    await db.flush()
    await db.commit()
    logger.info("PMS bridge source created", extra={"source_id": source.id, "source_key": PMS_SOURCE_KEY})
    return source.id


async def sync_pms_revenues(
    db: AsyncSession,
    start_month: str,
    end_month: str,
) -> dict:
    """
    Upsert one pending webhook per (branch, month).

    Returns counters: synced (inserted), updated (amount changed), skipped
    (unchanged, or already reviewed and therefore locked), errors.
    """
    month_bounds(start_month, end_month)
    revenues, _ = await fetch_monthly_revenues(start_month, end_month)
    source_id = await ensure_pms_bridge_source(db)

    result = {
        "synced": 0,
        "updated": 0,
        "skipped": 0,
        "errors": 0,
        "period": {"start_month": start_month, "end_month": end_month},
        "source_id": source_id,
        "details": [],
    }
    log_extra = {"source_id": source_id, "period": f"{start_month}..{end_month}"}

    for rev in revenues:
        amount = _to_amount(rev.revenue)
        if amount is None:
            continue

        external_id = build_external_id(rev.branch_id, rev.month)
        paid_at = datetime.combine(last_day_of_month(rev.month), time.min, tzinfo=timezone.utc)

        try:
            existing = (await db.execute(
                select(IncomeWebhook).where(
                    and_(
                        IncomeWebhook.source_id == source_id,
                        IncomeWebhook.external_transaction_id == external_id,
                    )
                )
            )).scalar_one_or_none()

            if existing is not None:
                previous = Decimal(existing.parsed_amount_twd or 0)
                if abs(previous - amount) <= AMOUNT_TOLERANCE:
                    result["skipped"] += 1
                    continue

                if existing.status != "pending":
                    result["skipped"] += 1
                    result["details"].append({
                        "month": rev.month,
                        "branch": rev.branch_name,
                        "amount": str(amount),
                        "action": f"locked ({existing.status}, PMS now {amount})",
                    })
                    logger.warning(
                        "PMS revenue changed for reviewed webhook %s (%s -> %s)",
                        existing.id, previous, amount,
                        extra={**log_extra, "webhook_id": existing.id},
                    )
                    continue

                existing.parsed_amount = amount
                existing.parsed_amount_twd = amount
                existing.parsed_paid_at = paid_at
                existing.parsed_description = build_description(rev)
                existing.raw_payload = build_raw_payload(rev)
                existing.updated_at = datetime.now(timezone.utc)
                await db.commit()

                result["updated"] += 1
                result["details"].append({
                    "month": rev.month,
                    "branch": rev.branch_name,
                    "amount": str(amount),
                    "action": f"updated ({previous} -> {amount})",
                })
                continue

            db.add(IncomeWebhook(
                source_id=source_id,
                external_transaction_id=external_id,
                status="pending",
                raw_payload=build_raw_payload(rev),
                parsed_amount=amount,
                parsed_amount_twd=amount,
                parsed_currency="TWD",
                parsed_paid_at=paid_at,
                parsed_payer_name=rev.branch_name,
                parsed_description=build_description(rev),
            ))
            await increment_source_stats(db, source_id)
            await db.commit()

            result["synced"] += 1
            result["details"].append({
                "month": rev.month,
                "branch": rev.branch_name,
                "amount": str(amount),
                "action": "synced",
            })
        except SQLAlchemyError as e:
            await db.rollback()
            result["errors"] += 1
            logger.error("PMS sync failed for %s: %s", external_id, str(e), extra=log_extra)

    logger.info(
        "PMS sync %s..%s: synced=%d updated=%d skipped=%d errors=%d",
        start_month, end_month,
        result["synced"], result["updated"], result["skipped"], result["errors"],
        extra=log_extra,
    )
    return result


def summarize_by_month(revenues: list[PmsMonthlyRevenue]) -> list[dict]:
    totals: dict[str, dict] = {}
    for rev in revenues:
        amount = _to_amount(rev.revenue) or Decimal("0")
        entry = totals.setdefault(rev.month, {"total": Decimal("0"), "branches": set()})
        entry["total"] += amount
        entry["branches"].add(rev.branch_id)
    return [
        {"month": month, "total": str(entry["total"]), "branches": len(entry["branches"])}
        for month, entry in sorted(totals.items())
    ]


async def preview_pms_revenues(start_month: str, end_month: str) -> dict:
    """Read-only view of what a sync would write."""
    revenues, branches = await fetch_monthly_revenues(start_month, end_month)
    return {
        "start_month": start_month,
        "end_month": end_month,
        "summary": summarize_by_month(revenues),
        "branches": [b.to_dict() for b in branches],
        "records": [r.to_dict() for r in revenues],
        "total_records": len(revenues),
    }


async def get_pms_status(db: AsyncSession, pms_configured: bool) -> dict:
    """Configuration, connectivity and inbox counters for the bridge source."""
    source = (await db.execute(
        select(IncomeSource).where(IncomeSource.source_key == PMS_SOURCE_KEY)
    )).scalar_one_or_none()

    status = {
        "configured": pms_configured,
        "connected": False,
        "source_id": source.id if source else None,
        "total_received": source.total_received if source else 0,
        "last_received_at": source.last_received_at.isoformat()
        if source and source.last_received_at else None,
        "pending_count": await count_pending(db, source.id) if source else 0,
        "message": "PMS_DATABASE_URL is not configured",
    }
    if not pms_configured:
        return status

    try:
        await check_pms_connection()
    except PmsUnavailableError as e:
        status["message"] = f"PMS database unreachable: {str(e)[:200]}"
        return status

    status["connected"] = True
    status["message"] = "PMS bridge connection OK"
    return status


def _drift_status(diff: Decimal, ledger_records: int) -> str:
    if ledger_records < MIN_LEDGER_RECORDS:
        return "insufficient_ledger"
    if abs(diff) < MATCH_THRESHOLD:
        return "match"
    return "pms_higher" if diff > 0 else "ledger_higher"


async def _ledger_monthly_totals(
    db: AsyncSession, start_month: str, end_month: str, pms_source_id: Optional[int],
) -> dict[str, dict]:
    """
    Income recorded in the ledger per month, excluding items that were
    themselves materialized from PMS rows.
    """
    lower, upper = month_bounds(start_month, end_month)
    query = select(PaymentItem.start_date, PaymentItem.total_amount).where(
        and_(
            PaymentItem.item_type == "income",
            PaymentItem.is_deleted == False,
            PaymentItem.start_date >= lower,
            PaymentItem.start_date < upper,
        )
    )
    if pms_source_id is not None:
        pms_items = select(IncomeWebhook.linked_item_id).where(
            and_(
                IncomeWebhook.source_id == pms_source_id,
                IncomeWebhook.linked_item_id.is_not(None),
            )
        )
        query = query.where(PaymentItem.id.not_in(pms_items))

    totals: dict[str, dict] = {}
    for start_date, total_amount in (await db.execute(query)).all():
        month = start_date.strftime("%Y-%m")
        entry = totals.setdefault(month, {"total": Decimal("0"), "records": 0})
        entry["total"] += Decimal(total_amount or 0)
        entry["records"] += 1
    return totals


async def compare_pms_with_ledger(db: AsyncSession, start_month: str, end_month: str) -> dict:
    """Per-month PMS revenue versus independently recorded ledger income."""
    revenues, _ = await fetch_monthly_revenues(start_month, end_month)
    pms_source_id = (await db.execute(
        select(IncomeSource.id).where(IncomeSource.source_key == PMS_SOURCE_KEY)
    )).scalar_one_or_none()
    ledger = await _ledger_monthly_totals(db, start_month, end_month, pms_source_id)

    pms_by_month: dict[str, list[PmsMonthlyRevenue]] = {}
    for rev in revenues:
        pms_by_month.setdefault(rev.month, []).append(rev)

    comparison = []
    for month in sorted(set(pms_by_month) | set(ledger)):
        branch_rows = pms_by_month.get(month, [])
        pms_total = sum((_to_amount(r.revenue) or Decimal("0") for r in branch_rows), Decimal("0"))
        ledger_entry = ledger.get(month, {"total": Decimal("0"), "records": 0})
        ledger_total = ledger_entry["total"]
        ledger_records = ledger_entry["records"]
        diff = pms_total - ledger_total

        diff_pct = None
        if ledger_total > 0 and ledger_records >= MIN_LEDGER_RECORDS:
            diff_pct = round(float(diff / ledger_total * 100), 1)

        comparison.append({
            "month": month,
            "pms": {
                "total": str(pms_total),
                "branches": len({r.branch_id for r in branch_rows}),
                "branch_detail": [
                    {
                        "branch_id": r.branch_id,
                        "branch_name": r.branch_name,
                        "branch_code": r.branch_code,
                        "revenue": str(r.revenue) if r.revenue is not None else None,
                        "last_date": r.last_entry_date.isoformat(),
                    }
                    for r in branch_rows
                ],
            },
            "ledger": {"total": str(ledger_total), "records": ledger_records},
            "diff": str(diff),
            "diff_pct": diff_pct,
            "status": _drift_status(diff, ledger_records),
        })

    return {"start_month": start_month, "end_month": end_month, "comparison": comparison}
