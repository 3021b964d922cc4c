"""
Income source registry - CRUD over configured webhook sources.

Secrets are encrypted on write and decrypted only when a caller explicitly
needs the plaintext (credential verification, the single-source admin view).
Listing responses always carry masked secrets.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.models.income_source import IncomeSource
from moneybridge.schemas.income import IncomeSourceCreate, IncomeSourceUpdate
from moneybridge.utils.encryption import encrypt_value, decrypt_value, mask_secret

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("api_token", "webhook_secret")


class DuplicateSourceKeyError(ValueError):
    """Raised when a source_key is already taken by another source."""
    pass


async def list_sources(db: AsyncSession) -> list[IncomeSource]:
    result = await db.execute(select(IncomeSource).order_by(IncomeSource.created_at.desc()))
    return list(result.scalars().all())


async def get_source(db: AsyncSession, source_id: int) -> Optional[IncomeSource]:
    result = await db.execute(select(IncomeSource).where(IncomeSource.id == source_id))
    return result.scalar_one_or_none()


async def get_active_source_by_key(db: AsyncSession, source_key: str) -> Optional[IncomeSource]:
    """Inactive sources are indistinguishable from unknown ones."""
    result = await db.execute(
        select(IncomeSource).where(
            and_(IncomeSource.source_key == source_key, IncomeSource.is_active == True)
        )
    )
    return result.scalar_one_or_none()


async def _ensure_key_available(
    db: AsyncSession, source_key: str, exclude_id: Optional[int] = None,
) -> None:
    query = select(IncomeSource.id).where(IncomeSource.source_key == source_key)
    if exclude_id is not None:
        query = query.where(IncomeSource.id != exclude_id)
    result = await db.execute(query)
    if result.scalar_one_or_none() is not None:
        raise DuplicateSourceKeyError(f"Source key '{source_key}' is already in use")


async def create_source(db: AsyncSession, data: IncomeSourceCreate) -> IncomeSource:
    await _ensure_key_available(db, data.source_key)

    values = data.model_dump(exclude={"field_mapping", *SECRET_FIELDS})
    source = IncomeSource(
        **values,
        field_mapping=data.field_mapping.to_storage(),
        api_token=encrypt_value(data.api_token),
        webhook_secret=encrypt_value(data.webhook_secret),
    )
    db.add(source)
    await db.flush()

    logger.info(
        "Income source created: %s (%s)", source.source_key, source.auth_type,
        extra={"source_id": source.id, "source_key": source.source_key},
    )
    return source


async def update_source(
    db: AsyncSession, source_id: int, data: IncomeSourceUpdate,
) -> Optional[IncomeSource]:
    """
    Partial update. Only fields present in the request are touched; sending
    null for a secret clears it.
    """
    source = await get_source(db, source_id)
    if not source:
        return None

    changes = data.model_dump(exclude_unset=True)
    if changes.get("source_key") and changes["source_key"] != source.source_key:
        await _ensure_key_available(db, changes["source_key"], exclude_id=source_id)

    for field, value in changes.items():
        if field in SECRET_FIELDS:
            value = encrypt_value(value)
        elif field == "field_mapping":
            value = data.field_mapping.to_storage() if data.field_mapping else {}
        elif field == "allowed_ips" and value is None:
            value = []
        setattr(source, field, value)

    source.updated_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info(
        "Income source updated: %s fields=%s", source.source_key, sorted(changes.keys()),
        extra={"source_id": source.id, "source_key": source.source_key},
    )
    return source


async def deactivate_source(db: AsyncSession, source_id: int) -> bool:
    """Soft delete. Webhooks keep referencing the row."""
    source = await get_source(db, source_id)
    if not source:
        return False
    source.is_active = False
    source.updated_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info(
        "Income source deactivated: %s", source.source_key,
        extra={"source_id": source.id, "source_key": source.source_key},
    )
    return True


def get_source_secrets(source: IncomeSource) -> tuple[Optional[str], Optional[str]]:
    """Decrypted (api_token, webhook_secret)."""
    return decrypt_value(source.api_token), decrypt_value(source.webhook_secret)


def serialize_source(source: IncomeSource, mask: bool = True) -> dict:
    api_token, webhook_secret = get_source_secrets(source)
    if mask:
        api_token = mask_secret(api_token)
        webhook_secret = mask_secret(webhook_secret)

    return {
        "id": source.id,
        "source_name": source.source_name,
        "source_key": source.source_key,
        "source_type": source.source_type,
        "description": source.description,
        "auth_type": source.auth_type,
        "api_token": api_token,
        "webhook_secret": webhook_secret,
        "allowed_ips": list(source.allowed_ips or []),
        "default_project_id": source.default_project_id,
        "default_category_id": source.default_category_id,
        "field_mapping": dict(source.field_mapping or {}),
        "default_currency": source.default_currency,
        "currency_conversion_enabled": source.currency_conversion_enabled,
        "is_active": source.is_active,
        "auto_confirm": source.auto_confirm,
        "total_received": source.total_received or 0,
        "last_received_at": source.last_received_at,
        "created_at": source.created_at,
        "updated_at": source.updated_at,
    }
