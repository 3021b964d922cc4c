"""
Tests for moneybridge/services/income_sources.py and the source request schemas.
"""
import pytest
from cryptography.fernet import Fernet
from pydantic import ValidationError

from moneybridge.models import IncomeSource
from moneybridge.schemas.income import IncomeSourceCreate, IncomeSourceUpdate
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


def _create_payload(**overrides) -> IncomeSourceCreate:
    data = {
        "sourceName": "Booking.com",
        "sourceKey": "booking",
        "sourceType": "booking",
        "authType": "hmac",
        "webhookSecret": "whsec_abcdef1234",
        "fieldMapping": {"amount": "$.total", "transactionId": "$.reservation_id"},
    }
    data.update(overrides)
    return IncomeSourceCreate.model_validate(data)


class TestSchemas:
    def test_camel_case_accepted(self):
        payload = _create_payload()
        assert payload.source_key == "booking"
        assert payload.field_mapping.to_storage() == {
            "amount": "$.total",
            "transactionId": "$.reservation_id",
        }

    def test_invalid_source_key(self):
        with pytest.raises(ValidationError):
            _create_payload(sourceKey="Has Spaces")

    def test_invalid_auth_type(self):
        with pytest.raises(ValidationError):
            _create_payload(authType="basic")

    def test_invalid_ip_entry(self):
        with pytest.raises(ValidationError):
            _create_payload(allowedIps=["10.0.0.0/8", "not-an-ip"])

    def test_cidr_accepted(self):
        payload = _create_payload(allowedIps=[" 10.0.0.0/8 ", "203.0.113.4"])
        assert payload.allowed_ips == ["10.0.0.0/8", "203.0.113.4"]


class TestCreateSource:
    @pytest.mark.asyncio
    async def test_create_and_fetch(self, db):
        source = await create_source(db, _create_payload())
        await db.commit()

        fetched = await get_source(db, source.id)
        assert fetched.source_key == "booking"
        assert fetched.auth_type == "hmac"
        assert fetched.total_received == 0
        assert fetched.is_active is True

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, db):
        await create_source(db, _create_payload())
        await db.commit()
        with pytest.raises(DuplicateSourceKeyError):
            await create_source(db, _create_payload(sourceName="Other"))

    @pytest.mark.asyncio
    async def test_secrets_encrypted_when_key_configured(self, db, settings_env):
        settings_env(ENCRYPTION_KEY=Fernet.generate_key().decode())

        source = await create_source(db, _create_payload(apiToken="tok-plain-9999"))
        await db.commit()

        assert source.webhook_secret != "whsec_abcdef1234"
        assert source.api_token != "tok-plain-9999"
        full = serialize_source(source, mask=False)
        assert full["webhook_secret"] == "whsec_abcdef1234"
        assert full["api_token"] == "tok-plain-9999"


class TestSerializeSource:
    @pytest.mark.asyncio
    async def test_listing_masks_secrets(self, db, make_source):
        source = await make_source(api_token="tok-abcdef-7890", webhook_secret="sec-1234")

        masked = serialize_source(source)
        assert masked["api_token"] == "****7890"
        assert masked["webhook_secret"] == "****1234"

    @pytest.mark.asyncio
    async def test_absent_secret_stays_none(self, db, make_source):
        source = await make_source(api_token=None)
        assert serialize_source(source)["api_token"] is None


class TestUpdateSource:
    @pytest.mark.asyncio
    async def test_partial_update(self, db, make_source):
        source = await make_source()
        updated = await update_source(
            db, source.id, IncomeSourceUpdate.model_validate({"autoConfirm": True}),
        )
        assert updated.auto_confirm is True
        assert updated.source_name == "LINE Pay"
        assert updated.api_token == "tok-123"

    @pytest.mark.asyncio
    async def test_clearing_a_secret(self, db, make_source):
        source = await make_source()
        updated = await update_source(
            db, source.id, IncomeSourceUpdate.model_validate({"apiToken": None}),
        )
        assert updated.api_token is None

    @pytest.mark.asyncio
    async def test_field_mapping_replaced(self, db, make_source):
        source = await make_source()
        updated = await update_source(
            db, source.id,
            IncomeSourceUpdate.model_validate({"fieldMapping": {"amount": "$.amt"}}),
        )
        assert updated.field_mapping == {"amount": "$.amt"}

    @pytest.mark.asyncio
    async def test_rename_to_taken_key(self, db, make_source):
        await make_source(source_key="jkopay", source_name="JKO")
        source = await make_source()
        with pytest.raises(DuplicateSourceKeyError):
            await update_source(
                db, source.id, IncomeSourceUpdate.model_validate({"sourceKey": "jkopay"}),
            )

    @pytest.mark.asyncio
    async def test_missing_source(self, db):
        assert await update_source(db, 999, IncomeSourceUpdate()) is None


class TestDeactivateSource:
    @pytest.mark.asyncio
    async def test_soft_delete(self, db, make_source):
        source = await make_source()
        assert await deactivate_source(db, source.id) is True
        await db.commit()

        assert await get_active_source_by_key(db, "linepay") is None
        # Row still exists for history
        assert (await get_source(db, source.id)) is not None
        assert len(await list_sources(db)) == 1

    @pytest.mark.asyncio
    async def test_missing_source(self, db):
        assert await deactivate_source(db, 12345) is False

    @pytest.mark.asyncio
    async def test_active_lookup(self, db, make_source):
        await make_source()
        found = await get_active_source_by_key(db, "linepay")
        assert isinstance(found, IncomeSource)
