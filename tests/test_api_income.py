"""
Tests for moneybridge/api/income.py - receiver endpoint and admin handlers.

Handlers are called directly with a mock Request and the SQLite session,
the same way FastAPI would call them after dependency resolution.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from moneybridge.api.income import (
    _client_ip,
    _raise_for_result,
    delete_source,
    get_source_detail,
    get_sources,
    get_webhooks,
    post_confirm,
    post_reject,
    post_reprocess,
    receive_income_webhook,
)
from moneybridge.models import IncomeSource, IncomeWebhook
from moneybridge.schemas.income import ConfirmWebhookRequest, RejectWebhookRequest
from moneybridge.services.pms_bridge import PMS_SOURCE_KEY, ensure_pms_bridge_source

USER_ID = 3


def _make_request(*, headers: dict | None = None, body: bytes = b"", client_host: str = "127.0.0.1"):
    """Mock Request exposing the fields the receiver reads."""
    req = MagicMock()
    req.client = MagicMock()
    req.client.host = client_host
    req.headers = headers or {}
    req.body = AsyncMock(return_value=body)
    return req


def _payload(tx: str = "TX-1", amount: str = "1500") -> bytes:
    return json.dumps({"data": {"amount": amount, "tx": tx, "note": "Room 201"}}).encode()


def _body_of(response) -> dict:
    return json.loads(response.body)


class TestClientIp:
    def test_forwarded_first_hop(self):
        req = _make_request(headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"})
        assert _client_ip(req) == "203.0.113.9"

    def test_falls_back_to_peer(self):
        assert _client_ip(_make_request(client_host="198.51.100.2")) == "198.51.100.2"

    def test_no_client(self):
        req = _make_request()
        req.client = None
        assert _client_ip(req) is None


class TestReceiver:
    @pytest.mark.asyncio
    async def test_unknown_source_acknowledged(self, db):
        result = await receive_income_webhook("nope", _make_request(body=_payload()), db)
        assert result == {"received": True}

    @pytest.mark.asyncio
    async def test_inactive_source_acknowledged(self, db, make_source):
        await make_source(is_active=False)
        result = await receive_income_webhook("linepay", _make_request(body=_payload()), db)
        assert result == {"received": True}

    @pytest.mark.asyncio
    async def test_pms_bridge_key_ignored(self, db):
        source_id = await ensure_pms_bridge_source(db)
        headers = {"authorization": f"Bearer pms-bridge-internal-{PMS_SOURCE_KEY}"}

        result = await receive_income_webhook(PMS_SOURCE_KEY, _make_request(headers=headers, body=_payload()), db)

        assert result == {"received": True}
        assert (await db.execute(select(func.count(IncomeWebhook.id)))).scalar() == 0
        source = await db.get(IncomeSource, source_id)
        assert source.total_received == 0

    @pytest.mark.asyncio
    async def test_invalid_json(self, db, make_source):
        await make_source()
        req = _make_request(headers={"authorization": "Bearer tok-123"}, body=b"{not json")
        response = await receive_income_webhook("linepay", req, db)
        assert response.status_code == 400
        assert _body_of(response) == {"error": "Invalid JSON body"}

    @pytest.mark.asyncio
    async def test_bad_token_unauthorized(self, db, make_source):
        await make_source()
        req = _make_request(headers={"authorization": "Bearer wrong"}, body=_payload())
        response = await receive_income_webhook("linepay", req, db)
        assert response.status_code == 401
        assert _body_of(response) == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_accepted_then_duplicate(self, db, make_source):
        await make_source()
        headers = {"authorization": "Bearer tok-123"}

        first = await receive_income_webhook("linepay", _make_request(headers=headers, body=_payload()), db)
        second = await receive_income_webhook("linepay", _make_request(headers=headers, body=_payload()), db)

        assert first["received"] is True
        assert "duplicate" not in first
        assert second == {"received": True, "duplicate": True, "id": first["id"]}

        webhook = await db.get(IncomeWebhook, first["id"])
        assert webhook.request_headers["authorization"] == "[REDACTED]"

    @pytest.mark.asyncio
    async def test_timeout_answers_503(self, db, make_source, settings_env):
        settings_env(WEBHOOK_TIMEOUT_SECONDS="0.01")
        await make_source()

        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)

        with patch("moneybridge.api.income.receive_webhook", side_effect=_slow):
            response = await receive_income_webhook(
                "linepay", _make_request(headers={"authorization": "Bearer tok-123"}, body=_payload()), db,
            )

        assert response.status_code == 503


class TestRaiseForResult:
    def test_success_passes(self):
        _raise_for_result({"success": True})

    @pytest.mark.parametrize("code,status", [
        ("not_found", 404),
        ("invalid_state", 400),
        ("amount_unavailable", 400),
        ("database_error", 400),
    ])
    def test_error_codes(self, code, status):
        with pytest.raises(HTTPException) as exc_info:
            _raise_for_result({"success": False, "error_code": code, "error": "boom"})
        assert exc_info.value.status_code == status
        assert exc_info.value.detail == "boom"


class TestSourceEndpoints:
    @pytest.mark.asyncio
    async def test_list_is_masked_detail_is_not(self, db, make_source):
        source = await make_source(api_token="tok-abcdef-7890")

        listed = await get_sources(db, USER_ID)
        detail = await get_source_detail(source.id, db, USER_ID)

        assert listed[0].api_token == "****7890"
        assert detail.api_token == "tok-abcdef-7890"

    @pytest.mark.asyncio
    async def test_detail_missing(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await get_source_detail(999, db, USER_ID)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_missing(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await delete_source(999, db, USER_ID)
        assert exc_info.value.status_code == 404


class TestReviewEndpoints:
    @pytest.fixture
    async def pending(self, db, make_source):
        source = await make_source()
        webhook = IncomeWebhook(
            source_id=source.id,
            external_transaction_id="TX-77",
            raw_payload={},
            parsed_amount=1200,
            parsed_amount_twd=1200,
            parsed_currency="TWD",
            status="pending",
        )
        db.add(webhook)
        await db.commit()
        return webhook

    @pytest.mark.asyncio
    async def test_confirm(self, db, pending, project):
        response = await post_confirm(
            pending.id, ConfirmWebhookRequest(project_id=project.id), db, USER_ID,
        )
        assert response.success is True
        assert response.payment_item_id is not None

    @pytest.mark.asyncio
    async def test_confirm_missing_is_404(self, db, project):
        with pytest.raises(HTTPException) as exc_info:
            await post_confirm(999, ConfirmWebhookRequest(project_id=project.id), db, USER_ID)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_reject_without_body(self, db, pending):
        response = await post_reject(pending.id, None, db, USER_ID)
        assert response.status == "rejected"

    @pytest.mark.asyncio
    async def test_reprocess_pending_is_400(self, db, pending):
        with pytest.raises(HTTPException) as exc_info:
            await post_reprocess(pending.id, db, USER_ID)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_reject_then_reprocess(self, db, pending):
        await post_reject(pending.id, RejectWebhookRequest(review_note="test"), db, USER_ID)
        response = await post_reprocess(pending.id, db, USER_ID)
        assert response.status == "pending"

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, db, pending):
        result = await get_webhooks(
            status="pending", source_id=None, date_from=None, date_to=None,
            page=1, page_size=20, db=db, user_id=USER_ID,
        )
        assert result.total == 1
        assert result.data[0].id == pending.id

        result = await get_webhooks(
            status="confirmed", source_id=None, date_from=None, date_to=None,
            page=1, page_size=20, db=db, user_id=USER_ID,
        )
        assert result.total == 0
