"""
Simulate an inbound payment notification against a configured income source.

Usage:
    python scripts/simulate_income_webhook.py --source linepay --token secret-token
    python scripts/simulate_income_webhook.py --source booking --hmac-secret s3cr3t --amount 4200
    python scripts/simulate_income_webhook.py --source linepay --token t --tx-id TX-1 --repeat 2
"""
import argparse
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone

import httpx

from moneybridge.utils.webhook_signatures import compute_hmac_signature

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def build_payload(amount: str, currency: str, tx_id: str, payer: str) -> dict:
    """Nested shape; configure the source with "$.data.*" paths to parse it."""
    return {
        "event": "payment.completed",
        "data": {
            "amount": amount,
            "currency": currency,
            "transaction_id": tx_id,
            "paid_at": datetime.now(timezone.utc).isoformat(),
            "description": f"Test payment {tx_id}",
            "payer": {"name": payer, "email": "payer@example.com"},
            "order_id": f"ORD-{tx_id[-6:]}",
        },
    }


async def send_webhook(
    base_url: str,
    source_key: str,
    payload: dict,
    token: str | None,
    hmac_secret: str | None,
) -> httpx.Response:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if hmac_secret:
        headers["X-Signature"] = compute_hmac_signature(body, hmac_secret)

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/api/income/webhook/{source_key}", content=body, headers=headers,
        )
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate an income webhook delivery")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--source", required=True, help="Income source key")
    parser.add_argument("--token", help="Bearer token configured on the source")
    parser.add_argument("--hmac-secret", help="HMAC secret configured on the source")
    parser.add_argument("--amount", default="1500")
    parser.add_argument("--currency", default="TWD")
    parser.add_argument("--tx-id", default=None, help="Transaction id (random if omitted)")
    parser.add_argument("--payer", default="Test Payer")
    parser.add_argument("--repeat", type=int, default=1, help="Send the same delivery N times")
    args = parser.parse_args()

    tx_id = args.tx_id or f"TX-{uuid.uuid4().hex[:12].upper()}"
    payload = build_payload(args.amount, args.currency, tx_id, args.payer)

    logger.info("Sending %d delivery(ies) of %s to %s...", args.repeat, tx_id, args.source)
    for _ in range(args.repeat):
        await send_webhook(args.base_url, args.source, payload, args.token, args.hmac_secret)


if __name__ == "__main__":
    asyncio.run(main())
