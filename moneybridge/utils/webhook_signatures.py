"""
Webhook credential verification - bearer tokens, HMAC-SHA256 signatures, IP allowlists.

All checks return a plain bool and never raise, so the ingestion engine can
always produce a uniform accept/reject decision.
"""
import hashlib
import hmac
import ipaddress
import logging
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def verify_bearer_token(token: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of a presented bearer token against the stored one."""
    if not isinstance(token, str) or not isinstance(expected, str):
        return False
    if not token or not expected:
        return False
    try:
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
    except Exception as e:
        logger.error("Bearer token comparison error: %s", str(e))
        return False


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Strip an optional 'Bearer ' scheme prefix from an Authorization header value."""
    if not authorization:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        value = rest.strip()
    return value or None


def verify_hmac_signature(
    payload: Union[bytes, str],
    signature_header: Optional[str],
    secret: Optional[str],
) -> bool:
    """
    Validate an HMAC-SHA256 signature over the raw request body.
    Accepts the hex digest with or without a "sha256=" prefix.
    Returns False for non-hex or wrong-length signatures.
    """
    if not secret or not signature_header:
        return False

    sig = signature_header.strip()
    if sig.startswith(SIGNATURE_PREFIX):
        sig = sig[len(SIGNATURE_PREFIX):]

    body = payload.encode("utf-8") if isinstance(payload, str) else payload

    try:
        provided = bytes.fromhex(sig)
        expected = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).digest()
        return hmac.compare_digest(expected, provided)
    except (ValueError, TypeError):
        return False
    except Exception as e:
        logger.error("HMAC-SHA256 validation error: %s", str(e))
        return False


def compute_hmac_signature(payload: Union[bytes, str], secret: str) -> str:
    """Compute the "sha256=<hex>" header value a sender would attach."""
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_ip_allowlist(ip: Optional[str], allowed_ips: Optional[Iterable[str]]) -> bool:
    """
    Check a caller IP against an allowlist of addresses or CIDR networks.

    An empty allowlist allows any IP. Sources without static egress addresses
    (hosted payment platforms) rely on this; the trade-off is that such
    sources are protected by token/signature checks alone.
    """
    entries = [e for e in (allowed_ips or []) if e]
    if not entries:
        return True
    if not ip:
        return False

    try:
        caller = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False

    for entry in entries:
        try:
            if "/" in entry:
                if caller in ipaddress.ip_network(entry, strict=False):
                    return True
            elif caller == ipaddress.ip_address(entry.strip()):
                return True
        except ValueError:
            logger.warning("Ignoring malformed allowlist entry: %s", entry)
    return False
