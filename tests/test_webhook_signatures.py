"""
Tests for moneybridge/utils/webhook_signatures.py — token, HMAC and IP checks.
"""
import hashlib
import hmac

from moneybridge.utils.webhook_signatures import (
    compute_hmac_signature,
    extract_bearer_token,
    verify_bearer_token,
    verify_hmac_signature,
    verify_ip_allowlist,
)

BODY = b'{"data":{"amount":"1500","tx":"TX-1"}}'
SECRET = "whsec_test"


def _hex(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestBearerToken:
    def test_matching_token(self):
        assert verify_bearer_token("tok-123", "tok-123") is True

    def test_wrong_token(self):
        assert verify_bearer_token("tok-124", "tok-123") is False

    def test_different_length_token(self):
        """Length mismatch is a plain False, never an exception."""
        assert verify_bearer_token("tok", "tok-123456789") is False

    def test_missing_values(self):
        assert verify_bearer_token(None, "tok-123") is False
        assert verify_bearer_token("tok-123", None) is False
        assert verify_bearer_token("", "") is False

    def test_non_string_input(self):
        assert verify_bearer_token(123, "123") is False

    def test_extract_strips_scheme(self):
        assert extract_bearer_token("Bearer abc") == "abc"
        assert extract_bearer_token("bearer   abc ") == "abc"

    def test_extract_raw_value(self):
        """Senders that omit the scheme still work."""
        assert extract_bearer_token("abc") == "abc"

    def test_extract_empty(self):
        assert extract_bearer_token(None) is None
        assert extract_bearer_token("Bearer ") is None


class TestHmacSignature:
    def test_valid_with_prefix(self):
        assert verify_hmac_signature(BODY, f"sha256={_hex(BODY, SECRET)}", SECRET) is True

    def test_valid_without_prefix(self):
        assert verify_hmac_signature(BODY, _hex(BODY, SECRET), SECRET) is True

    def test_str_payload(self):
        assert verify_hmac_signature(BODY.decode(), _hex(BODY, SECRET), SECRET) is True

    def test_tampered_body(self):
        signature = _hex(BODY, SECRET)
        assert verify_hmac_signature(BODY + b" ", signature, SECRET) is False

    def test_wrong_secret(self):
        assert verify_hmac_signature(BODY, _hex(BODY, "other"), SECRET) is False

    def test_non_hex_signature(self):
        assert verify_hmac_signature(BODY, "sha256=not-hex-at-all", SECRET) is False

    def test_truncated_signature(self):
        assert verify_hmac_signature(BODY, _hex(BODY, SECRET)[:20], SECRET) is False

    def test_missing_secret_or_signature(self):
        assert verify_hmac_signature(BODY, None, SECRET) is False
        assert verify_hmac_signature(BODY, _hex(BODY, SECRET), None) is False

    def test_compute_matches_verify(self):
        header = compute_hmac_signature(BODY, SECRET)
        assert header.startswith("sha256=")
        assert verify_hmac_signature(BODY, header, SECRET) is True


class TestIpAllowlist:
    def test_empty_list_allows_any(self):
        assert verify_ip_allowlist("203.0.113.9", []) is True
        assert verify_ip_allowlist(None, None) is True

    def test_exact_match(self):
        assert verify_ip_allowlist("203.0.113.9", ["203.0.113.9"]) is True
        assert verify_ip_allowlist("203.0.113.10", ["203.0.113.9"]) is False

    def test_cidr_match(self):
        assert verify_ip_allowlist("10.1.2.3", ["10.0.0.0/8"]) is True
        assert verify_ip_allowlist("11.1.2.3", ["10.0.0.0/8"]) is False

    def test_unknown_caller_ip_rejected(self):
        assert verify_ip_allowlist(None, ["10.0.0.0/8"]) is False
        assert verify_ip_allowlist("garbage", ["10.0.0.0/8"]) is False

    def test_malformed_entry_ignored(self):
        assert verify_ip_allowlist("10.1.2.3", ["nonsense", "10.1.2.3"]) is True
        assert verify_ip_allowlist("10.1.2.3", ["nonsense"]) is False

    def test_ipv6(self):
        assert verify_ip_allowlist("2001:db8::1", ["2001:db8::/32"]) is True
