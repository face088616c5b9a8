"""
Claim token tests.

Verifies:
- A fresh token verifies back to its sale id
- Expired always reads as expired, even when the token is also tampered with
- Tampered, foreign and wrong-purpose tokens are invalid
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from cashdesk.services import claim_token_service
from cashdesk.services.claim_token_service import (
    CLAIM_PURPOSE,
    ClaimTokenExpiredError,
    ClaimTokenInvalidError,
)


def _tamper_signature(token: str) -> str:
    header, payload, signature = token.split(".")
    replacement = "A" if signature[0] != "A" else "B"
    return f"{header}.{payload}.{replacement * len(signature)}"


def _encode(payload: dict, secret: str = "test-secret") -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def _now():
    return datetime.now(timezone.utc)


def test_round_trip(app):
    token = claim_token_service.issue(42)
    assert claim_token_service.verify(token) == 42


def test_default_ttl_is_five_minutes(app):
    assert claim_token_service.default_ttl() == timedelta(seconds=300)


def test_expired_token(app):
    token = claim_token_service.issue(42, ttl=timedelta(seconds=-1))
    with pytest.raises(ClaimTokenExpiredError) as exc_info:
        claim_token_service.verify(token)
    assert "expired" in str(exc_info.value).lower()


def test_expired_and_tampered_reads_as_expired(app):
    token = _tamper_signature(claim_token_service.issue(42, ttl=timedelta(seconds=-1)))
    with pytest.raises(ClaimTokenExpiredError):
        claim_token_service.verify(token)


def test_tampered_signature_is_invalid(app):
    token = _tamper_signature(claim_token_service.issue(42))
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


def test_token_signed_with_other_key_is_invalid(app):
    token = _encode(
        {"sale_id": 42, "purpose": CLAIM_PURPOSE, "iat": _now(), "exp": _now() + timedelta(minutes=5)},
        secret="someone-else",
    )
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


def test_wrong_purpose_is_invalid(app):
    token = _encode({"sale_id": 42, "purpose": "password-reset", "iat": _now(), "exp": _now() + timedelta(minutes=5)})
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


def test_missing_expiry_is_invalid(app):
    token = _encode({"sale_id": 42, "purpose": CLAIM_PURPOSE, "iat": _now()})
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


def test_non_integer_sale_id_is_invalid(app):
    token = _encode({"sale_id": "42", "purpose": CLAIM_PURPOSE, "iat": _now(), "exp": _now() + timedelta(minutes=5)})
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


@pytest.mark.parametrize("token", [None, "", "abc", "a.b.c", 12345])
def test_malformed_is_invalid(app, token):
    with pytest.raises(ClaimTokenInvalidError):
        claim_token_service.verify(token)


def test_invalid_message_does_not_leak_sale(app):
    token = _tamper_signature(claim_token_service.issue(777))
    with pytest.raises(ClaimTokenInvalidError) as exc_info:
        claim_token_service.verify(token)
    assert "777" not in str(exc_info.value)
