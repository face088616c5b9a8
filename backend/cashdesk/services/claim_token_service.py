# Overview: Issue and verify signed, short-lived sale claim tokens (the checkout QR code).

"""
Claim Token Service

Tokens are JWTs signed with the app SECRET_KEY. Nothing is stored: a token
is valid while its signature checks out, its purpose matches and it has not
expired. Single use comes from the sale itself (only a PENDING sale can be
confirmed), not from a token table.

Outcomes of verify():
- sale id                   -> genuine, unexpired, sale-confirm token
- ClaimTokenExpiredError    -> past its exp, whatever else is wrong with it
- ClaimTokenInvalidError    -> anything else; never says which sale
"""

from __future__ import annotations

from datetime import timedelta, timezone

import jwt
from flask import current_app

from cashdesk.time_utils import utcnow


CLAIM_PURPOSE = "sale-confirm"


class ClaimTokenError(Exception):
    """Base class for claim token failures."""


class ClaimTokenExpiredError(ClaimTokenError):
    """Token was genuine-looking but is past its expiry. Ask for a new code."""

    def __init__(self, message: str = "This code has expired, request a new one"):
        super().__init__(message)


class ClaimTokenInvalidError(ClaimTokenError):
    """Token is malformed, tampered with, or not a sale claim token."""

    def __init__(self, message: str = "Invalid code"):
        super().__init__(message)


def _secret() -> str:
    return current_app.config["SECRET_KEY"]


def _algorithm() -> str:
    return current_app.config.get("CLAIM_TOKEN_ALGORITHM", "HS256")


def default_ttl() -> timedelta:
    return timedelta(seconds=current_app.config.get("CLAIM_TOKEN_TTL_SECONDS", 300))


def issue(sale_id: int, ttl: timedelta | None = None) -> str:
    """Mint a token binding the bearer to one sale for `ttl`."""
    if ttl is None:
        ttl = default_ttl()

    now = utcnow().replace(tzinfo=timezone.utc)
    payload = {
        "sale_id": sale_id,
        "purpose": CLAIM_PURPOSE,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, _secret(), algorithm=_algorithm())


def _is_past_expiry(token: str) -> bool:
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError:
        return False
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return False
    return exp <= utcnow().replace(tzinfo=timezone.utc).timestamp()


def verify(token: str) -> int:
    """
    Return the sale id carried by a valid token.

    Raises ClaimTokenExpiredError or ClaimTokenInvalidError.
    """
    if not token or not isinstance(token, str):
        raise ClaimTokenInvalidError()

    try:
        claims = jwt.decode(
            token,
            _secret(),
            algorithms=[_algorithm()],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise ClaimTokenExpiredError()
    except jwt.InvalidTokenError:
        # Expiry wins over every other defect so a stale code always reads as stale.
        if _is_past_expiry(token):
            raise ClaimTokenExpiredError()
        raise ClaimTokenInvalidError()

    if claims.get("purpose") != CLAIM_PURPOSE:
        raise ClaimTokenInvalidError()

    sale_id = claims.get("sale_id")
    if not isinstance(sale_id, int) or isinstance(sale_id, bool):
        raise ClaimTokenInvalidError()

    return sale_id
