"""JWT issue/verify for access and refresh tokens, token fingerprints and TTL parsing.

All functions take their secret explicitly; nothing here reads settings.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from jose import JWTError, jwt

from sessionguard.core.errors import TokenVerificationError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 900
_TTL_RE = re.compile(r"^(\d+)([smhd])$")
_TTL_MULTIPLIERS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


@dataclass(frozen=True, slots=True)
class TokenClaims:
    sub: str
    email: str
    iat: int
    exp: int


def parse_ttl(value: int | str) -> int:
    """Seconds from an int, a digit-only string, or "<n><s|m|h|d>". Anything else -> 900."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    match = _TTL_RE.match(text)
    if not match:
        logger.warning("Invalid token TTL %r, using default %ss", value, DEFAULT_TTL_SECONDS)
        return DEFAULT_TTL_SECONDS
    return int(match.group(1)) * _TTL_MULTIPLIERS[match.group(2)]


def fingerprint(token: str) -> str:
    """SHA-256 hex of the token string; the only form in which refresh tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _timestamp(now: datetime | None) -> int:
    return int((now or datetime.now(timezone.utc)).timestamp())


def issue_token(
    sub: str | int,
    email: str,
    secret: str,
    ttl: int | str,
    *,
    algorithm: str = "HS256",
    now: datetime | None = None,
) -> str:
    iat = _timestamp(now)
    payload = {
        "sub": str(sub),
        "email": email,
        "iat": iat,
        "exp": iat + parse_ttl(ttl),
        # Random nonce: two tokens minted in the same second must not share a fingerprint
        "jti": uuid.uuid4().hex,
    }
    result = jwt.encode(payload, secret, algorithm=algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def verify_token(
    token: str,
    secret: str,
    *,
    algorithm: str = "HS256",
    now: datetime | None = None,
) -> TokenClaims:
    """Return claims or raise TokenVerificationError. A token is expired from its exp instant onward."""
    if not token or not isinstance(token, str):
        raise TokenVerificationError(TokenVerificationError.INVALID)
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"verify_exp": False, "verify_aud": False},
        )
    except JWTError as e:
        logger.debug("Token signature/format check failed: %s", type(e).__name__)
        raise TokenVerificationError(TokenVerificationError.INVALID) from None
    try:
        claims = TokenClaims(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError):
        raise TokenVerificationError(TokenVerificationError.INVALID) from None
    if not claims.sub:
        raise TokenVerificationError(TokenVerificationError.INVALID)
    if _timestamp(now) >= claims.exp:
        raise TokenVerificationError(TokenVerificationError.EXPIRED)
    return claims
