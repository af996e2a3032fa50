"""FastAPI dependencies: the rotation engine and verified access-token claims."""

from typing import Annotated

from fastapi import Depends, Request

from sessionguard.config import Settings, settings
from sessionguard.core.errors import AccessTokenExpiredError, InvalidTokenError, TokenVerificationError
from sessionguard.core.tokens import TokenClaims, verify_token
from sessionguard.db.session import async_session_maker
from sessionguard.services.rotation import RotationEngine, TokenConfig

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

_engine: RotationEngine | None = None


def token_config_from_settings(s: Settings) -> TokenConfig:
    return TokenConfig(
        access_secret=s.jwt_secret,
        refresh_secret=s.jwt_refresh_secret,
        access_ttl=s.access_token_expires_in,
        refresh_ttl=s.refresh_token_expires_in,
        algorithm=s.jwt_algorithm,
        retention_days=s.session_retention_days,
    )


def get_rotation_engine() -> RotationEngine:
    """Process-wide engine (lazy). Tests override this dependency."""
    global _engine
    if _engine is None:
        _engine = RotationEngine(async_session_maker, token_config_from_settings(settings))
    return _engine


def _extract_access_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(ACCESS_COOKIE) or None


async def get_current_claims(
    request: Request,
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
) -> TokenClaims:
    token = _extract_access_token(request)
    if not token:
        raise InvalidTokenError("Not authenticated")
    try:
        claims = verify_token(token, engine.config.access_secret, algorithm=engine.config.algorithm)
    except TokenVerificationError as e:
        if e.expired:
            raise AccessTokenExpiredError() from None
        raise InvalidTokenError() from None
    if not claims.sub.isdigit():
        raise InvalidTokenError()
    return claims
