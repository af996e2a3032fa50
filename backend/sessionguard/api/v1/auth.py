"""Auth: register, login, refresh, logout, me.

Token transport per request: X-Auth-Mode header ("cookie" | "body"), else settings.auth_mode.
"""

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from sessionguard.api.deps import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_current_claims,
    get_rotation_engine,
)
from sessionguard.config import settings
from sessionguard.core.errors import InvalidTokenError
from sessionguard.core.tokens import TokenClaims
from sessionguard.services.rotation import RotationEngine, TokenPair

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

AuthMode = Literal["cookie", "body"]
REFRESH_COOKIE_PATH = "/api/v1/auth"


class RegisterBody(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    name: str = Field(default="", max_length=255)
    password: str = Field(min_length=8, max_length=1024)


class RegisterResponse(BaseModel):
    id: int
    email: str
    name: str
    message: str = "Registration successful"


class LoginBody(BaseModel):
    email: str
    password: str


class RefreshBody(BaseModel):
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int
    refresh_token_expires_in: int | None = None
    token_type: str = "bearer"
    mode: AuthMode


class UserOut(BaseModel):
    id: int
    email: str
    name: str


class MessageResponse(BaseModel):
    message: str


def get_auth_mode(request: Request) -> AuthMode:
    header_mode = request.headers.get("X-Auth-Mode")
    if header_mode in ("cookie", "body"):
        return header_mode
    if header_mode:
        logger.warning("Invalid X-Auth-Mode header %r, falling back to default", header_mode)
    return "body" if settings.auth_mode == "body" else "cookie"


def _set_cookies(response: Response, pair: TokenPair) -> None:
    secure = settings.secure_cookies
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        max_age=pair.access_expires_in,
        path="/",
        secure=secure,
        httponly=True,
        samesite="strict",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=pair.refresh_expires_in,
        path=REFRESH_COOKIE_PATH,
        secure=secure,
        httponly=True,
        samesite="strict",
    )


def _clear_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)


def _token_response(response: Response, pair: TokenPair, mode: AuthMode) -> TokenResponse:
    if mode == "cookie":
        _set_cookies(response, pair)
        return TokenResponse(expires_in=pair.access_expires_in, token_type=pair.token_type, mode="cookie")
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.access_expires_in,
        refresh_token_expires_in=pair.refresh_expires_in,
        token_type=pair.token_type,
        mode="body",
    )


def _refresh_token_from(request: Request, body: RefreshBody | None, mode: AuthMode) -> str | None:
    if mode == "cookie":
        return request.cookies.get(REFRESH_COOKIE)
    return body.refresh_token if body else None


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=201,
    summary="Register a new user",
    responses={409: {"description": "User already exists"}},
)
async def register(
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
    body: RegisterBody,
) -> RegisterResponse:
    identity = await engine.register(body.email, body.name, body.password, timeout=settings.auth_timeout_seconds)
    return RegisterResponse(id=identity.id, email=identity.email, name=identity.name)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={401: {"description": "Invalid credentials"}},
)
async def login(
    request: Request,
    response: Response,
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
    body: LoginBody,
) -> TokenResponse:
    pair = await engine.login(
        body.email,
        body.password,
        ip_address=request.client.host if request.client else None,
        timeout=settings.auth_timeout_seconds,
    )
    return _token_response(response, pair, get_auth_mode(request))


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for a new token pair (rotation)",
    responses={401: {"description": "Refresh token missing, invalid, revoked or expired"}},
)
async def refresh(
    request: Request,
    response: Response,
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
    body: RefreshBody | None = None,
) -> TokenResponse:
    mode = get_auth_mode(request)
    token = _refresh_token_from(request, body, mode)
    if not token:
        logger.warning("Refresh token missing in %s mode", mode)
        raise InvalidTokenError()
    pair = await engine.refresh(token, timeout=settings.auth_timeout_seconds)
    return _token_response(response, pair, mode)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke the supplied refresh token, or all sessions when none is supplied",
    responses={401: {"description": "Not authenticated"}},
)
async def logout(
    request: Request,
    response: Response,
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
    claims: Annotated[TokenClaims, Depends(get_current_claims)],
    body: RefreshBody | None = None,
) -> MessageResponse:
    token = _refresh_token_from(request, body, get_auth_mode(request))
    await engine.logout(int(claims.sub), token, timeout=settings.auth_timeout_seconds)
    _clear_cookies(response)
    return MessageResponse(message="Logout successful")


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated or invalid token"}},
)
async def me(
    engine: Annotated[RotationEngine, Depends(get_rotation_engine)],
    claims: Annotated[TokenClaims, Depends(get_current_claims)],
) -> UserOut:
    identity = await engine.current_user(int(claims.sub), timeout=settings.auth_timeout_seconds)
    return UserOut(id=identity.id, email=identity.email, name=identity.name)
