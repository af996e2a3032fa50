"""Rotation engine: register, login, refresh (rotation + reuse detection), logout, current user.

Each operation is its own unit of work on a fresh session. Refresh redeems a
token through SessionStore.claim(): the single request whose conditional update
matched mints the next pair; any request that matched nothing is treated as a
replay and revokes every active session of the subject. The mass revocation is
committed before the error is raised, and the error is the same InvalidTokenError
a forged token gets.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionguard.core import metrics
from sessionguard.core.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServiceUnavailableError,
    TokenExpiredError,
    TokenVerificationError,
)
from sessionguard.core.passwords import SecretHasher
from sessionguard.core.tokens import fingerprint, issue_token, parse_ttl, verify_token
from sessionguard.models.user import User
from sessionguard.services.audit import log_action
from sessionguard.services.session_store import DEFAULT_RETENTION_DAYS, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TokenConfig:
    access_secret: str
    refresh_secret: str
    access_ttl: int | str = "15m"
    refresh_ttl: int | str = "7d"
    algorithm: str = "HS256"
    retention_days: int = DEFAULT_RETENTION_DAYS


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds
    token_type: str = "bearer"


@dataclass(frozen=True, slots=True)
class IdentityView:
    id: int
    email: str
    name: str


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationEngine:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        config: TokenConfig,
        hasher: SecretHasher | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._config = config
        self._hasher = hasher or SecretHasher()
        self._access_ttl = parse_ttl(config.access_ttl)
        self._refresh_ttl = parse_ttl(config.refresh_ttl)

    @property
    def config(self) -> TokenConfig:
        return self._config

    @staticmethod
    async def _deadline(aw: Awaitable[T], timeout: float | None) -> T:
        """Cancel the unit of work after `timeout` seconds; the session context rolls it back.

        Persistence failures surface as ServiceUnavailableError, never as driver errors.
        """
        try:
            if timeout is None:
                return await aw
            return await asyncio.wait_for(aw, timeout)
        except SQLAlchemyError as e:
            logger.error("Persistence failure in auth operation: %s", type(e).__name__)
            raise ServiceUnavailableError() from e

    # --- register -------------------------------------------------------------

    async def register(self, email: str, name: str, password: str, *, timeout: float | None = None) -> IdentityView:
        return await self._deadline(self._register(email, name, password), timeout)

    async def _register(self, email: str, name: str, password: str) -> IdentityView:
        email = normalize_email(email)
        logger.info("Registration attempt for email: %s", email)
        password_hash = await self._hasher.hash_async(password)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    r = await session.execute(select(User.id).where(User.email == email))
                    if r.scalar_one_or_none() is not None:
                        logger.warning("Registration failed: email %s already exists", email)
                        raise ConflictError()
                    user = User(email=email, name=(name or "").strip(), password_hash=password_hash)
                    session.add(user)
                    await session.flush()
                    view = IdentityView(id=user.id, email=user.email, name=user.name)
        except IntegrityError as e:
            logger.warning("Registration IntegrityError for %s: %s", email, type(e).__name__)
            raise ConflictError() from None
        logger.info("User registered: id=%s", view.id)
        return view

    # --- login ----------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip_address: str | None = None,
        timeout: float | None = None,
    ) -> TokenPair:
        user_id, pair = await self._deadline(self._login(email, password, ip_address), timeout)
        await self._sweep_user(user_id)
        return pair

    async def _login(self, email: str, password: str, ip_address: str | None) -> tuple[int, TokenPair]:
        email = normalize_email(email)
        logger.info("Login attempt for email: %s", email)
        async with self._session_maker() as session:
            r = await session.execute(select(User).where(User.email == email))
            user = r.scalar_one_or_none()
        if user is None:
            await self._hasher.burn_async(password or "")
            metrics.LOGINS.labels("invalid_credentials").inc()
            logger.warning("Login failed: user not found - %s", email)
            raise InvalidCredentialsError()
        if not await self._hasher.verify_async(user.password_hash, password or ""):
            metrics.LOGINS.labels("invalid_credentials").inc()
            logger.warning("Login failed: invalid password - %s", email)
            raise InvalidCredentialsError()

        new_hash = None
        if self._hasher.needs_rehash(user.password_hash):
            new_hash = await self._hasher.hash_async(password)

        async with self._session_maker() as session:
            async with session.begin():
                if new_hash is not None:
                    await session.execute(update(User).where(User.id == user.id).values(password_hash=new_hash))
                    logger.info("Password digest upgraded for user %s", user.id)
                pair = await self._issue_pair(session, user.id, user.email)
                await log_action(session, user.id, "login", ip_address=ip_address)
        metrics.LOGINS.labels("success").inc()
        logger.info("Login successful: user %s", user.id)
        return user.id, pair

    # --- refresh --------------------------------------------------------------

    async def refresh(self, refresh_token: str, *, timeout: float | None = None) -> TokenPair:
        user_id, pair = await self._deadline(self._refresh(refresh_token), timeout)
        await self._sweep_user(user_id)
        return pair

    async def _refresh(self, refresh_token: str) -> tuple[int, TokenPair]:
        if not refresh_token or not refresh_token.strip():
            metrics.REFRESHES.labels("invalid").inc()
            raise InvalidTokenError()
        refresh_token = refresh_token.strip()
        try:
            claims = verify_token(refresh_token, self._config.refresh_secret, algorithm=self._config.algorithm)
        except TokenVerificationError as e:
            if e.expired:
                metrics.REFRESHES.labels("expired").inc()
                logger.warning("Token refresh failed: token expired")
                raise TokenExpiredError() from None
            metrics.REFRESHES.labels("invalid").inc()
            logger.warning("Token refresh failed: invalid token")
            raise InvalidTokenError() from None
        try:
            user_id = int(claims.sub)
        except ValueError:
            metrics.REFRESHES.labels("invalid").inc()
            raise InvalidTokenError() from None

        token_hash = fingerprint(refresh_token)
        pair: TokenPair | None = None
        revoked = 0
        async with self._session_maker() as session:
            async with session.begin():
                user = await session.get(User, user_id)
                if user is None:
                    metrics.REFRESHES.labels("invalid").inc()
                    logger.warning("Token refresh failed: user %s not found", user_id)
                    raise InvalidTokenError()
                store = SessionStore(session)
                if await store.claim(user_id, token_hash):
                    pair = await self._issue_pair(session, user.id, user.email)
                else:
                    revoked = await store.revoke_all(user_id)
                    await log_action(session, user_id, "refresh_reuse_detected", details={"revoked": revoked})

        if pair is None:
            metrics.REFRESHES.labels("reuse_detected").inc()
            metrics.SESSIONS_REVOKED.labels("reuse_detected").inc(revoked)
            logger.warning(
                "Refresh token reuse detected for user %s: token already used or unknown, %s sessions revoked",
                user_id,
                revoked,
            )
            raise InvalidTokenError()

        metrics.REFRESHES.labels("success").inc()
        metrics.SESSIONS_REVOKED.labels("rotation").inc()
        logger.info("Token refreshed: user %s", user_id)
        return user_id, pair

    # --- logout ---------------------------------------------------------------

    async def logout(self, user_id: int, refresh_token: str | None = None, *, timeout: float | None = None) -> None:
        await self._deadline(self._logout(user_id, refresh_token), timeout)

    async def _logout(self, user_id: int, refresh_token: str | None) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                store = SessionStore(session)
                if refresh_token:
                    action = "logout"
                    revoked = await store.revoke(user_id, fingerprint(refresh_token.strip()))
                else:
                    action = "logout_all"
                    revoked = await store.revoke_all(user_id)
                if revoked:
                    await log_action(session, user_id, action, details={"revoked": revoked})
        metrics.SESSIONS_REVOKED.labels(action).inc(revoked)
        logger.info("Logout (%s) for user %s: %s sessions revoked", action, user_id, revoked)

    # --- current user ---------------------------------------------------------

    async def current_user(self, user_id: int, *, timeout: float | None = None) -> IdentityView:
        return await self._deadline(self._current_user(user_id), timeout)

    async def _current_user(self, user_id: int) -> IdentityView:
        async with self._session_maker() as session:
            r = await session.execute(select(User.id, User.email, User.name).where(User.id == user_id))
            row = r.one_or_none()
        if row is None:
            logger.warning("Get current user failed: user %s not found", user_id)
            raise InvalidTokenError()
        return IdentityView(id=row.id, email=row.email, name=row.name)

    # --- retention ------------------------------------------------------------

    async def sweep_expired(self, *, now: datetime | None = None) -> int:
        """Delete every subject's session records past the retention window."""
        async with self._session_maker() as session:
            async with session.begin():
                deleted = await SessionStore(session).purge_expired(
                    retention_days=self._config.retention_days, now=now
                )
        metrics.SESSIONS_PURGED.inc(deleted)
        return deleted

    async def _sweep_user(self, user_id: int) -> None:
        """Opportunistic per-subject sweep, run after the deadline-bound unit of work; failures are logged."""
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    deleted = await SessionStore(session).purge_expired(
                        user_id=user_id, retention_days=self._config.retention_days
                    )
        except SQLAlchemyError as e:
            logger.warning("Session sweep for user %s failed: %s", user_id, type(e).__name__)
            return
        metrics.SESSIONS_PURGED.inc(deleted)

    async def _issue_pair(self, session: AsyncSession, user_id: int, email: str) -> TokenPair:
        """Mint access + refresh tokens and record the refresh fingerprint as a new active session."""
        now = _utcnow()
        algorithm = self._config.algorithm
        access = issue_token(user_id, email, self._config.access_secret, self._access_ttl, algorithm=algorithm, now=now)
        refresh = issue_token(
            user_id, email, self._config.refresh_secret, self._refresh_ttl, algorithm=algorithm, now=now
        )
        await SessionStore(session).create(user_id, fingerprint(refresh), now + timedelta(seconds=self._refresh_ttl))
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            access_expires_in=self._access_ttl,
            refresh_expires_in=self._refresh_ttl,
        )
