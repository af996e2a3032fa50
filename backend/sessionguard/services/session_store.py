"""Session store: refresh-token fingerprints per user, with revocation and expiry.

claim() is the concurrency control for rotation. It is a single conditional
UPDATE ... WHERE revoked = false; the database decides which of several racing
requests wins, and every other request sees zero matched rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.models.refresh_session import RefreshSession

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user_id: int, token_hash: str, expires_at: datetime) -> RefreshSession:
        row = RefreshSession(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            revoked=False,
            created_at=_utcnow(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def _revoke_where(self, *conditions) -> int:
        result = await self._session.execute(
            update(RefreshSession)
            .where(RefreshSession.revoked.is_(False), *conditions)
            .values(revoked=True, revoked_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def claim(self, user_id: int, token_hash: str) -> bool:
        """Revoke the active record for this fingerprint. True only for the one caller that flipped it."""
        return await self.revoke(user_id, token_hash) == 1

    async def revoke(self, user_id: int, token_hash: str) -> int:
        """Revoke one record owned by user_id. Unknown or already revoked is a no-op (returns 0)."""
        return await self._revoke_where(RefreshSession.token_hash == token_hash, RefreshSession.user_id == user_id)

    async def revoke_all(self, user_id: int) -> int:
        return await self._revoke_where(RefreshSession.user_id == user_id)

    async def purge_expired(
        self,
        *,
        user_id: int | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        now: datetime | None = None,
    ) -> int:
        """Delete records whose expires_at is older than the retention window (one user, or everyone)."""
        cutoff = (now or _utcnow()) - timedelta(days=retention_days)
        stmt = delete(RefreshSession).where(RefreshSession.expires_at < cutoff)
        if user_id is not None:
            stmt = stmt.where(RefreshSession.user_id == user_id)
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        deleted = result.rowcount or 0
        if deleted:
            logger.debug("Purged %s expired session records (user_id=%s)", deleted, user_id)
        return deleted

    async def get(self, token_hash: str) -> RefreshSession | None:
        r = await self._session.execute(select(RefreshSession).where(RefreshSession.token_hash == token_hash))
        return r.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> list[RefreshSession]:
        r = await self._session.execute(
            select(RefreshSession).where(RefreshSession.user_id == user_id).order_by(RefreshSession.id)
        )
        return list(r.scalars().all())
