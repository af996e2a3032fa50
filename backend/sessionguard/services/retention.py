"""Periodic retention sweep: delete session records long past their expiry, for all users."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from sessionguard.services.rotation import RotationEngine

logger = logging.getLogger(__name__)


async def purge_expired_sessions(engine: RotationEngine) -> int:
    """Scheduled job. Errors are logged and swallowed so the scheduler keeps running."""
    try:
        deleted = await engine.sweep_expired()
    except SQLAlchemyError as e:
        logger.warning("Session retention sweep failed: %s", e)
        return 0
    if deleted:
        logger.info("Session retention sweep: deleted %s records", deleted)
    return deleted
