from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.models.audit_log import AuditLog


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: str,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            details=details,
            ip_address=ip_address,
        )
    )
    await session.flush()
