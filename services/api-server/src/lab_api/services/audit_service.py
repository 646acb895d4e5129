"""Append-only audit sink backed by the audit_logs table."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from lab_api.db.models import AuditLog

logger = logging.getLogger(__name__)


async def append_entry(
    db: AsyncSession,
    actor_user_id: int | None,
    action: str,
    target_type: str,
    target_id: str | int | None,
    meta: dict | None = None,
) -> None:
    """Add one audit row to the caller's transaction."""
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            meta=meta,
        )
    )
    await db.flush()


async def record_action(
    db: AsyncSession,
    actor_user_id: int | None,
    action: str,
    target_type: str,
    target_id: str | int | None,
    meta: dict | None = None,
) -> bool:
    """Write an audit entry in its own transaction without ever raising.

    Audit is best effort: a failing sink is logged and must not undo the
    action being audited. Returns True when the entry was stored.
    """
    try:
        async with db.begin():
            await append_entry(db, actor_user_id, action, target_type, target_id, meta)
    except Exception:
        logger.exception("Failed to write audit entry %s for %s %s", action, target_type, target_id)
        return False
    return True
