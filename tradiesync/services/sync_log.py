"""Sync Log: append-only record of each sync attempt."""

import logging
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.models.sync_log import SyncLogEntry

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LENGTH = 500


def record(
    db: AsyncSession,
    user_id: str,
    provider: str,
    entity_type: str,
    entity_id: str,
    direction: str,
    status: str,
    error_message: Optional[str] = None,
) -> SyncLogEntry:
    """
    Stage a log entry on the session.

    Nothing is flushed here; the entry is written with the caller's next
    commit, alongside the row update it describes.
    """
    entry = SyncLogEntry(
        user_id=user_id,
        provider=provider,
        entity_type=entity_type,
        entity_id=str(entity_id),
        sync_direction=direction,
        sync_status=status,
        error_message=error_message[:ERROR_MESSAGE_LENGTH] if error_message else None,
    )
    db.add(entry)
    return entry


async def recent(
    db: AsyncSession,
    user_id: str,
    provider: Optional[str] = None,
    limit: int = 50,
) -> Sequence[SyncLogEntry]:
    """Newest entries first."""
    query = select(SyncLogEntry).where(SyncLogEntry.user_id == user_id)
    if provider:
        query = query.where(SyncLogEntry.provider == provider)
    query = query.order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc()).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()
