"""
Rate Limiting Module

Counts attempts per ``action:identifier`` key inside a trailing window,
using the ``rate_limits`` table as the attempt log so limits hold across
worker processes.

The limiter fails open: if the table is missing or the database errors,
the request is allowed and a warning is logged.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.exceptions import RateLimitError
from tradiesync.models.rate_limit import RateLimitRecord
from tradiesync.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    limited: bool
    remaining: int
    retry_after: Optional[int] = None


class RateLimiter:
    """Database-backed sliding-window limiter."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock

    async def check(
        self,
        db: AsyncSession,
        identifier: str,
        action: str,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """
        Count attempts for ``action:identifier`` within the window.

        When under the limit the attempt is recorded and committed.
        ``retry_after`` is the full window length, not the time until the
        oldest attempt ages out.
        """
        key = f"{action}:{identifier}"
        now = self._clock()
        window_start = now - timedelta(seconds=window_seconds)

        try:
            count = await db.scalar(
                select(func.count())
                .select_from(RateLimitRecord)
                .where(RateLimitRecord.key == key, RateLimitRecord.created_at >= window_start)
            )
            count = count or 0

            if count >= max_requests:
                logger.warning(
                    f"Rate limit exceeded: {action}",
                    extra={"action": action, "count": count, "max_requests": max_requests},
                )
                return RateLimitResult(limited=True, remaining=0, retry_after=window_seconds)

            db.add(RateLimitRecord(key=key, created_at=now))
            await db.commit()
        except SQLAlchemyError as e:
            logger.warning(
                f"Rate limit storage unavailable, allowing request: {type(e).__name__}",
                extra={"action": action},
            )
            await db.rollback()
            return RateLimitResult(limited=False, remaining=max_requests)

        return RateLimitResult(limited=False, remaining=max_requests - count - 1)

    async def enforce(
        self,
        db: AsyncSession,
        identifier: str,
        action: str,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """Like ``check`` but raises RateLimitError (429) when limited."""
        result = await self.check(db, identifier, action, max_requests, window_seconds)
        if result.limited:
            raise RateLimitError(retry_after=result.retry_after or window_seconds)
        return result

    async def prune(self, db: AsyncSession, older_than_seconds: int) -> int:
        """Delete attempt rows older than the retention period. Returns rows removed."""
        cutoff = self._clock() - timedelta(seconds=older_than_seconds)
        try:
            result = await db.execute(delete(RateLimitRecord).where(RateLimitRecord.created_at < cutoff))
            await db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Rate limit prune skipped: {type(e).__name__}")
            await db.rollback()
            return 0
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Pruned {removed} rate limit records")
        return removed

    @staticmethod
    def headers(result: RateLimitResult, max_requests: int) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(max_requests),
            "X-RateLimit-Remaining": str(max(result.remaining, 0)),
        }
        if result.limited and result.retry_after is not None:
            headers["Retry-After"] = str(result.retry_after)
        return headers


rate_limiter = RateLimiter()
