import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from carealert.models.notification import RateLimitCounter
from carealert.utils.timeutils import utc_now, ensure_utc, start_of_day

logger = logging.getLogger(__name__)

SMS_DAILY_KEY = "sms:daily"
EMAIL_DAILY_KEY = "email:daily"

def sensor_cooldown_key(user_id) -> str:
    return f"sensor_cooldown:{user_id}"

@dataclass
class QuotaStatus:
    key: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

class RateLimiter:
    """
    Daily quotas and cooldowns kept in the database, so every instance
    sees one count and a restart does not reset it.

    A counter belongs to the day starting at `period_start`; when the
    current local day starts later, the count rolls over to zero.
    """

    def __init__(self, tz_name: Optional[str] = None):
        self.tz_name = tz_name

    async def _load(self, db: AsyncSession, key: str, now: datetime) -> RateLimitCounter:
        result = await db.execute(
            select(RateLimitCounter)
            .where(RateLimitCounter.key == key)
            .with_for_update()
        )
        counter = result.scalar_one_or_none()
        period_start = start_of_day(now, self.tz_name)

        if counter is None:
            counter = RateLimitCounter(key=key, period_start=period_start, count=0)
            db.add(counter)
        elif ensure_utc(counter.period_start) < period_start:
            logger.info(f"Rate limit counter {key} reset for new day")
            counter.period_start = period_start
            counter.count = 0

        return counter

    async def try_acquire(
        self,
        db: AsyncSession,
        key: str,
        limit: int,
        now: Optional[datetime] = None
    ) -> bool:
        """Consume one unit of today's quota; False when it is used up"""
        counter = await self._load(db, key, now or utc_now())

        if counter.count >= limit:
            logger.warning(f"Daily limit reached for {key} ({counter.count}/{limit})")
            await db.flush()
            return False

        counter.count += 1
        counter.last_hit_at = now or utc_now()
        await db.flush()
        return True

    async def release(self, db: AsyncSession, key: str, now: Optional[datetime] = None):
        """Give back a unit taken by try_acquire, e.g. after a failed send"""
        counter = await self._load(db, key, now or utc_now())
        if counter.count > 0:
            counter.count -= 1
        await db.flush()

    async def exhaust(self, db: AsyncSession, key: str, limit: int, now: Optional[datetime] = None):
        """Mark today's quota as used up, e.g. when the provider reports its own limit"""
        counter = await self._load(db, key, now or utc_now())
        counter.count = max(counter.count, limit)
        await db.flush()

    async def status(
        self,
        db: AsyncSession,
        key: str,
        limit: int,
        now: Optional[datetime] = None
    ) -> QuotaStatus:
        counter = await self._load(db, key, now or utc_now())
        await db.flush()
        return QuotaStatus(key=key, used=counter.count, limit=limit)

    async def in_cooldown(
        self,
        db: AsyncSession,
        key: str,
        window: timedelta,
        now: Optional[datetime] = None
    ) -> bool:
        result = await db.execute(
            select(RateLimitCounter).where(RateLimitCounter.key == key)
        )
        counter = result.scalar_one_or_none()
        if counter is None or counter.last_hit_at is None:
            return False

        return (now or utc_now()) - ensure_utc(counter.last_hit_at) < window

    async def touch(self, db: AsyncSession, key: str, now: Optional[datetime] = None):
        """Start a cooldown window at `now`"""
        now = now or utc_now()
        counter = await self._load(db, key, now)
        counter.count += 1
        counter.last_hit_at = now
        await db.flush()

rate_limiter = RateLimiter()
