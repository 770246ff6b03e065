"""Progress aggregation: level mastery, unlocks, streaks and daily counters.

Read-only over ``ReviewState`` and ``ReviewEvent``. The mastery definition and
level gating here are shared with the card selector.
"""

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from letras.config import settings, utcnow
from letras.models.card import Card
from letras.models.level import Level
from letras.models.review_event import ReviewEvent
from letras.models.review_state import ReviewState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MasteryPolicy:
    """A card is mastered once it is both stable and reviewed enough times."""

    stability_days: float = settings.mastery_stability_days
    min_reviews: int = settings.mastery_min_reviews

    def is_mastered(self, stability: float, review_count: int) -> bool:
        return stability > self.stability_days and review_count >= self.min_reviews


@dataclass
class LevelProgress:
    level_id: int
    level_name: str
    description: str
    mastery_threshold: float  # percent
    total_cards: int
    mastered_cards: int
    is_unlocked: bool = False

    @property
    def progress_percentage(self) -> float:
        if self.total_cards == 0:
            return 0.0
        return self.mastered_cards / self.total_cards * 100

    @property
    def meets_threshold(self) -> bool:
        # Cross-multiplied to avoid float noise at the boundary
        if self.total_cards == 0:
            return False
        return self.mastered_cards * 100 >= self.mastery_threshold * self.total_cards


@dataclass
class UserStats:
    today_reviews: int
    total_reviews: int
    current_streak: int
    longest_streak: int
    current_level: int
    level_progress: list[LevelProgress] = field(default_factory=list)


@dataclass
class TodayStats:
    new_cards_today: int
    total_reviews_today: int


def apply_unlocks(levels: list[LevelProgress]) -> list[LevelProgress]:
    """Mark which levels are unlocked.

    The first level is always unlocked; every later level is unlocked only if
    the previous one is unlocked and meets its mastery threshold.
    """
    unlocked = True
    for level in sorted(levels, key=lambda lp: lp.level_id):
        level.is_unlocked = unlocked
        unlocked = unlocked and level.meets_threshold
    return levels


def current_level(levels: list[LevelProgress]) -> int:
    """Return the highest unlocked level id (1 if there are no levels)."""
    unlocked = [lp.level_id for lp in levels if lp.is_unlocked]
    return max(unlocked) if unlocked else 1


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name, falling back to the configured default."""
    for candidate in (name, settings.default_timezone):
        if not candidate:
            continue
        if candidate.upper() == "UTC":
            return UTC
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back to default", candidate)
    return UTC


def local_day(timestamp: datetime, tz: tzinfo) -> date:
    """Calendar day of a naive UTC timestamp in the given timezone."""
    return timestamp.replace(tzinfo=UTC).astimezone(tz).date()


def day_start_utc(now: datetime, tz: tzinfo) -> datetime:
    """Start of the local calendar day containing ``now``, as naive UTC."""
    local_midnight = datetime.combine(local_day(now, tz), datetime.min.time(), tzinfo=tz)
    return local_midnight.astimezone(UTC).replace(tzinfo=None)


def current_streak(days: Iterable[date], today: date) -> int:
    """Consecutive active days counting back from ``today``."""
    active = set(days)
    streak = 0
    day = today
    while day in active:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(days: Iterable[date]) -> int:
    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(set(days)):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


async def load_level_progress(
    db: AsyncSession,
    user_id: str,
    policy: MasteryPolicy | None = None,
) -> list[LevelProgress]:
    """Load per-level totals and mastered counts for a user, with unlocks applied."""
    policy = policy or MasteryPolicy()

    levels = (await db.execute(select(Level).order_by(Level.id.asc()))).scalars().all()

    totals_stmt = select(Card.level_id, func.count(Card.id)).group_by(Card.level_id)
    totals = dict((await db.execute(totals_stmt)).tuples().all())

    mastered_stmt = (
        select(Card.level_id, func.count(ReviewState.card_id))
        .select_from(ReviewState)
        .join(Card, Card.id == ReviewState.card_id)
        .where(
            and_(
                ReviewState.user_id == user_id,
                ReviewState.stability > policy.stability_days,
                ReviewState.review_count >= policy.min_reviews,
            )
        )
        .group_by(Card.level_id)
    )
    mastered = dict((await db.execute(mastered_stmt)).tuples().all())

    progress = [
        LevelProgress(
            level_id=level.id,
            level_name=level.name,
            description=level.description,
            mastery_threshold=level.mastery_threshold,
            total_cards=totals.get(level.id, 0),
            mastered_cards=mastered.get(level.id, 0),
        )
        for level in levels
    ]
    return apply_unlocks(progress)


async def count_reviews_since(
    db: AsyncSession,
    user_id: str,
    since: datetime,
    new_only: bool = False,
) -> int:
    conditions = [ReviewEvent.user_id == user_id, ReviewEvent.reviewed_at >= since]
    if new_only:
        conditions.append(ReviewEvent.was_new.is_(True))
    stmt = select(func.count(ReviewEvent.id)).where(and_(*conditions))
    return (await db.execute(stmt)).scalar() or 0


class ProgressAggregator:
    """Computes user statistics with a short-lived per-user cache.

    The scheduler calls ``invalidate`` after every recorded review so reads
    never lag behind the user's own writes.
    """

    def __init__(
        self,
        policy: MasteryPolicy | None = None,
        cache_ttl_seconds: float = settings.stats_cache_ttl_seconds,
    ) -> None:
        self.policy = policy or MasteryPolicy()
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: dict[tuple[str, str, str], tuple[float, object]] = {}

    def invalidate(self, user_id: str) -> None:
        for key in [k for k in self._cache if k[1] == user_id]:
            del self._cache[key]

    def _cached(self, key: tuple[str, str, str]) -> object | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return value

    def _store(self, key: tuple[str, str, str], value: object) -> None:
        if self.cache_ttl_seconds <= 0:
            return
        now = time.monotonic()
        self.purge_expired(now)
        self._cache[key] = (now + self.cache_ttl_seconds, value)

    def purge_expired(self, now: float | None = None) -> int:
        """Drop expired entries. Returns the number dropped."""
        now = time.monotonic() if now is None else now
        expired = [key for key, (expires_at, _) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]
        return len(expired)

    async def level_progress(self, db: AsyncSession, user_id: str) -> list[LevelProgress]:
        key = ("levels", user_id, "")
        cached = self._cached(key)
        if cached is not None:
            return cached  # type: ignore[return-value]
        progress = await load_level_progress(db, user_id, self.policy)
        self._store(key, progress)
        return progress

    async def stats(
        self,
        db: AsyncSession,
        user_id: str,
        timezone: str | None = None,
        now: datetime | None = None,
    ) -> UserStats:
        """Overall statistics: counters, streaks and per-level progress."""
        tz = resolve_timezone(timezone)
        key = ("stats", user_id, str(tz))
        use_cache = now is None
        cached = self._cached(key) if use_cache else None
        if cached is not None:
            return cached  # type: ignore[return-value]

        if use_cache:
            levels = await self.level_progress(db, user_id)
        else:
            levels = await load_level_progress(db, user_id, self.policy)
        now = now or utcnow()

        timestamps_stmt = select(ReviewEvent.reviewed_at).where(ReviewEvent.user_id == user_id)
        timestamps = (await db.execute(timestamps_stmt)).scalars().all()
        days = {local_day(ts, tz) for ts in timestamps}
        today = local_day(now, tz)
        since = day_start_utc(now, tz)

        stats = UserStats(
            today_reviews=sum(1 for ts in timestamps if ts >= since),
            total_reviews=len(timestamps),
            current_streak=current_streak(days, today),
            longest_streak=longest_streak(days),
            current_level=current_level(levels),
            level_progress=levels,
        )
        if use_cache:
            self._store(key, stats)
        return stats

    async def today_stats(
        self,
        db: AsyncSession,
        user_id: str,
        timezone: str | None = None,
        now: datetime | None = None,
    ) -> TodayStats:
        tz = resolve_timezone(timezone)
        key = ("today", user_id, str(tz))
        use_cache = now is None
        cached = self._cached(key) if use_cache else None
        if cached is not None:
            return cached  # type: ignore[return-value]

        since = day_start_utc(now or utcnow(), tz)
        today = TodayStats(
            new_cards_today=await count_reviews_since(db, user_id, since, new_only=True),
            total_reviews_today=await count_reviews_since(db, user_id, since),
        )
        if use_cache:
            self._store(key, today)
        return today
