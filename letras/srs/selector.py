"""Card selection for a user's sitting.

Priority: the card already on screen, then due reviews (most overdue first),
then one new card from the lowest unlocked level in catalog order. Selection
is deterministic; nothing here is random.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from letras.config import settings, utcnow
from letras.models.card import Card
from letras.models.review_state import ReviewState
from letras.srs.cursor import SessionCursor
from letras.srs.progress import (
    MasteryPolicy,
    count_reviews_since,
    day_start_utc,
    load_level_progress,
    resolve_timezone,
)

logger = logging.getLogger(__name__)

CAP_REACHED = "cap_reached"
EXHAUSTED = "exhausted"


@dataclass
class SelectorConfig:
    max_new_per_session: int = settings.max_new_cards_per_session
    max_new_per_day: int = settings.max_new_cards_per_day  # 0 disables
    timezone: str = settings.default_timezone


@dataclass
class Selection:
    """The selector's decision for one ``next`` call."""

    card: Card | None
    is_new: bool = False
    session_complete: bool = False
    reason: str | None = None  # cap_reached or exhausted when complete


class CardSelector:
    def __init__(
        self,
        config: SelectorConfig | None = None,
        policy: MasteryPolicy | None = None,
    ) -> None:
        self.config = config or SelectorConfig()
        self.policy = policy or MasteryPolicy()

    async def next(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: SessionCursor,
        now: datetime | None = None,
    ) -> Selection:
        """Pick the next card to present.

        Cards already rated in this sitting are skipped while anything else is
        eligible; once only those remain, the cursor's history is cleared so
        they can surface again.
        """
        now = now or utcnow()
        levels = await load_level_progress(db, user_id, self.policy)
        unlocked = [lp.level_id for lp in levels if lp.is_unlocked]

        if cursor.presented_card_id is not None:
            presented = await self._still_eligible(db, user_id, cursor.presented_card_id, unlocked, now)
            if presented is not None:
                return presented

        due_cards = await self._due_cards(db, user_id, unlocked, now)
        fresh_due = [card for card in due_cards if card.id not in cursor.reviewed_card_ids]
        if fresh_due:
            logger.debug("User %s: %d due cards, presenting %s", user_id, len(fresh_due), fresh_due[0].id)
            return Selection(card=fresh_due[0])

        cap_reached = await self._new_card_cap_reached(db, user_id, cursor, now)
        if not cap_reached:
            new_card = await self._first_new_card(db, user_id, unlocked)
            if new_card is not None:
                return Selection(card=new_card, is_new=True)

        if due_cards:
            logger.debug("User %s: only repeats left, clearing sitting history", user_id)
            cursor.reviewed_card_ids.clear()
            return Selection(card=due_cards[0])

        return Selection(
            card=None,
            session_complete=True,
            reason=CAP_REACHED if cap_reached else EXHAUSTED,
        )

    async def _still_eligible(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        unlocked: list[int],
        now: datetime,
    ) -> Selection | None:
        card = await db.get(Card, card_id)
        if card is None or card.level_id not in unlocked:
            return None
        state = await db.get(ReviewState, (user_id, card_id))
        if state is None:
            return Selection(card=card, is_new=True)
        if state.due_at <= now:
            return Selection(card=card)
        return None

    async def _due_cards(
        self,
        db: AsyncSession,
        user_id: str,
        unlocked: list[int],
        now: datetime,
    ) -> list[Card]:
        stmt = (
            select(Card)
            .join(ReviewState, ReviewState.card_id == Card.id)
            .where(
                and_(
                    ReviewState.user_id == user_id,
                    ReviewState.due_at <= now,
                    Card.level_id.in_(unlocked),
                )
            )
            .order_by(ReviewState.due_at.asc(), Card.level_id.asc(), Card.position.asc())
        )
        return list((await db.execute(stmt)).scalars().all())

    async def _first_new_card(
        self,
        db: AsyncSession,
        user_id: str,
        unlocked: list[int],
    ) -> Card | None:
        introduced = exists().where(
            and_(ReviewState.user_id == user_id, ReviewState.card_id == Card.id)
        )
        stmt = (
            select(Card)
            .where(and_(Card.level_id.in_(unlocked), ~introduced))
            .order_by(Card.level_id.asc(), Card.position.asc(), Card.id.asc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def _new_card_cap_reached(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: SessionCursor,
        now: datetime,
    ) -> bool:
        if cursor.new_cards_introduced >= self.config.max_new_per_session:
            return True
        if self.config.max_new_per_day <= 0:
            return False
        since = day_start_utc(now, resolve_timezone(self.config.timezone))
        new_today = await count_reviews_since(db, user_id, since, new_only=True)
        return new_today >= self.config.max_new_per_day
