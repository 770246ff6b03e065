"""Session controller.

Coordinates the card selector, the scheduler and the progress aggregator
behind the two client operations: fetch the next card and rate it.

Per-sitting state machine:
    AWAITING_CARD -> CARD_PRESENTED -> RATING_SUBMITTED -> AWAITING_CARD | SESSION_COMPLETE
SESSION_COMPLETE is only reached through the selector's cap/exhaustion signal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from letras.config import utcnow
from letras.database import storage_retrying, translate_errors
from letras.errors import ConflictWriteFailed, NotFound, StaleReview
from letras.models.card import Card
from letras.srs.cursor import CursorStore, SessionCursor, SessionPhase
from letras.srs.memory import Rating
from letras.srs.progress import ProgressAggregator
from letras.srs.scheduler import Scheduler
from letras.srs.selector import CAP_REACHED, EXHAUSTED, CardSelector, Selection

logger = logging.getLogger(__name__)

SESSION_MESSAGES = {
    CAP_REACHED: "¡Muy bien! Terminaste tu sesión de hoy. Vuelve mañana para seguir aprendiendo.",
    EXHAUSTED: "¡Felicidades! Repasaste todas las tarjetas disponibles por ahora.",
}


@dataclass
class NextCard:
    card: Card | None
    is_new: bool = False
    session_complete: bool = False
    message: str | None = None


@dataclass
class ReviewOutcome:
    success: bool
    next_review: datetime
    message: str | None = None


class SessionController:
    """Serves ``get_next_card`` and ``review_card`` for all users.

    One instance is shared by the whole process; per-user state lives in the
    cursor store, never on the controller itself.
    """

    def __init__(
        self,
        selector: CardSelector | None = None,
        scheduler: Scheduler | None = None,
        aggregator: ProgressAggregator | None = None,
        store: CursorStore | None = None,
    ) -> None:
        self.aggregator = aggregator or ProgressAggregator()
        self.selector = selector or CardSelector(policy=self.aggregator.policy)
        self.scheduler = scheduler or Scheduler(aggregator=self.aggregator)
        self.store = store or CursorStore()

    async def get_next_card(
        self,
        db: AsyncSession,
        user_id: str,
        now: datetime | None = None,
    ) -> NextCard:
        """Return the card to show next, or signal that the sitting is complete."""
        now = now or utcnow()
        async with self.store.lock(user_id):
            cursor = self.store.get_or_create(user_id, now)
            async for attempt in storage_retrying():
                with attempt:
                    selection = await self._select(db, user_id, cursor, now)

            if selection.session_complete or selection.card is None:
                cursor.phase = SessionPhase.SESSION_COMPLETE
                self.store.discard(user_id)
                logger.info(
                    "Session complete for user %s (%s) after %d reviews",
                    user_id,
                    selection.reason,
                    cursor.reviews,
                )
                return NextCard(
                    card=None,
                    session_complete=True,
                    message=SESSION_MESSAGES.get(selection.reason or ""),
                )

            cursor.present(selection.card.id, now)
            return NextCard(card=selection.card, is_new=selection.is_new)

    async def review_card(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        rating: int,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """Rate the presented card and return when it is next due.

        A retried or duplicated call for the same card finds no presented card
        and fails with ``StaleReview`` instead of applying the rating twice.
        """
        rating = Rating.parse(rating)
        now = now or utcnow()

        async with self.store.lock(user_id):
            with translate_errors():
                card = await db.get(Card, card_id)
            if card is None:
                raise NotFound(f"Card {card_id} not found")

            cursor = self.store.get(user_id, now)
            if cursor is None or cursor.presented_card_id != card_id:
                logger.warning("Rejected stale review user=%s card=%s", user_id, card_id)
                raise StaleReview()

            try:
                recorded = await self.scheduler.record_review(db, user_id, card_id, rating, now)
            except ConflictWriteFailed:
                cursor.withdraw(now)
                logger.warning("Review conflict user=%s card=%s", user_id, card_id)
                raise

            cursor.record_review(card_id, recorded.was_new, now)
            return ReviewOutcome(success=True, next_review=recorded.next_review)

    async def _select(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: SessionCursor,
        now: datetime,
    ) -> Selection:
        with translate_errors():
            try:
                return await self.selector.next(db, user_id, cursor, now)
            except Exception:
                await db.rollback()
                raise
