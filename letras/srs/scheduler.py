"""Review scheduler.

Loads a card's memory state, applies the memory model and persists the new
state together with its review event in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from letras.config import utcnow
from letras.database import storage_retrying, translate_errors
from letras.errors import NotFound
from letras.models.card import Card
from letras.models.review_event import ReviewEvent
from letras.models.review_state import ReviewState
from letras.srs.memory import MemoryConfig, MemoryModel, MemoryState, Rating, ReviewResult

if TYPE_CHECKING:
    from letras.srs.progress import ProgressAggregator

logger = logging.getLogger(__name__)


@dataclass
class RecordedReview:
    """Outcome of a persisted review."""

    card_id: str
    rating: Rating
    was_new: bool
    next_review: datetime
    result: ReviewResult
    success: bool = True


def to_memory_state(row: ReviewState) -> MemoryState:
    return MemoryState(
        stability=row.stability,
        difficulty=row.difficulty,
        due_at=row.due_at,
        last_reviewed_at=row.last_reviewed_at,
        review_count=row.review_count,
        lapse_count=row.lapse_count,
    )


class Scheduler:
    """Persists rating outcomes for user-card pairs."""

    def __init__(
        self,
        model: MemoryModel | None = None,
        aggregator: ProgressAggregator | None = None,
        max_attempts: int | None = None,
        retry_wait_seconds: float | None = None,
    ) -> None:
        self.model = model or MemoryModel(MemoryConfig.from_settings())
        self.aggregator = aggregator
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds

    async def record_review(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        rating: int,
        now: datetime | None = None,
    ) -> RecordedReview:
        """Apply a rating and persist the new state and its event atomically.

        Transient storage faults are retried a bounded number of times; each
        attempt starts from a rolled-back session.

        Raises:
            InvalidRating: rating outside 1-4.
            NotFound: unknown card id.
            ConflictWriteFailed: a concurrent writer updated the same state.
            StorageUnavailable: storage still failing after all retries.
        """
        rating = Rating.parse(rating)
        now = now or utcnow()

        async for attempt in storage_retrying(self.max_attempts, self.retry_wait_seconds):
            with attempt:
                recorded = await self._record_once(db, user_id, card_id, rating, now)

        if self.aggregator is not None:
            self.aggregator.invalidate(user_id)

        logger.info(
            "Recorded review user=%s card=%s rating=%d new=%s next=%s (%.2f days)",
            user_id,
            card_id,
            rating,
            recorded.was_new,
            recorded.next_review.isoformat(),
            recorded.result.interval_days,
        )
        return recorded

    async def _record_once(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        rating: Rating,
        now: datetime,
    ) -> RecordedReview:
        with translate_errors():
            try:
                card = await db.get(Card, card_id)
                if card is None:
                    raise NotFound(f"Card {card_id} not found")

                row = await db.get(
                    ReviewState,
                    (user_id, card_id),
                    with_for_update=True,
                    populate_existing=True,
                )
                prior = to_memory_state(row) if row is not None else None
                result = self.model.update(prior, rating, now)
                new_state = result.new_state

                if row is None:
                    row = ReviewState(user_id=user_id, card_id=card_id)
                    db.add(row)
                row.stability = new_state.stability
                row.difficulty = new_state.difficulty
                row.due_at = new_state.due_at
                row.last_reviewed_at = new_state.last_reviewed_at
                row.review_count = new_state.review_count
                row.lapse_count = new_state.lapse_count

                db.add(
                    ReviewEvent(
                        user_id=user_id,
                        card_id=card_id,
                        rating=int(rating),
                        was_new=prior is None,
                        reviewed_at=now,
                        due_at=new_state.due_at,
                        stability_before=prior.stability if prior else None,
                        stability_after=new_state.stability,
                        difficulty_before=prior.difficulty if prior else None,
                        difficulty_after=new_state.difficulty,
                    )
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        return RecordedReview(
            card_id=card_id,
            rating=rating,
            was_new=prior is None,
            next_review=new_state.due_at,
            result=result,
        )
