"""Tests for the review scheduler's persistence and storage error policy."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from conftest import NOW, USER
from letras.errors import ConflictWriteFailed, InvalidRating, NotFound, StorageUnavailable
from letras.models import ReviewEvent, ReviewState
from letras.srs.scheduler import Scheduler


class FakeAggregator:
    def __init__(self) -> None:
        self.invalidated: list[str] = []

    def invalidate(self, user_id: str) -> None:
        self.invalidated.append(user_id)


async def _event_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(ReviewEvent.id)))).scalar() or 0


def _failing_commit(
    monkeypatch: pytest.MonkeyPatch, db: AsyncSession, error: Exception, failures: int
) -> list[int]:
    """Make the first ``failures`` commits raise ``error``. Returns the call counter."""
    original_commit = db.commit
    calls = [0]

    async def commit() -> None:
        calls[0] += 1
        if calls[0] <= failures:
            raise error
        await original_commit()

    monkeypatch.setattr(db, "commit", commit)
    return calls


@pytest.mark.asyncio
async def test_first_review_creates_state_and_event(db: AsyncSession, catalog: list[dict]) -> None:
    scheduler = Scheduler()
    recorded = await scheduler.record_review(db, USER, "l1-a", 3, NOW)

    assert recorded.success
    assert recorded.was_new
    assert recorded.next_review > NOW

    state = await db.get(ReviewState, (USER, "l1-a"))
    assert state is not None
    assert state.review_count == 1
    assert state.due_at == recorded.next_review
    assert state.version == 1

    event = (await db.execute(select(ReviewEvent))).scalar_one()
    assert event.was_new
    assert event.rating == 3
    assert event.stability_before is None
    assert event.stability_after == state.stability


@pytest.mark.asyncio
async def test_second_review_updates_state(db: AsyncSession, catalog: list[dict]) -> None:
    scheduler = Scheduler()
    first = await scheduler.record_review(db, USER, "l1-a", 3, NOW)
    second = await scheduler.record_review(db, USER, "l1-a", 3, first.next_review)

    assert not second.was_new
    assert second.next_review - first.next_review > first.next_review - NOW

    state = await db.get(ReviewState, (USER, "l1-a"))
    assert state.review_count == 2
    assert state.version == 2
    assert await _event_count(db) == 2

    events = (await db.execute(select(ReviewEvent).order_by(ReviewEvent.id))).scalars().all()
    assert events[1].stability_before == events[0].stability_after
    assert not events[1].was_new


@pytest.mark.asyncio
async def test_review_states_are_per_user(db: AsyncSession, catalog: list[dict]) -> None:
    scheduler = Scheduler()
    await scheduler.record_review(db, USER, "l1-a", 4, NOW)
    recorded = await scheduler.record_review(db, "user-2", "l1-a", 1, NOW)

    assert recorded.was_new
    mine = await db.get(ReviewState, (USER, "l1-a"))
    theirs = await db.get(ReviewState, ("user-2", "l1-a"))
    assert mine.stability > theirs.stability


@pytest.mark.asyncio
async def test_unknown_card(db: AsyncSession, catalog: list[dict]) -> None:
    with pytest.raises(NotFound):
        await Scheduler().record_review(db, USER, "no-such-card", 3, NOW)
    assert await _event_count(db) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 5, "good", None])
async def test_invalid_rating_writes_nothing(db: AsyncSession, catalog: list[dict], rating: object) -> None:
    with pytest.raises(InvalidRating):
        await Scheduler().record_review(db, USER, "l1-a", rating, NOW)  # type: ignore[arg-type]
    assert await db.get(ReviewState, (USER, "l1-a")) is None
    assert await _event_count(db) == 0


@pytest.mark.asyncio
async def test_transient_storage_fault_is_retried(
    monkeypatch: pytest.MonkeyPatch, db: AsyncSession, catalog: list[dict]
) -> None:
    error = OperationalError("COMMIT", {}, Exception("database is locked"))
    calls = _failing_commit(monkeypatch, db, error, failures=1)
    aggregator = FakeAggregator()
    scheduler = Scheduler(aggregator=aggregator, max_attempts=2, retry_wait_seconds=0)

    recorded = await scheduler.record_review(db, USER, "l1-a", 3, NOW)

    assert recorded.success
    assert calls[0] == 2
    assert await _event_count(db) == 1
    assert aggregator.invalidated == [USER]


@pytest.mark.asyncio
async def test_storage_unavailable_after_retries(
    monkeypatch: pytest.MonkeyPatch, db: AsyncSession, catalog: list[dict]
) -> None:
    error = OperationalError("COMMIT", {}, Exception("disk I/O error"))
    calls = _failing_commit(monkeypatch, db, error, failures=10)
    aggregator = FakeAggregator()
    scheduler = Scheduler(aggregator=aggregator, max_attempts=3, retry_wait_seconds=0)

    with pytest.raises(StorageUnavailable):
        await scheduler.record_review(db, USER, "l1-a", 3, NOW)

    assert calls[0] == 3
    assert aggregator.invalidated == []
    assert await db.get(ReviewState, (USER, "l1-a")) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
        StaleDataError("UPDATE statement on table 'review_states' expected to update 1 row(s)"),
    ],
)
async def test_write_conflict_is_not_retried(
    monkeypatch: pytest.MonkeyPatch, db: AsyncSession, catalog: list[dict], error: Exception
) -> None:
    calls = _failing_commit(monkeypatch, db, error, failures=1)
    scheduler = Scheduler(max_attempts=3, retry_wait_seconds=0)

    with pytest.raises(ConflictWriteFailed):
        await scheduler.record_review(db, USER, "l1-a", 3, NOW)

    assert calls[0] == 1
    assert await _event_count(db) == 0


@pytest.mark.asyncio
async def test_lapse_is_recorded(db: AsyncSession, catalog: list[dict]) -> None:
    scheduler = Scheduler()
    first = await scheduler.record_review(db, USER, "l1-a", 4, NOW)
    lapse = await scheduler.record_review(db, USER, "l1-a", 1, first.next_review)

    state = await db.get(ReviewState, (USER, "l1-a"))
    assert state.lapse_count == 1
    assert lapse.next_review - first.next_review < timedelta(days=first.result.interval_days)
