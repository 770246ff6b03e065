"""Shared fixtures: an in-memory database with a small three-level catalog."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from letras.catalog import load_catalog
from letras.models import Base, ReviewEvent, ReviewState

NOW = datetime(2026, 3, 10, 12, 0, 0)
USER = "user-1"

CATALOG = [
    {
        "id": 1,
        "name": "Las vocales",
        "description": "Vocales",
        "mastery_threshold": 50,
        "cards": [
            {"id": "l1-a", "content": "a", "content_type": "letter"},
            {"id": "l1-e", "content": "e", "content_type": "letter"},
            {"id": "l1-i", "content": "i", "content_type": "letter"},
            {"id": "l1-o", "content": "o", "content_type": "letter"},
        ],
    },
    {
        "id": 2,
        "name": "Sílabas",
        "description": "Sílabas con m",
        "mastery_threshold": 50,
        "cards": [
            {"id": "l2-ma", "content": "ma", "content_type": "syllable"},
            {"id": "l2-me", "content": "me", "content_type": "syllable"},
        ],
    },
    {
        "id": 3,
        "name": "Palabras",
        "description": "Primeras palabras",
        "mastery_threshold": 80,
        "cards": [
            {"id": "l3-mama", "content": "mamá", "content_type": "word", "audio_url": "/audio/mama.mp3"},
        ],
    },
]


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(db: AsyncSession) -> list[dict]:
    await load_catalog(db, CATALOG)
    return CATALOG


async def add_state(
    db: AsyncSession,
    card_id: str,
    *,
    user_id: str = USER,
    stability: float = 3.0,
    difficulty: float = 5.0,
    due_at: datetime = NOW,
    review_count: int = 1,
    last_reviewed_at: datetime | None = None,
) -> ReviewState:
    """Insert a review state directly, bypassing the scheduler."""
    row = ReviewState(
        user_id=user_id,
        card_id=card_id,
        stability=stability,
        difficulty=difficulty,
        due_at=due_at,
        last_reviewed_at=last_reviewed_at or due_at - timedelta(days=stability),
        review_count=review_count,
        lapse_count=0,
    )
    db.add(row)
    await db.commit()
    return row


async def add_event(
    db: AsyncSession,
    card_id: str,
    reviewed_at: datetime,
    *,
    user_id: str = USER,
    was_new: bool = False,
    rating: int = 3,
) -> None:
    db.add(
        ReviewEvent(
            user_id=user_id,
            card_id=card_id,
            rating=rating,
            was_new=was_new,
            reviewed_at=reviewed_at,
            due_at=reviewed_at + timedelta(days=1),
            stability_after=1.0,
            difficulty_after=5.0,
        )
    )
    await db.commit()


async def master_level(db: AsyncSession, card_ids: list[str], user_id: str = USER) -> None:
    for card_id in card_ids:
        await add_state(
            db,
            card_id,
            user_id=user_id,
            stability=30.0,
            review_count=3,
            due_at=NOW + timedelta(days=30),
        )
