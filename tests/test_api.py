"""Tests for the HTTP contract consumed by the web client."""

import base64
import json
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import USER
from letras.api.auth import get_current_user_id, user_id_from_token
from letras.api.dependencies import get_controller
from letras.database import get_session
from letras.main import app
from letras.models import ReviewEvent
from letras.srs.cursor import CursorStore
from letras.srs.progress import ProgressAggregator
from letras.srs.session import SessionController

CARD_KEYS = {"id", "content", "content_type", "image_url", "audio_url", "level_id", "is_new"}


def _token(claims: dict) -> str:
    def encode(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    return f"{encode({'alg': 'RS256', 'typ': 'JWT'})}.{encode(claims)}.signature"


@pytest_asyncio.fixture
async def client(db: AsyncSession, catalog: list[dict]) -> AsyncGenerator[AsyncClient, None]:
    controller = SessionController(aggregator=ProgressAggregator(cache_ttl_seconds=0), store=CursorStore())

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_current_user_id] = lambda: USER
    app.dependency_overrides[get_controller] = lambda: controller

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# --- Cards ---


@pytest.mark.asyncio
async def test_next_card_shape(client: AsyncClient) -> None:
    response = await client.get("/api/v1/cards/next")
    assert response.status_code == 200
    body = response.json()
    assert set(body["card"]) == CARD_KEYS
    assert body["card"]["id"] == "l1-a"
    assert body["card"]["content_type"] == "letter"
    assert body["card"]["is_new"] is True
    assert body["session_complete"] is False


@pytest.mark.asyncio
async def test_review_returns_iso_timestamp(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    response = await client.post("/api/v1/cards/l1-a/review", json={"rating": 3})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    next_review = datetime.fromisoformat(body["next_review"])
    assert next_review.tzinfo is not None


@pytest.mark.asyncio
async def test_duplicate_review_is_conflict(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    await client.post("/api/v1/cards/l1-a/review", json={"rating": 3})
    response = await client.post("/api/v1/cards/l1-a/review", json={"rating": 3})
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "stale_review"
    assert body["message"]


@pytest.mark.asyncio
async def test_invalid_rating(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    response = await client.post("/api/v1/cards/l1-a/review", json={"rating": 5})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_rating"


@pytest.mark.asyncio
async def test_unknown_card(client: AsyncClient) -> None:
    response = await client.post("/api/v1/cards/nope/review", json={"rating": 3})
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [True, "3", 3.0])
async def test_non_integer_rating_is_rejected(client: AsyncClient, db: AsyncSession, rating: object) -> None:
    await client.get("/api/v1/cards/next")
    response = await client.post("/api/v1/cards/l1-a/review", json={"rating": rating})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "invalid_rating"
    assert body["message"]

    count = (await db.execute(select(func.count(ReviewEvent.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"rating": "abc"}, {"rating": None}, {}])
async def test_malformed_rating_uses_error_body(client: AsyncClient, payload: dict) -> None:
    await client.get("/api/v1/cards/next")
    response = await client.post("/api/v1/cards/l1-a/review", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert set(body) == {"success", "error", "message"}
    assert body["error"] == "invalid_rating"


@pytest.mark.asyncio
async def test_unparseable_body_is_invalid_request(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/cards/l1-a/review",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "invalid_request"
    assert body["message"]


@pytest.mark.asyncio
async def test_card_still_reviewable_after_rejected_rating(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    await client.post("/api/v1/cards/l1-a/review", json={"rating": True})
    response = await client.post("/api/v1/cards/l1-a/review", json={"rating": 3})
    assert response.status_code == 200
    assert response.json()["success"] is True


# --- Stats and levels ---


@pytest.mark.asyncio
async def test_stats_shape(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    await client.post("/api/v1/cards/l1-a/review", json={"rating": 3})

    response = await client.get("/api/v1/stats")
    assert response.status_code == 200
    body = response.json()
    assert body["today_reviews"] == 1
    assert body["total_reviews"] == 1
    assert body["current_streak"] == 1
    assert body["longest_streak"] == 1
    assert body["current_level"] == 1
    assert [lp["level_id"] for lp in body["level_progress"]] == [1, 2, 3]
    assert set(body["level_progress"][0]) == {
        "level_id",
        "level_name",
        "total_cards",
        "mastered_cards",
        "progress_percentage",
    }


@pytest.mark.asyncio
async def test_today_stats(client: AsyncClient) -> None:
    await client.get("/api/v1/cards/next")
    await client.post("/api/v1/cards/l1-a/review", json={"rating": 4})

    response = await client.get("/api/v1/stats/today", headers={"X-Timezone": "UTC"})
    assert response.status_code == 200
    assert response.json() == {"new_cards_today": 1, "total_reviews_today": 1}


@pytest.mark.asyncio
async def test_levels(client: AsyncClient) -> None:
    response = await client.get("/api/v1/levels")
    assert response.status_code == 200
    levels = response.json()
    assert [level["id"] for level in levels] == [1, 2, 3]
    assert [level["is_unlocked"] for level in levels] == [True, False, False]
    assert levels[0]["name"] == "Las vocales"
    assert levels[0]["mastery_threshold"] == 50.0
    assert levels[0]["progress_percentage"] == 0.0


# --- Identity ---


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client: AsyncClient) -> None:
    del app.dependency_overrides[get_current_user_id]
    response = await client.get("/api/v1/cards/next")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_identifies_user(client: AsyncClient) -> None:
    del app.dependency_overrides[get_current_user_id]
    headers = {"Authorization": f"Bearer {_token({'sub': 'kid-42'})}"}
    response = await client.get("/api/v1/cards/next", headers=headers)
    assert response.status_code == 200
    assert response.json()["card"]["id"] == "l1-a"


class TestUserIdFromToken:
    def test_reads_subject(self) -> None:
        assert user_id_from_token(_token({"sub": "kid-42", "exp": 0})) == "kid-42"

    @pytest.mark.parametrize(
        "token",
        ["not-a-jwt", "a.b", "a.!!!.c", _token({"name": "no subject"}), _token({"sub": ""})],
    )
    def test_rejects_unreadable_tokens(self, token: str) -> None:
        assert user_id_from_token(token) is None
