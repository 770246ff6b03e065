"""API routes for fetching and rating cards."""

import logging
from datetime import UTC

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from letras.api.auth import get_current_user_id
from letras.api.dependencies import get_controller
from letras.api.schemas import (
    CardResponse,
    ErrorResponse,
    NextCardResponse,
    ReviewRequest,
    ReviewResponse,
)
from letras.database import get_session
from letras.srs.session import SessionController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cards", tags=["cards"])


@router.get("/next", response_model=NextCardResponse)
async def next_card(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    controller: SessionController = Depends(get_controller),
) -> NextCardResponse:
    """Get the next card to review, or signal that the session is complete."""
    result = await controller.get_next_card(db, user_id)
    if result.card is None:
        return NextCardResponse(card=None, session_complete=result.session_complete, message=result.message)

    card = result.card
    return NextCardResponse(
        card=CardResponse(
            id=card.id,
            content=card.content,
            content_type=card.content_type,
            image_url=card.image_url,
            audio_url=card.audio_url,
            level_id=card.level_id,
            is_new=result.is_new,
        ),
        session_complete=False,
    )


@router.post(
    "/{card_id}/review",
    response_model=ReviewResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def review_card(
    card_id: str,
    request: ReviewRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    controller: SessionController = Depends(get_controller),
) -> ReviewResponse:
    """Submit a rating for the card currently on screen."""
    outcome = await controller.review_card(db, user_id, card_id, request.rating)
    return ReviewResponse(
        success=outcome.success,
        next_review=outcome.next_review.replace(tzinfo=UTC),
        message=outcome.message,
    )
