"""API routes for user statistics and level progress."""

import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from letras.api.auth import get_current_user_id
from letras.api.dependencies import get_controller
from letras.api.schemas import (
    LevelProgressItem,
    LevelResponse,
    TodayStatsResponse,
    UserStatsResponse,
)
from letras.database import get_session
from letras.srs.session import SessionController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["stats"])


@router.get("/stats", response_model=UserStatsResponse)
async def get_user_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    controller: SessionController = Depends(get_controller),
    x_timezone: str | None = Header(default=None),
) -> UserStatsResponse:
    """Get overall statistics for the user."""
    stats = await controller.aggregator.stats(db, user_id, timezone=x_timezone)
    return UserStatsResponse(
        today_reviews=stats.today_reviews,
        total_reviews=stats.total_reviews,
        current_streak=stats.current_streak,
        longest_streak=stats.longest_streak,
        level_progress=[
            LevelProgressItem(
                level_id=lp.level_id,
                level_name=lp.level_name,
                total_cards=lp.total_cards,
                mastered_cards=lp.mastered_cards,
                progress_percentage=round(lp.progress_percentage, 1),
            )
            for lp in stats.level_progress
        ],
        current_level=stats.current_level,
    )


@router.get("/stats/today", response_model=TodayStatsResponse)
async def get_today_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    controller: SessionController = Depends(get_controller),
    x_timezone: str | None = Header(default=None),
) -> TodayStatsResponse:
    today = await controller.aggregator.today_stats(db, user_id, timezone=x_timezone)
    return TodayStatsResponse(
        new_cards_today=today.new_cards_today,
        total_reviews_today=today.total_reviews_today,
    )


@router.get("/levels", response_model=list[LevelResponse])
async def get_levels(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    controller: SessionController = Depends(get_controller),
) -> list[LevelResponse]:
    """List all levels with unlock state and progress."""
    levels = await controller.aggregator.level_progress(db, user_id)
    return [
        LevelResponse(
            id=lp.level_id,
            name=lp.level_name,
            description=lp.description,
            mastery_threshold=lp.mastery_threshold,
            is_unlocked=lp.is_unlocked,
            progress_percentage=round(lp.progress_percentage, 1),
        )
        for lp in levels
    ]
