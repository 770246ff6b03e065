"""Pydantic schemas for API request/response models.

Field names and shapes match the existing web client.
"""

from datetime import datetime

from pydantic import BaseModel, StrictInt

# --- Cards ---


class CardResponse(BaseModel):
    id: str
    content: str
    content_type: str  # letter, syllable, word
    image_url: str | None
    audio_url: str | None
    level_id: int
    is_new: bool


class NextCardResponse(BaseModel):
    """Response for the next card to present."""

    card: CardResponse | None
    session_complete: bool
    message: str | None = None


class ReviewRequest(BaseModel):
    rating: StrictInt  # 1=Again, 2=Hard, 3=Good, 4=Easy; no bool or numeric strings


class ReviewResponse(BaseModel):
    success: bool
    next_review: datetime
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str


# --- Stats ---


class LevelProgressItem(BaseModel):
    level_id: int
    level_name: str
    total_cards: int
    mastered_cards: int
    progress_percentage: float


class UserStatsResponse(BaseModel):
    """Overall statistics for a user."""

    today_reviews: int
    total_reviews: int
    current_streak: int
    longest_streak: int
    level_progress: list[LevelProgressItem]
    current_level: int


class TodayStatsResponse(BaseModel):
    new_cards_today: int
    total_reviews_today: int


# --- Levels ---


class LevelResponse(BaseModel):
    id: int
    name: str
    description: str
    mastery_threshold: float
    is_unlocked: bool
    progress_percentage: float
