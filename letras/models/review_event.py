from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from letras.models.base import Base


class ReviewEvent(Base):
    """Append-only log of ratings. Immutable once written."""

    __tablename__ = "review_events"
    __table_args__ = (Index("ix_review_events_user_time", "user_id", "reviewed_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    card_id: Mapped[str] = mapped_column(ForeignKey("cards.id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1=Again, 2=Hard, 3=Good, 4=Easy
    was_new: Mapped[bool] = mapped_column(Boolean, nullable=False)  # first rating of the card
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    stability_before: Mapped[float | None] = mapped_column(Float, nullable=True)
    stability_after: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_before: Mapped[float | None] = mapped_column(Float, nullable=True)
    difficulty_after: Mapped[float] = mapped_column(Float, nullable=False)
