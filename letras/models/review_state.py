"""Per user x card spaced-repetition memory record."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from letras.models.base import Base, TimestampMixin


class ReviewState(Base, TimestampMixin):
    """FSRS memory state for a user-card pair.

    Rows are created lazily on the first rating and never deleted. ``version``
    is checked on every UPDATE so two writers racing on the same row cannot
    both succeed.
    """

    __tablename__ = "review_states"
    __table_args__ = (Index("ix_review_states_user_due", "user_id", "due_at"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    card_id: Mapped[str] = mapped_column(ForeignKey("cards.id"), primary_key=True)
    stability: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapse_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    card: Mapped["Card"] = relationship()  # type: ignore[name-defined] # noqa: F821

    __mapper_args__ = {"version_id_col": version}
