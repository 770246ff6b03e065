from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from letras.models.base import Base, TimestampMixin


class Level(Base, TimestampMixin):
    """An ordered progression stage (1..N)."""

    __tablename__ = "levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Percentage (0-100) of cards that must be mastered to unlock the next level
    mastery_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=80.0)

    cards: Mapped[list["Card"]] = relationship(back_populates="level")  # type: ignore[name-defined] # noqa: F821
