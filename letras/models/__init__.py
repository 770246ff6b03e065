"""SQLAlchemy ORM models for the Letras SRS database."""

from letras.models.base import Base
from letras.models.card import Card
from letras.models.level import Level
from letras.models.review_event import ReviewEvent
from letras.models.review_state import ReviewState

__all__ = ["Base", "Card", "Level", "ReviewEvent", "ReviewState"]
