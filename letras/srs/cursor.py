"""Ephemeral per-user session cursors.

A cursor tracks one sitting: which card is on screen, which cards were
already rated and how many new cards were introduced. Cursors live in process
memory and expire after an idle timeout.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from letras.config import settings

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    AWAITING_CARD = "awaiting_card"
    CARD_PRESENTED = "card_presented"
    RATING_SUBMITTED = "rating_submitted"
    SESSION_COMPLETE = "session_complete"


@dataclass
class SessionCursor:
    """State of one user's current sitting."""

    user_id: str
    started_at: datetime
    last_activity: datetime
    phase: SessionPhase = SessionPhase.AWAITING_CARD
    presented_card_id: str | None = None
    reviewed_card_ids: set[str] = field(default_factory=set)
    new_cards_introduced: int = 0
    reviews: int = 0

    def present(self, card_id: str, now: datetime) -> None:
        self.presented_card_id = card_id
        self.phase = SessionPhase.CARD_PRESENTED
        self.last_activity = now

    def record_review(self, card_id: str, was_new: bool, now: datetime) -> None:
        """Mark the presented card as rated."""
        self.presented_card_id = None
        self.reviewed_card_ids.add(card_id)
        self.reviews += 1
        if was_new:
            self.new_cards_introduced += 1
        self.phase = SessionPhase.RATING_SUBMITTED
        self.last_activity = now

    def withdraw(self, now: datetime) -> None:
        """Forget the presented card so the client must fetch a fresh one."""
        self.presented_card_id = None
        self.phase = SessionPhase.AWAITING_CARD
        self.last_activity = now

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return now - self.last_activity > timedelta(seconds=ttl_seconds)


class CursorStore:
    """In-memory cursor store keyed by user id (move to Redis for multi-process deployments).

    Also hands out one ``asyncio.Lock`` per user so that selection and review
    writes for the same user are serialized. Locks are held weakly: a lock
    lives as long as some request holds or waits on it.
    """

    def __init__(self, ttl_seconds: int = settings.session_ttl_seconds) -> None:
        self.ttl_seconds = ttl_seconds
        self._cursors: dict[str, SessionCursor] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._cursors)

    def lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def get(self, user_id: str, now: datetime) -> SessionCursor | None:
        """Return the user's live cursor, dropping it if it has gone idle."""
        cursor = self._cursors.get(user_id)
        if cursor is not None and cursor.is_expired(now, self.ttl_seconds):
            logger.info("Session cursor for user %s expired after idle timeout", user_id)
            del self._cursors[user_id]
            return None
        return cursor

    def get_or_create(self, user_id: str, now: datetime) -> SessionCursor:
        cursor = self.get(user_id, now)
        if cursor is None:
            self.purge_expired(now)
            cursor = SessionCursor(user_id=user_id, started_at=now, last_activity=now)
            self._cursors[user_id] = cursor
            logger.info("Started sitting for user %s", user_id)
        return cursor

    def discard(self, user_id: str) -> None:
        self._cursors.pop(user_id, None)

    def purge_expired(self, now: datetime) -> int:
        """Drop idle cursors. Returns the number dropped."""
        expired = [
            user_id
            for user_id, cursor in self._cursors.items()
            if cursor.is_expired(now, self.ttl_seconds)
        ]
        for user_id in expired:
            del self._cursors[user_id]
        return len(expired)
