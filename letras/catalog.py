"""Static level and card catalog loading.

The catalog is an external dataset; this module only copies it into the
``levels`` and ``cards`` tables. Published cards are immutable, so entries
whose id already exists are skipped rather than updated.

Catalog JSON layout::

    {"levels": [{"id": 1, "name": "...", "description": "...",
                 "mastery_threshold": 80,
                 "cards": [{"id": "...", "content": "a", "content_type": "letter",
                            "image_url": null, "audio_url": null}]}]}
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from letras.models.card import Card
from letras.models.level import Level

logger = logging.getLogger(__name__)

CONTENT_TYPES = {"letter", "syllable", "word"}


@dataclass
class CatalogLoadResult:
    levels_added: int = 0
    cards_added: int = 0
    cards_skipped: int = 0


def read_catalog(path: Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    levels = data.get("levels") if isinstance(data, dict) else None
    if not isinstance(levels, list):
        raise ValueError(f"{path}: expected an object with a 'levels' list")
    return levels


async def catalog_is_empty(session: AsyncSession) -> bool:
    count = (await session.execute(select(func.count(Level.id)))).scalar() or 0
    return count == 0


async def load_catalog(session: AsyncSession, levels: list[dict]) -> CatalogLoadResult:
    """Insert levels and cards that are not in the database yet."""
    result = CatalogLoadResult()

    for entry in levels:
        level = await session.get(Level, entry["id"])
        if level is None:
            level = Level(
                id=entry["id"],
                name=entry["name"],
                description=entry.get("description", ""),
                mastery_threshold=float(entry.get("mastery_threshold", 80.0)),
            )
            session.add(level)
            result.levels_added += 1

        cards = entry.get("cards", [])
        if not cards:
            logger.warning("Level %s has no cards; it will block the next level", entry["id"])

        for position, card_entry in enumerate(cards):
            if await session.get(Card, card_entry["id"]) is not None:
                result.cards_skipped += 1
                continue
            content_type = card_entry.get("content_type", "letter")
            if content_type not in CONTENT_TYPES:
                raise ValueError(f"Card {card_entry['id']}: unknown content_type {content_type!r}")
            session.add(
                Card(
                    id=card_entry["id"],
                    content=card_entry["content"],
                    content_type=content_type,
                    level_id=entry["id"],
                    position=card_entry.get("position", position),
                    image_url=card_entry.get("image_url"),
                    audio_url=card_entry.get("audio_url"),
                )
            )
            result.cards_added += 1

    await session.commit()
    logger.info(
        "Catalog loaded: %d levels added, %d cards added, %d cards already present",
        result.levels_added,
        result.cards_added,
        result.cards_skipped,
    )
    return result
