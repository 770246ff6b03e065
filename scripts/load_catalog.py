"""Load the level/card catalog into the database.

Usage:
    python -m scripts.load_catalog data/catalog.json
    python -m scripts.load_catalog data/catalog.json -v
"""

import argparse
import asyncio
import logging
from pathlib import Path

from letras.catalog import load_catalog, read_catalog
from letras.database import async_session, engine
from letras.models import Base


async def main_async(args: argparse.Namespace) -> None:
    # Ensure tables exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    levels = read_catalog(args.catalog)
    async with async_session() as session:
        result = await load_catalog(session, levels)
    await engine.dispose()

    print(
        f"Added {result.levels_added} levels and {result.cards_added} cards "
        f"({result.cards_skipped} cards already present)."
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Load the level/card catalog into the database")
    parser.add_argument("catalog", type=Path, help="Path to catalog.json")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
