from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings

ROOT_DIR = Path(__file__).resolve().parent.parent


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Datetimes stay naive so they round-trip through SQLite unchanged.
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Letras SRS"
    database_url: str = f"sqlite+aiosqlite:///{ROOT_DIR / 'data' / 'letras.db'}"
    debug: bool = False

    # Memory model
    target_retention: float = 0.9
    fsrs_weights: list[float] | None = None  # 17 FSRS-4.5 weights

    # Sessions
    max_new_cards_per_session: int = 10
    max_new_cards_per_day: int = 20  # 0 disables the daily cap
    session_ttl_seconds: int = 1800  # 30 minutes idle

    # Mastery
    mastery_stability_days: float = 10.0
    mastery_min_reviews: int = 2

    # Stats
    default_timezone: str = "UTC"
    stats_cache_ttl_seconds: int = 30

    # Storage
    storage_max_attempts: int = 3
    storage_retry_wait_seconds: float = 0.2

    catalog_path: Path = ROOT_DIR / "data" / "catalog.json"
    seed_catalog_on_startup: bool = True
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = {"env_prefix": "LETRAS_", "env_file": ".env"}


settings = Settings()
