"""Database engine, session management and storage error policy."""

import logging
from collections.abc import AsyncGenerator, Iterator
from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from letras.config import settings
from letras.errors import ConflictWriteFailed, StorageUnavailable

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for FastAPI dependency injection."""
    async with async_session() as session:
        yield session


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise database failures as scheduler errors.

    Lost write races become ``ConflictWriteFailed``; connectivity faults
    become ``StorageUnavailable``.
    """
    try:
        yield
    except (IntegrityError, StaleDataError) as exc:
        raise ConflictWriteFailed() from exc
    except (OperationalError, InterfaceError) as exc:
        raise StorageUnavailable() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StorageUnavailable() from exc
        raise


def storage_retrying(
    max_attempts: int | None = None,
    wait_seconds: float | None = None,
) -> AsyncRetrying:
    """Build the bounded retry policy for transient storage faults."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts or settings.storage_max_attempts),
        wait=wait_exponential(
            multiplier=settings.storage_retry_wait_seconds if wait_seconds is None else wait_seconds,
            max=5,
        ),
        retry=retry_if_exception_type(StorageUnavailable),
        before_sleep=_log_retry,
        reraise=True,
    )


def _log_retry(retry_state) -> None:  # type: ignore[no-untyped-def]
    logger.warning(
        "Storage unavailable, retrying (attempt %d)",
        retry_state.attempt_number,
    )
