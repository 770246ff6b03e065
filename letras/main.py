"""FastAPI application entry point and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from letras.api.cards_router import router as cards_router
from letras.api.stats_router import router as stats_router
from letras.catalog import catalog_is_empty, load_catalog, read_catalog
from letras.config import settings
from letras.database import async_session, engine, get_session
from letras.errors import InvalidRating, InvalidRequest, SchedulerError, StorageUnavailable
from letras.models import Base

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize database and catalog on startup and cleanup on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.seed_catalog_on_startup and settings.catalog_path.is_file():
        async with async_session() as session:
            if await catalog_is_empty(session):
                await load_catalog(session, read_catalog(settings.catalog_path))
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="FSRS spaced repetition scheduler for early reading",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cards_router)
app.include_router(stats_router)


def _error_response(exc: SchedulerError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    logger.warning("Rejected request %s %s: %s", request.method, request.url.path, errors)
    if any(tuple(error.get("loc", ()))[-1:] == ("rating",) for error in errors):
        return _error_response(InvalidRating())
    return _error_response(InvalidRequest("; ".join(error.get("msg", "") for error in errors) or None))


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error_response(StorageUnavailable())


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_session)) -> dict[str, str]:
    """Check database connectivity and return status."""
    await db.execute(text("SELECT 1"))
    return {"status": "ok"}
