"""FastAPI application for Concept Mapper."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from concept_mapper import __version__
from concept_mapper.api import (
    alignments_router,
    concepts_router,
    evaluations_router,
    transfers_router,
    users_router,
)
from concept_mapper.core.config import settings
from concept_mapper.core.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    - Startup: create tables in debug mode (migrations handle production)
    - Shutdown: dispose of database connections
    """
    if settings.debug:
        init_db()
    logger.info(f"{settings.app_name} {__version__} ready")

    yield

    close_db()


app = FastAPI(
    title=settings.app_name,
    description="Align local source concepts to OMOP vocabularies: concept sets, fuzzy search, imports, reviews and exports.",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(alignments_router)
app.include_router(concepts_router)
app.include_router(evaluations_router)
app.include_router(transfers_router)
app.include_router(users_router)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint (liveness probe)."""
    return {
        "status": "healthy",
        "service": "concept-mapper",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "service": f"{settings.app_name} API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
