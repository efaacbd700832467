"""
Application factory for the hub engines API.

Builds a FastAPI application exposing the decision engines over HTTP. The
routers are thin adapters; every decision is made in ``hub_engines.services``.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS
from .db import init_db
from .routes import (
    checkout_router,
    coupons_router,
    coverage_router,
    hubs_router,
    orders_router,
)

logger = logging.getLogger(__name__)

ROUTERS = (
    hubs_router,
    coverage_router,
    checkout_router,
    coupons_router,
    orders_router,
)


def create_app(cors_origins: Optional[List[str]] = None, init_database: bool = False) -> FastAPI:
    """
    Create a FastAPI application.

    Args:
        cors_origins: Allowed CORS origins. Defaults to CORS_ORIGINS from config.
        init_database: Create missing tables on the configured engine at startup.

    Returns:
        Configured FastAPI application
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            init_db()
            logger.info("Database tables ensured")
        yield

    app = FastAPI(
        lifespan=lifespan,
        title="Hub Engines API",
        description="Availability, coverage, pricing and order guards for a delivery marketplace",
        version="1.0.0",
    )

    origins = cors_origins if cors_origins is not None else CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers with API version prefix
    api_v1 = APIRouter(prefix="/api/v1")
    for router in ROUTERS:
        api_v1.include_router(router)
    app.include_router(api_v1)

    # Also mount at root
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    logger.info("Application created with %d routers", len(ROUTERS))
    return app
