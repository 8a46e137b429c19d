"""FastAPI application factory for the lead queue API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..distribution.distributor import LeadDistributor
from ..tasks.sweeper import ExpirySweeper
from .config import settings
from .errors import register_error_handlers
from .routes.agents import router as agents_router
from .routes.health import router as health_router
from .routes.leads import router as leads_router
from .routes.metrics import router as metrics_router
from .routes.settings import router as settings_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting lead queue API")
    if app.state.distributor is None:
        from .dependencies import build_distributor
        app.state.distributor = build_distributor()
    distributor = app.state.distributor

    try:
        from ..storage.migrations import run_migrations
        applied = run_migrations(str(distributor.db.db_path))
        logger.info(f"Database migrations applied ({applied} new)")
    except Exception as e:
        logger.warning(f"Migration check: {e}")

    sweeper = None
    if app.state.sweeper_enabled:
        sweeper = ExpirySweeper(distributor.reservations)
        sweeper.start()
    app.state.sweeper = sweeper

    yield

    if sweeper:
        sweeper.stop()
    logger.info("Lead queue API shutting down")


def create_app(
    distributor: Optional[LeadDistributor] = None,
    sweeper_enabled: Optional[bool] = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass a ``distributor`` to serve an existing database (tests, embedding);
    otherwise one is built from environment settings on first use.
    """
    app = FastAPI(
        title="Lead Queue Engine API",
        description="Score-ranked lead distribution with exclusive, time-boxed reservations",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.distributor = distributor
    app.state.metrics = None
    app.state.sweeper_enabled = settings.sweeper_enabled if sweeper_enabled is None else sweeper_enabled

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(leads_router)
    app.include_router(agents_router)
    app.include_router(settings_router)
    app.include_router(metrics_router)

    return app


# Module-level app instance for uvicorn
app = create_app()
