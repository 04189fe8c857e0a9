"""
Playarr Engine

FastAPI application entry point. The lifespan connects the engine,
arms the job scheduler and tears both down on shutdown.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .config import get_settings
from .core.exceptions import register_exception_handlers
from .core.logging import get_logger, setup_logging
from .routers import jobs_router
from .services.context import ApplicationContext
from .services.scheduler import Scheduler, job_factory_for

# Initialize
settings = get_settings()
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        "app_startup",
        environment=settings.environment,
        debug=settings.debug
    )

    context = ApplicationContext(settings)
    await context.initialize()
    scheduler = Scheduler(context.catalog, job_factory_for(context))
    app.state.context = context
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        await scheduler.start()
    else:
        logger.info("scheduler_disabled")

    yield

    scheduler.stop()
    await context.close()
    logger.info("app_shutdown")


# Create FastAPI app
app = FastAPI(
    title="Playarr Engine",
    description="IPTV metadata ingestion and enrichment engine",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Register exception handlers
register_exception_handlers(app)

# Include routers
app.include_router(jobs_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Playarr Engine",
        "version": __version__,
        "status": "running",
        "docs": "/docs" if settings.debug else "disabled",
        "scheduler": "enabled" if settings.scheduler_enabled else "disabled",
    }
