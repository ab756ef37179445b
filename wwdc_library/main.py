"""
FastAPI application entry point for the WWDC session library.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from wwdc_library import __version__
from wwdc_library.config import get_settings
from wwdc_library.api.routes import router as api_router
from wwdc_library.store.sqlite_store import EntityStore
from wwdc_library.sync.client import ServiceClient
from wwdc_library.sync.events import Event, EventBus
from wwdc_library.sync.indexer import TranscriptIndexer
from wwdc_library.sync.orchestrator import SyncOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator() -> SyncOrchestrator:
    """Wire the store, client, bus and indexer from settings."""
    store = EntityStore()
    client = ServiceClient()
    bus = EventBus()
    indexer = TranscriptIndexer(store, client, bus)
    return SyncOrchestrator(store=store, client=client, bus=bus, indexer=indexer)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    orchestrator: Optional[SyncOrchestrator] = getattr(app.state, "orchestrator", None)
    owns_orchestrator = orchestrator is None

    # Startup
    if orchestrator is None:
        orchestrator = build_orchestrator()
        app.state.orchestrator = orchestrator
        app.state.store = orchestrator.store

    logger.info("Starting WWDC library")
    logger.info(f"Database: {orchestrator.store.db_path}")

    unsubscribe = orchestrator.bus.subscribe(
        Event, lambda event: logger.info(f"Event: {event}")
    )

    if settings.refresh_interval_seconds > 0:
        orchestrator.start_periodic(settings.refresh_interval_seconds)
    else:
        orchestrator.refresh()

    yield

    # Shutdown
    logger.info("Shutting down WWDC library")
    unsubscribe()
    if owns_orchestrator:
        orchestrator.shutdown(wait=False)


def create_app(orchestrator: Optional[SyncOrchestrator] = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        orchestrator: Pre-built orchestrator (the lifespan builds one if not provided)
    """
    app = FastAPI(
        title="WWDC Library",
        description="Local session library kept in sync with the WWDC services",
        version=__version__,
        lifespan=lifespan,
    )

    if orchestrator is not None:
        app.state.orchestrator = orchestrator
        app.state.store = orchestrator.store

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


def main():
    """Run the application with uvicorn."""
    import uvicorn
    settings = get_settings()

    uvicorn.run(
        "wwdc_library.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
