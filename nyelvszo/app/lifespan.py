"""Application lifecycle management for the nyelvszo real-time server.

Startup builds the ApplicationContainer, which starts the liveness sweep and
the notification processor. Shutdown stops them and closes live connections.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..container import ApplicationContainer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger("nyelvszo.lifespan")

__all__ = ["lifespan"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Services are reached through ``app.state.container`` by the routes and
    the WebSocket endpoint.
    """
    logger.info("Starting nyelvszo real-time server with ApplicationContainer...")

    container = ApplicationContainer(
        config=getattr(app.state, "config", None),
        search_provider=getattr(app.state, "search_provider", None),
    )
    await container.initialize()
    app.state.container = container
    logger.info("nyelvszo real-time server started successfully")
    yield

    logger.info("Shutting down nyelvszo real-time server...")
    try:
        await container.shutdown()
    except asyncio.CancelledError as e:
        logger.warning("Shutdown interrupted", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        app.state.container = None
    logger.info("nyelvszo real-time server shutdown complete")
