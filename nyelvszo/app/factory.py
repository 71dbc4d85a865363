"""
FastAPI application factory for the nyelvszo real-time server.

This module handles FastAPI app creation, middleware configuration,
and router registration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.real_time import realtime_router
from ..api.websocket_admin import websocket_admin_router
from ..config import get_config
from ..config.models import AppConfig
from ..services.search import SearchProvider
from ..structured_logging.enhanced_logging_config import get_logger
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(config: AppConfig | None = None, search_provider: SearchProvider | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration; loaded from the environment when omitted
        search_provider: External search collaborator used by `search` frames

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    config = config or get_config()

    app = FastAPI(
        title="NyelvSzó Real-time API",
        description="Live search, collaborative editing and notifications for the NyelvSzó dictionary",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.search_provider = search_provider

    logger.info(
        "CORS configuration",
        allow_origins=config.cors.allow_origins,
        allow_methods=config.cors.allow_methods,
        allow_headers=config.cors.allow_headers,
        allow_credentials=config.cors.allow_credentials,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_credentials=config.cors.allow_credentials,
        allow_methods=[method.upper() for method in config.cors.allow_methods],
        allow_headers=config.cors.allow_headers,
    )

    app.include_router(realtime_router)
    app.include_router(websocket_admin_router)

    return app
