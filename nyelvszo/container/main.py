"""
ApplicationContainer: builds and owns every long-lived service.

Services are created in dependency order by initialize() and torn down in
reverse order by shutdown(). The container is stored on ``app.state`` and is
the only place routes and the WebSocket endpoint look services up.
"""

from typing import Any

from anyio import Lock

from nyelvszo.auth.tokens import TokenVerifier
from nyelvszo.config import get_config
from nyelvszo.config.models import AppConfig
from nyelvszo.database import DatabaseManager
from nyelvszo.events.event_store import EventStore
from nyelvszo.realtime.hub import RealtimeHub
from nyelvszo.services.notification_service import NotificationService
from nyelvszo.services.search import SearchProvider
from nyelvszo.structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ApplicationContainer:
    """
    Dependency injection container for the nyelvszo real-time service.

    Holds the configuration, the event store database, the real-time hub and
    the notification service.
    """

    def __init__(self, config: AppConfig | None = None, search_provider: SearchProvider | None = None) -> None:
        """Initialize the container. Services are NOT initialized here - use initialize()."""
        self.config: AppConfig = config or get_config()
        self.search_provider = search_provider

        self.token_verifier: TokenVerifier | None = None
        self.database_manager: DatabaseManager | None = None
        self.event_store: EventStore | None = None
        self.hub: RealtimeHub | None = None
        self.notification_service: NotificationService | None = None

        self._initialized: bool = False
        self._initialization_lock = Lock()

        logger.info("ApplicationContainer created (not yet initialized)")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create and start every service in dependency order."""
        async with self._initialization_lock:
            if self._initialized:
                logger.warning("Container already initialized - skipping re-initialization")
                return

            logger.info("Initializing ApplicationContainer...")

            try:
                self.token_verifier = TokenVerifier(
                    self.config.security.jwt_secret,
                    algorithm=self.config.security.jwt_algorithm,
                )

                self.database_manager = DatabaseManager(self.config.database.url, echo=self.config.database.echo)
                await self.database_manager.init_schema()
                self.event_store = EventStore(self.database_manager)

                self.hub = RealtimeHub(
                    self.token_verifier,
                    config=self.config.realtime,
                    event_store=self.event_store,
                    search_provider=self.search_provider,
                )
                self.notification_service = NotificationService(
                    self.hub.registry,
                    config=self.config.notifications,
                )
                self.notification_service.attach(self.event_store)
                self.hub.notification_service = self.notification_service

                self.hub.start()
                self.notification_service.start()

                self._initialized = True
                logger.info("ApplicationContainer initialization complete")

            except Exception as e:
                logger.error(
                    "Failed to initialize application container",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self.shutdown()
                raise RuntimeError(f"Failed to initialize application container: {e}") from e

    async def shutdown(self) -> None:
        """Shutdown all services in reverse dependency order."""
        logger.info("Shutting down ApplicationContainer...")

        if self.notification_service is not None:
            await self.notification_service.stop()
            self.notification_service.detach()
        if self.hub is not None:
            await self.hub.stop()
        if self.database_manager is not None:
            await self.database_manager.close()

        self._initialized = False
        logger.info("ApplicationContainer shutdown complete")

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "hub": self.hub is not None,
            "event_store": self.event_store is not None,
            "notification_service": self.notification_service is not None,
            "liveness_sweep": bool(self.hub and self.hub.liveness.is_running),
            "notification_processor": bool(self.notification_service and self.notification_service.is_running),
        }
