"""
Liveness sweep for live connections.

Half-open connections are only detected here: every interval each open
connection is probed, and a connection that has shown no liveness signal
within the timeout is terminated through the normal disconnect path.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_registry import ConnectionRegistry
from .envelope import build_frame, utc_now_z

logger = get_logger(__name__)


class LivenessMonitor:
    """
    Periodic liveness sweep over the connection registry.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        terminate: Callable[[str, str], Awaitable[Any]],
        interval: float = 30.0,
        timeout: float = 60.0,
        backlog_max_age: float = 3600.0,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            registry: Connection registry to sweep
            terminate: Coroutine called with (connection_id, reason) for dead connections
            interval: Seconds between sweeps
            timeout: Seconds without a liveness signal before termination
            backlog_max_age: Seconds a frame may wait in the backlog before the sweep drops it
        """
        self.registry = registry
        self.terminate = terminate
        self.interval = interval
        self.timeout = timeout
        self.backlog_max_age = backlog_max_age
        self._task: asyncio.Task | None = None

    async def sweep(self) -> dict[str, int]:
        """
        Run one sweep.

        Returns:
            dict: Counts of terminated and pinged connections and pruned backlog frames
        """
        now = self.registry.clock()
        terminated = 0
        pinged = 0
        for connection in self.registry.connections():
            idle = now - connection.last_seen
            if idle > self.timeout:
                logger.info(
                    "Terminating unresponsive connection",
                    connection_id=connection.connection_id,
                    user_id=connection.user_id,
                    idle_seconds=round(idle, 1),
                )
                await self.terminate(connection.connection_id, "heartbeat timeout")
                terminated += 1
            elif await self.registry.ping(connection.connection_id, build_frame("ping", {"timestamp": utc_now_z()})):
                pinged += 1
        pruned = self.registry.prune_backlog(self.backlog_max_age)
        if terminated or pruned:
            logger.info("Liveness sweep completed", terminated=terminated, pinged=pinged, pruned=pruned)
        return {"terminated": terminated, "pinged": pinged, "pruned": pruned}

    async def _run(self) -> None:
        logger.info("Starting liveness sweep", interval_seconds=self.interval, timeout_seconds=self.timeout)
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.sweep()
                except Exception as e:  # pylint: disable=broad-except  # Reason: a failing sweep must not stop later sweeps
                    logger.error("Error in liveness sweep", error=str(e), error_type=type(e).__name__, exc_info=True)
        except asyncio.CancelledError:
            logger.info("Liveness sweep task cancelled")
            raise

    def start(self) -> None:
        """Start the periodic sweep; must be called from a running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("Liveness sweep already running")
            return
        self._task = asyncio.create_task(self._run(), name="realtime/liveness_sweep")

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
