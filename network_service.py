import asyncio
import logging

from backend import MessagingBackend
from constants import SLOW_MODE_POOL_THRESHOLD, SLOW_POLL_INTERVAL_MS
from state_manager import NetworkMetrics

logger = logging.getLogger("MetricsPoller")


class MetricsPoller:
    """Polls network-health queries on the event loop.

    Starts at the fast interval and drops to the slow one, for good, the first
    time the mixnode pool reaches the threshold. Responses come back as
    backend events and are fed in through the on_* methods.
    """
    def __init__(self, backend: MessagingBackend, metrics: NetworkMetrics, is_active):
        self.backend = backend
        self.metrics = metrics
        self.is_active = is_active
        self._task = None

    @property
    def state(self):
        if self._task is None or self._task.done():
            return "stopped"
        return "slow" if self.metrics.slow_mode_engaged else "fast"

    def start(self):
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Metrics polling started every {self.metrics.poll_interval_ms} ms")

    def stop(self):
        if self._task:
            self._task.cancel()
            self._task = None
            logger.info("Metrics polling stopped")

    def tick(self) -> bool:
        # Timer keeps running while the session is not ready, ticks just do nothing
        if not self.is_active():
            logger.debug("Skipping metrics tick, session not ready")
            return False
        try:
            self.backend.get_mixnode_pool_size()
            self.backend.get_lightpush_peers_count()
        except Exception as e:
            logger.error(f"Metrics query failed: {e}", exc_info=True)
            return False
        return True

    def on_mixnode_pool_size(self, size: int) -> bool:
        """Store the pool size; returns True if the poll interval changed."""
        self.metrics.mixnode_pool_size = size
        if self.metrics.slow_mode_engaged or size < SLOW_MODE_POOL_THRESHOLD:
            return False
        self.metrics.slow_mode_engaged = True
        self.metrics.poll_interval_ms = SLOW_POLL_INTERVAL_MS
        logger.info(f"Mixnode pool reached {size}, polling every {SLOW_POLL_INTERVAL_MS} ms")
        return True

    def on_lightpush_peers_count(self, count: int):
        self.metrics.lightpush_peers_count = count

    async def _run(self):
        while True:
            try:
                await asyncio.sleep(self.metrics.poll_interval_ms / 1000)
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Metrics tick failed: {e}", exc_info=True)
