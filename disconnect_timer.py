import asyncio
from typing import Callable, Dict

from logging_config import get_logger

logger = get_logger(__name__)


class DisconnectTimers:
    """Delayed callbacks keyed by a connection identifier.

    Must be used from inside a running event loop.
    """

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def set_timer(self, connection_id: str, callback: Callable[[], None]):
        # replace any pending timer for the same connection
        self.clear_timer(connection_id)
        loop = asyncio.get_running_loop()
        self._timers[connection_id] = loop.call_later(self.timeout_seconds, self._fire, connection_id, callback)
        logger.debug(f"Disconnect timer set for {connection_id} ({self.timeout_seconds}s)")

    def clear_timer(self, connection_id: str) -> bool:
        timer = self._timers.pop(connection_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug(f"Disconnect timer cleared for {connection_id}")
        return True

    def clear_all(self):
        for connection_id, timer in self._timers.items():
            timer.cancel()
            logger.debug(f"Cleared timer for {connection_id} on shutdown")
        self._timers.clear()

    def _fire(self, connection_id: str, callback: Callable[[], None]):
        self._timers.pop(connection_id, None)
        try:
            callback()
        except Exception as e:
            logger.error(f"Error in disconnect timer callback for {connection_id}: {e}", exc_info=True)
