"""
Connection liveness ping.

Every ``interval`` seconds a ping is sent. If nothing was received from the
client since the previous ping, ``on_timeout`` runs and the loop stops.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from termrelay.errors import TransportError
from termrelay.logger import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL = 30.0


class ConnectionHeartbeat:
    def __init__(
        self,
        send_ping: Callable[[], Awaitable[None]],
        on_timeout: Callable[[], Awaitable[None]],
        interval: float = DEFAULT_INTERVAL,
    ):
        self.interval = interval
        self._send_ping = send_ping
        self._on_timeout = on_timeout
        self._alive = True
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def mark_alive(self) -> None:
        """Record that the client showed a sign of life."""
        self._alive = True

    def start(self) -> None:
        if self.running:
            return
        self._alive = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self._alive:
                logger.warning("Client missed heartbeat, closing connection")
                await self._on_timeout()
                return
            self._alive = False
            try:
                await self._send_ping()
            except TransportError as e:
                logger.debug(f"Heartbeat ping failed: {e}")
