"""
Client transport abstraction.

The session core only needs ``is_open``, ``send``, ``ping`` and ``close``;
``WebSocketTransport`` provides them on top of a Starlette WebSocket.
"""

from typing import Any, Dict, Optional, Protocol

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from termrelay.errors import TransportError
from termrelay.logger import get_logger
from termrelay.models import PingMessage

logger = get_logger(__name__)


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send(self, payload: Dict[str, Any]) -> None: ...

    async def ping(self) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class WebSocketTransport:
    """JSON message channel over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def send(self, payload: Dict[str, Any]) -> None:
        """
        Send one JSON payload.

        Raises:
            TransportError: If the socket is closed or the send fails.
        """
        if not self.is_open:
            raise TransportError("WebSocket is closed")
        try:
            await self._ws.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as e:
            self._closed = True
            raise TransportError(f"WebSocket send failed: {e}") from e

    async def ping(self) -> None:
        await self.send(PingMessage().to_payload())

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"WebSocket already closed: {e}")
