"""Tests for WebSocketTransport."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect, WebSocketState

from termrelay.errors import TransportError
from termrelay.transport import WebSocketTransport


def make_websocket():
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.application_state = WebSocketState.CONNECTED
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_send(self):
        ws = make_websocket()
        transport = WebSocketTransport(ws)
        await transport.send({"type": "pong"})
        ws.send_json.assert_awaited_once_with({"type": "pong"})

    @pytest.mark.asyncio
    async def test_send_when_client_gone(self):
        ws = make_websocket()
        ws.client_state = WebSocketState.DISCONNECTED
        transport = WebSocketTransport(ws)
        assert transport.is_open is False
        with pytest.raises(TransportError):
            await transport.send({"type": "pong"})
        ws.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_marks_closed(self):
        ws = make_websocket()
        ws.send_json.side_effect = WebSocketDisconnect(1006)
        transport = WebSocketTransport(ws)
        with pytest.raises(TransportError):
            await transport.send({"type": "pong"})
        assert transport.is_open is False

    @pytest.mark.asyncio
    async def test_ping_payload(self):
        ws = make_websocket()
        await WebSocketTransport(ws).ping()
        payload = ws.send_json.await_args[0][0]
        assert payload["type"] == "ping"
        assert "timestamp" in payload

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        ws = make_websocket()
        transport = WebSocketTransport(ws)
        await transport.close(4003, "Connection timeout")
        await transport.close()
        ws.close.assert_awaited_once_with(code=4003, reason="Connection timeout")
        assert transport.is_open is False

    @pytest.mark.asyncio
    async def test_close_tolerates_closed_socket(self):
        ws = make_websocket()
        ws.close.side_effect = RuntimeError("already closed")
        await WebSocketTransport(ws).close()
