"""
WebSocket endpoint for client sessions (/ws).

Protocol:
    1. Client connects with ?token=<jwt> or an Authorization: Bearer header
    2. Server responds: {"type": "connected", "user_id": "...", "settings": {...}}
    3. Client sends intents: {"type": "message", "content": "..."} etc.
    4. Server streams {"type": "event", "event_type": "...", "data": {...}}
       for every parsed line of CLI output
"""

from starlette.websockets import WebSocket, WebSocketDisconnect

from termrelay.auth import AuthError, extract_token, validate_token
from termrelay.core.router import ConnectionRouter
from termrelay.logger import get_logger
from termrelay.models import ErrorMessage
from termrelay.session.heartbeat import ConnectionHeartbeat
from termrelay.transport import WebSocketTransport

logger = get_logger(__name__)

CLOSE_AUTH_REQUIRED = 4001
CLOSE_INVALID_TOKEN = 4002
CLOSE_HEARTBEAT_TIMEOUT = 4003


def _get_context(websocket: WebSocket):
    app = getattr(websocket, "app", None)
    if app is None:
        return None
    return getattr(app.state, "context", None)


async def session_websocket_endpoint(websocket: WebSocket):
    ctx = _get_context(websocket)
    if ctx is None:
        await websocket.close(code=1011, reason="Session system not initialized")
        return

    await websocket.accept()

    token = extract_token(
        websocket.headers.get("authorization"), websocket.query_params.get("token")
    )
    if not token:
        await websocket.send_json(ErrorMessage(message="Authentication required").to_payload())
        await websocket.close(code=CLOSE_AUTH_REQUIRED, reason="Authentication required")
        return

    try:
        claims = validate_token(token, ctx.settings.jwt_secret)
    except AuthError as e:
        logger.warning(f"WebSocket auth failed: {e}")
        await websocket.send_json(ErrorMessage(message="Invalid token").to_payload())
        await websocket.close(code=CLOSE_INVALID_TOKEN, reason="Invalid token")
        return

    user_id = str(claims["sub"])
    project_ref = websocket.query_params.get("project_ref") or ctx.settings.project_ref

    transport = WebSocketTransport(websocket)
    router = ConnectionRouter(
        transport,
        user_id,
        ctx.registry,
        ctx.database,
        project_ref=project_ref,
        default_model=ctx.settings.default_model,
        default_working_directory=ctx.settings.workspace_dir,
    )

    async def on_timeout():
        await transport.close(CLOSE_HEARTBEAT_TIMEOUT, "Connection timeout")

    heartbeat = ConnectionHeartbeat(
        send_ping=transport.ping,
        on_timeout=on_timeout,
        interval=ctx.settings.heartbeat_interval_seconds,
    )

    logger.info(f"Client connected: {user_id} (project={project_ref})")

    try:
        await router.on_connect()
        heartbeat.start()

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            heartbeat.mark_alive()
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            await router.dispatch(raw)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {user_id}: {e}")
    finally:
        await heartbeat.stop()
        await router.close()
        logger.info(f"Client disconnected: {user_id}")
