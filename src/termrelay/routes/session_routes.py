"""
Read-only session history API.

Endpoints:
- GET /sessions                         latest sessions of the caller
- GET /sessions/active                  sessions currently live in this process
- GET /sessions/{session_id}            one session
- GET /sessions/{session_id}/messages   its messages, oldest first
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from termrelay.auth import AuthError
from termrelay.logger import get_logger
from termrelay.routes.auth_helpers import authenticate, get_context

logger = get_logger(__name__)

SESSION_LIST_LIMIT = 50


async def list_sessions(request: Request) -> JSONResponse:
    try:
        user_id = authenticate(request)
    except AuthError as e:
        return JSONResponse({"error": str(e)}, status_code=401)

    ctx = get_context(request)
    try:
        sessions = await ctx.database.list_sessions(user_id, limit=SESSION_LIST_LIMIT)
    except Exception as e:
        logger.error(f"Error listing sessions: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse({"data": sessions})


async def list_active_sessions(request: Request) -> JSONResponse:
    try:
        user_id = authenticate(request)
    except AuthError as e:
        return JSONResponse({"error": str(e)}, status_code=401)

    ctx = get_context(request)
    return JSONResponse({"data": ctx.registry.owner_sessions(user_id)})


async def get_session(request: Request) -> JSONResponse:
    """GET /sessions/{session_id}: 404 unless the caller owns the session."""
    try:
        user_id = authenticate(request)
    except AuthError as e:
        return JSONResponse({"error": str(e)}, status_code=401)

    ctx = get_context(request)
    session_id = request.path_params.get("session_id", "")

    session = await ctx.database.get_session(session_id, user_id)
    if session is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)

    return JSONResponse({"data": session})


async def get_session_messages(request: Request) -> JSONResponse:
    try:
        user_id = authenticate(request)
    except AuthError as e:
        return JSONResponse({"error": str(e)}, status_code=401)

    ctx = get_context(request)
    session_id = request.path_params.get("session_id", "")

    if await ctx.database.get_session(session_id, user_id) is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)

    try:
        messages = await ctx.database.list_messages(session_id)
    except Exception as e:
        logger.error(f"Error reading messages for session {session_id}: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse({"data": messages})
