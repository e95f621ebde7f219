"""
Health check endpoint.
"""

import time
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import JSONResponse

from termrelay.logger import get_logger
from termrelay.routes.auth_helpers import get_context

logger = get_logger(__name__)
start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Returns 200 when the database answers, 503 otherwise.
    """
    ctx = get_context(request)
    try:
        await ctx.database.ping()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    return JSONResponse(
        {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": int(time.time() - start_time),
            "active_sessions": len(ctx.registry.list_active()),
        }
    )
