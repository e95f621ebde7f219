"""
Starlette application for termrelay.

Endpoints:
- /ws: WebSocket session channel
- /health: database health check
- /sessions, /sessions/active, /sessions/{id}, /sessions/{id}/messages

Long-lived state (settings, database, session registry) lives in an
``AppContext`` created at startup and stored on ``app.state.context``.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route, WebSocketRoute

from termrelay.config import Settings
from termrelay.database import SessionDatabase
from termrelay.logger import get_logger, setup_logging
from termrelay.routes.health_routes import health_check
from termrelay.routes.session_routes import (
    get_session,
    get_session_messages,
    list_active_sessions,
    list_sessions,
)
from termrelay.routes.ws_routes import session_websocket_endpoint
from termrelay.session.registry import SessionRegistry

logger = get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    database: SessionDatabase
    registry: SessionRegistry

    @classmethod
    def create(cls, settings: Settings) -> "AppContext":
        database = SessionDatabase(
            settings.database_url,
            default_model=settings.default_model,
            default_working_directory=settings.workspace_dir,
        )
        registry = SessionRegistry.from_settings(settings, database)
        return cls(settings=settings, database=database, registry=registry)

    async def shutdown(self) -> None:
        await self.registry.cleanup()
        self.database.dispose()


def create_app(settings: Optional[Settings] = None) -> Starlette:
    """Build the application. Settings default to the environment."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - initializing services")
        if not settings.jwt_secret:
            logger.warning("JWT_SECRET is not set; every connection will be rejected")
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY is not set; sessions cannot start a process")
        app.state.context = AppContext.create(settings)
        logger.info(
            f"Session registry ready (max {settings.max_sessions_per_user} per user, "
            f"timeout {settings.session_timeout_seconds:.0f}s)"
        )
        try:
            yield
        finally:
            logger.info("Application shutdown - ending sessions")
            await app.state.context.shutdown()

    app = Starlette(
        routes=[
            Route("/health", health_check, methods=["GET"]),
            Route("/sessions", list_sessions, methods=["GET"]),
            Route("/sessions/active", list_active_sessions, methods=["GET"]),
            Route("/sessions/{session_id}", get_session, methods=["GET"]),
            Route("/sessions/{session_id}/messages", get_session_messages, methods=["GET"]),
            WebSocketRoute("/ws", session_websocket_endpoint),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
        lifespan=lifespan,
    )
    return app


def run(settings: Optional[Settings] = None) -> None:
    """Serve the application with uvicorn until interrupted."""
    import uvicorn

    settings = settings or Settings.from_env()
    setup_logging(level=settings.log_level, log_file=settings.log_file)

    app = create_app(settings)
    logger.info(f"Starting termrelay on ws://{settings.host}:{settings.port}/ws")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        ws="wsproto",
        ws_max_size=settings.max_payload_bytes,
    )


if __name__ == "__main__":
    run()
