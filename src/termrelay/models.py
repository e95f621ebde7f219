"""
Pydantic models for the client WebSocket protocol.

Covers:
- inbound client intents (message, abort, end_session, new_session, ping, pong)
- outbound control notifications (connected, session_started, error, ...)

Process events (``type == "event"``) are built by the process supervisor and
forwarded as-is.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from termrelay.errors import MalformedInputError

INTENT_TYPES = ("message", "abort", "end_session", "new_session", "ping", "pong")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─── Client → Server ─────────────────────────────────────────────────


class ClientIntent(BaseModel):
    """One inbound frame from the client."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["message", "abort", "end_session", "new_session", "ping", "pong"]
    content: Optional[str] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    project_ref: Optional[str] = None


def parse_intent(raw: Union[str, bytes, Dict[str, Any]]) -> ClientIntent:
    """
    Decode and validate an inbound frame.

    Raises:
        MalformedInputError: On invalid JSON, an unknown type, or bad fields.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            raise MalformedInputError("Invalid JSON") from None

    if not isinstance(data, dict):
        raise MalformedInputError("Invalid JSON")

    if data.get("type") not in INTENT_TYPES:
        raise MalformedInputError(f"Unknown message type: {data.get('type')}")

    try:
        return ClientIntent.model_validate(data)
    except ValidationError as e:
        raise MalformedInputError(f"Invalid message: {e.errors()[0]['msg']}") from None


# ─── Server → Client ─────────────────────────────────────────────────


class Notification(BaseModel):
    """Base for outbound control notifications."""

    type: str
    timestamp: str = Field(default_factory=_now)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConnectedMessage(Notification):
    type: str = "connected"
    user_id: str
    project_ref: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class SessionStartedMessage(Notification):
    type: str = "session_started"
    session_id: str
    model: Optional[str] = None
    working_directory: Optional[str] = None


class MessageReceivedMessage(Notification):
    type: str = "message_received"
    session_id: str


class SessionClearedMessage(Notification):
    type: str = "session_cleared"


class ErrorMessage(Notification):
    type: str = "error"
    message: str
    session_id: Optional[str] = None


class PingMessage(Notification):
    """Server liveness ping; the client answers with ``pong``."""

    type: str = "ping"


class PongMessage(Notification):
    type: str = "pong"
