"""
Per-connection intent router.

A ``ConnectionRouter`` owns the session bound to one client connection, the
aggregator folding that session's output, and the subscription to its
supervisor. Intents are handled one at a time in arrival order; supervisor
notifications arrive concurrently from the reader tasks.

A binding is only honoured while the registry still holds the session and
still routes it to this router's transport. Once the registry has ended the
session (and told the client), or another connection has attached to it,
the router persists what it aggregated and lets go without forwarding more.
"""

from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple, Union

from termrelay.errors import MalformedInputError, RelayError, TransportError, UsageError
from termrelay.logger import get_logger
from termrelay.models import (
    ClientIntent,
    ConnectedMessage,
    ErrorMessage,
    MessageReceivedMessage,
    Notification,
    PongMessage,
    SessionClearedMessage,
    SessionStartedMessage,
    parse_intent,
)
from termrelay.output.aggregator import MessageAggregator
from termrelay.output.usage import parse_usage
from termrelay.process.supervisor import ProcessSupervisor
from termrelay.session.registry import ActiveSession, SessionRegistry
from termrelay.transport import Transport

logger = get_logger(__name__)


class ConnectionRouter:
    def __init__(
        self,
        transport: Transport,
        user_id: str,
        registry: SessionRegistry,
        database,
        project_ref: Optional[str] = None,
        default_model: Optional[str] = None,
        default_working_directory: Optional[str] = None,
    ):
        self.transport = transport
        self.user_id = user_id
        self.registry = registry
        self.database = database
        self.project_ref = project_ref
        self.default_model = default_model
        self.default_working_directory = default_working_directory

        self.settings: Dict[str, Any] = {}
        self.current_session_id: Optional[str] = None
        self.aggregator = MessageAggregator()
        self._unsubscribe: Optional[Callable[[], None]] = None

        self._handlers = {
            "message": self._handle_message,
            "abort": self._handle_abort,
            "end_session": self._handle_end_session,
            "new_session": self._handle_new_session,
            "ping": self._handle_ping,
            "pong": self._handle_pong,
        }

    async def on_connect(self) -> None:
        """Load the user's settings and greet the client."""
        self.settings = await self.database.get_user_settings(self.user_id, self.project_ref)
        await self._send(
            ConnectedMessage(
                user_id=self.user_id,
                project_ref=self.project_ref,
                settings=self.settings,
            )
        )

    async def dispatch(self, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """Handle one inbound frame. Malformed frames are reported, never raised."""
        try:
            intent = parse_intent(raw)
        except MalformedInputError as e:
            logger.warning(f"Rejected frame from {self.user_id}: {e}")
            await self._send_error(str(e))
            return

        await self._handlers[intent.type](intent)

    async def close(self) -> None:
        """Connection closed: persist what was aggregated and end bound sessions."""
        session_id = self.current_session_id
        if session_id is not None:
            await self._flush(session_id)
        self._release()
        await self.registry.handle_disconnect(self.transport)

    # -- Intents ---------------------------------------------------------------

    async def _handle_message(self, intent: ClientIntent) -> None:
        content = intent.content
        if not content or not content.strip():
            await self._send_error("Empty message content")
            return

        session_id, supervisor = await self._resolve_session(intent)
        if session_id is None:
            return

        try:
            await self.database.insert_message(session_id, "user", content, "user_message")
        except Exception as e:
            logger.error(f"Failed to store user message for session {session_id}: {e}")
            await self._send_error(f"Failed to store message: {e}", session_id)

        await self._send(MessageReceivedMessage(session_id=session_id))

        try:
            await supervisor.write(content)
        except UsageError as e:
            await self._send_error(f"Failed to send to process: {e}", session_id)

    async def _handle_abort(self, intent: ClientIntent) -> None:
        session_id = intent.session_id or self.current_session_id
        if not session_id:
            return

        entry = self.registry.get(session_id)
        if entry is not None and entry.owner == self.user_id:
            entry.supervisor.abort()

    async def _handle_end_session(self, intent: ClientIntent) -> None:
        await self._end_bound_session("user_ended")

    async def _handle_new_session(self, intent: ClientIntent) -> None:
        await self._end_bound_session("new_session")
        await self._send(SessionClearedMessage())

    async def _handle_ping(self, intent: ClientIntent) -> None:
        await self._send(PongMessage())

    async def _handle_pong(self, intent: ClientIntent) -> None:
        # Liveness is tracked by the connection endpoint
        pass

    # -- Session binding -------------------------------------------------------

    async def _resolve_session(
        self, intent: ClientIntent
    ) -> Tuple[Optional[str], Optional[ProcessSupervisor]]:
        entry = await self._bound_entry()

        if entry is None and intent.session_id:
            entry = await self.registry.attach(intent.session_id, self.user_id, self.transport)
            if entry is not None:
                self._release()
                self._bind(entry.session_id, entry.supervisor)

        if entry is not None:
            self.registry.reset_timeout(entry.session_id)
            return entry.session_id, entry.supervisor

        # The bound session (if any) ended behind our back, e.g. by timeout
        self._release()

        model = intent.model or self.settings.get("preferred_model") or self.default_model
        working_directory = (
            self.settings.get("working_directory") or self.default_working_directory
        )
        project_ref = intent.project_ref or self.project_ref

        try:
            record, supervisor = await self.registry.start_session(
                self.user_id, project_ref, model, working_directory, self.transport
            )
        except RelayError as e:
            logger.warning(f"Session start rejected for {self.user_id}: {e}")
            await self._send_error(str(e))
            return None, None
        except Exception as e:
            logger.error(f"Session start failed for {self.user_id}: {e}")
            await self._send_error(f"Failed to start session: {e}")
            return None, None

        session_id = record["id"]
        self._bind(session_id, supervisor)

        await self._send(
            SessionStartedMessage(
                session_id=session_id,
                model=record.get("model"),
                working_directory=record.get("working_directory"),
            )
        )

        if not await supervisor.start():
            # The supervisor has already reported the failure
            self._release()
            await self.registry.end_session(session_id, "error")
            return None, None

        return session_id, supervisor

    def _bind(self, session_id: str, supervisor: ProcessSupervisor) -> None:
        self.current_session_id = session_id
        self.aggregator.reset()
        self._unsubscribe = supervisor.subscribe(partial(self._on_notification, session_id))

    def _release(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.current_session_id = None
        self.aggregator.reset()

    async def _bound_entry(self) -> Optional[ActiveSession]:
        """The bound session, if this connection still owns its delivery."""
        session_id = self.current_session_id
        if session_id is None:
            return None
        entry = self.registry.get(session_id)
        if entry is None or entry.transport is not self.transport:
            await self._let_go(session_id)
            return None
        return entry

    async def _let_go(self, session_id: str) -> None:
        if self.registry.get(session_id) is None:
            logger.debug(f"Session {session_id} was ended by the registry")
        else:
            logger.info(f"Session {session_id} moved to another connection of {self.user_id}")
        await self._flush(session_id)
        self._release()

    async def _end_bound_session(self, reason: str) -> None:
        entry = await self._bound_entry()
        if entry is None:
            return
        await self._flush(entry.session_id)
        self._release()
        await self.registry.end_session(entry.session_id, reason)

    # -- Supervisor notifications ---------------------------------------------

    async def _on_notification(
        self, session_id: str, kind: str, payload: Dict[str, Any]
    ) -> None:
        if session_id != self.current_session_id:
            return
        if await self._bound_entry() is None:
            return

        if kind == "output":
            await self._forward(payload)
            self.aggregator.add_event(payload)
            if payload.get("event_type") == "usage":
                await self._record_usage(session_id, payload["data"].get("raw", ""))

        elif kind == "error_output":
            await self._forward(payload)
            self.aggregator.add_event(payload)

        elif kind == "process_error":
            await self._forward(payload)

        elif kind == "exit":
            await self._forward(payload)
            await self._flush(session_id)
            self._release()
            reason = "error" if payload["data"].get("reason") == "error" else "process_exit"
            await self.registry.end_session(session_id, reason, notify=False)

    async def _flush(self, session_id: str) -> None:
        """Persist the aggregated assistant response, if there is one."""
        message = self.aggregator.finalize()
        if not message.has_content:
            return
        try:
            await self.database.insert_message(
                session_id,
                "assistant",
                message.content,
                "assistant_response",
                message.extras(),
            )
        except Exception as e:
            logger.error(f"Failed to store assistant message for session {session_id}: {e}")

    async def _record_usage(self, session_id: str, raw: str) -> None:
        figures = parse_usage(raw)
        if figures.is_empty:
            return
        try:
            await self.database.update_session_tokens(
                session_id, figures.tokens_in, figures.tokens_out, figures.cost_usd
            )
        except Exception as e:
            logger.error(f"Failed to record usage for session {session_id}: {e}")

    # -- Output ----------------------------------------------------------------

    async def _forward(self, payload: Dict[str, Any]) -> None:
        try:
            await self.transport.send(payload)
        except TransportError as e:
            logger.debug(f"Dropped notification for {self.user_id}: {e}")

    async def _send(self, notification: Notification) -> None:
        await self._forward(notification.to_payload())

    async def _send_error(self, message: str, session_id: Optional[str] = None) -> None:
        await self._send(ErrorMessage(message=message, session_id=session_id))
