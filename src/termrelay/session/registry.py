"""
Registry of live sessions.

Responsible for per-owner concurrency limits, timeout eviction and teardown.
Both indices (by id and by owner) are only mutated under one lock.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from termrelay.errors import CapacityError, TransportError
from termrelay.logger import get_logger
from termrelay.process.supervisor import ProcessSupervisor
from termrelay.transport import Transport

logger = get_logger(__name__)

SupervisorFactory = Callable[[str, Optional[str], Optional[str]], ProcessSupervisor]

STATUS_BY_REASON = {
    "error": "error",
    "abort": "aborted",
    "timeout": "timeout",
}


def status_for_reason(reason: str) -> str:
    """Map an end reason to the persisted terminal status."""
    return STATUS_BY_REASON.get(reason, "completed")


@dataclass
class ActiveSession:
    """A registered session and the handles bound to it."""

    session_id: str
    owner: str
    supervisor: ProcessSupervisor
    transport: Optional[Transport] = None
    project_ref: Optional[str] = None
    model: Optional[str] = None
    working_directory: Optional[str] = None
    timer: Optional[asyncio.Task] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "owner": self.owner,
            "project_ref": self.project_ref,
            "model": self.model,
            "working_directory": self.working_directory,
            "running": self.supervisor.is_running,
            "started_at": self.started_at.isoformat(),
        }


class SessionRegistry:
    """
    Central coordinator for live sessions.

    Timeout timers are asyncio tasks; a timer only acts if it is still the
    current timer of a still-registered session.
    """

    def __init__(
        self,
        database,
        max_sessions_per_owner: int = 3,
        session_timeout: float = 3600.0,
        supervisor_factory: Optional[SupervisorFactory] = None,
    ):
        self.database = database
        self.max_sessions_per_owner = max_sessions_per_owner
        self.session_timeout = session_timeout
        self._factory: SupervisorFactory = supervisor_factory or (
            lambda session_id, model, cwd: ProcessSupervisor(session_id, model, cwd)
        )
        self._sessions: Dict[str, ActiveSession] = {}
        self._by_owner: Dict[str, Set[str]] = {}
        self._reserved: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings, database) -> "SessionRegistry":
        def factory(session_id: str, model: Optional[str], cwd: Optional[str]):
            return ProcessSupervisor(
                session_id,
                model,
                cwd,
                command=settings.cli_command,
                args=settings.cli_args,
                api_key=settings.anthropic_api_key,
                kill_grace_seconds=settings.kill_grace_seconds,
            )

        return cls(
            database,
            max_sessions_per_owner=settings.max_sessions_per_user,
            session_timeout=settings.session_timeout_seconds,
            supervisor_factory=factory,
        )

    # -- Lookup ----------------------------------------------------------------

    def active_count(self, owner: str) -> int:
        return len(self._by_owner.get(owner, ()))

    def can_create(self, owner: str) -> bool:
        pending = self._reserved.get(owner, 0)
        return self.active_count(owner) + pending < self.max_sessions_per_owner

    def get(self, session_id: Optional[str]) -> Optional[ActiveSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def has_session(self, session_id: Optional[str]) -> bool:
        return self.get(session_id) is not None

    def owner_sessions(self, owner: str) -> List[Dict[str, Any]]:
        return [
            self._sessions[sid].to_dict()
            for sid in sorted(self._by_owner.get(owner, ()))
            if sid in self._sessions
        ]

    def list_active(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._sessions.values()]

    # -- Lifecycle -------------------------------------------------------------

    async def start_session(
        self,
        owner: str,
        project_ref: Optional[str],
        model: Optional[str],
        working_directory: Optional[str],
        transport: Optional[Transport] = None,
    ) -> Tuple[Dict[str, Any], ProcessSupervisor]:
        """
        Create and register a new session.

        Returns:
            (session record, supervisor). The supervisor is not started yet.

        Raises:
            CapacityError: If the owner is at the session limit.
        """
        async with self._lock:
            if not self.can_create(owner):
                raise CapacityError(
                    f"Max sessions ({self.max_sessions_per_owner}) reached for user"
                )
            self._reserved[owner] = self._reserved.get(owner, 0) + 1

        try:
            record = await self.database.create_session(
                owner, project_ref, model, working_directory
            )
            session_id = record["id"]
            supervisor = self._factory(session_id, model, working_directory)

            async with self._lock:
                entry = ActiveSession(
                    session_id=session_id,
                    owner=owner,
                    supervisor=supervisor,
                    transport=transport,
                    project_ref=project_ref,
                    model=model,
                    working_directory=working_directory,
                )
                entry.timer = self._arm_timer(session_id)
                self._sessions[session_id] = entry
                self._by_owner.setdefault(owner, set()).add(session_id)
        finally:
            async with self._lock:
                self._release_reservation(owner)

        logger.info(
            f"Session {session_id} started for {owner} "
            f"({self.active_count(owner)}/{self.max_sessions_per_owner} active)"
        )
        return record, supervisor

    async def end_session(
        self, session_id: str, reason: str = "normal", notify: bool = True
    ) -> Optional[Dict[str, Any]]:
        """
        Tear down a session. Unknown or already-ended ids are a no-op.

        Args:
            session_id: Session to end.
            reason: End reason; mapped to the persisted status.
            notify: Send a ``session_end`` event to the bound transport.

        Returns:
            {"session_id", "reason", "status"}, or None if nothing was ended.
        """
        async with self._lock:
            entry = self._sessions.pop(session_id, None)
            if entry is None:
                return None
            owned = self._by_owner.get(entry.owner)
            if owned is not None:
                owned.discard(session_id)
                if not owned:
                    del self._by_owner[entry.owner]

        timer, entry.timer = entry.timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        entry.supervisor.kill()

        if notify:
            await self._notify_end(entry, reason)

        status = status_for_reason(reason)
        try:
            await self.database.update_session_status(
                session_id, status, {"end_reason": reason}
            )
        except Exception as e:
            logger.error(f"Failed to persist end of session {session_id}: {e}")

        logger.info(f"Session {session_id} ended ({reason} -> {status})")
        return {"session_id": session_id, "reason": reason, "status": status}

    def reset_timeout(self, session_id: str) -> bool:
        """Cancel and re-arm the idle timer. Returns False for unknown ids."""
        entry = self._sessions.get(session_id)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        entry.timer = self._arm_timer(session_id)
        return True

    async def attach(
        self, session_id: str, owner: str, transport: Transport
    ) -> Optional[ActiveSession]:
        """Rebind a live session of ``owner`` to a new transport."""
        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None or entry.owner != owner:
                return None
            entry.transport = transport
        logger.info(f"Session {session_id} attached to a new connection")
        return entry

    async def handle_disconnect(self, transport: Transport) -> None:
        """End every session bound to a closed transport."""
        async with self._lock:
            bound = [
                sid for sid, entry in self._sessions.items() if entry.transport is transport
            ]
        for session_id in bound:
            await self.end_session(session_id, "disconnect")

    async def cleanup(self) -> None:
        """End all sessions; called on shutdown."""
        async with self._lock:
            session_ids = list(self._sessions.keys())
        for session_id in session_ids:
            await self.end_session(session_id, "shutdown")

    # -- Internal --------------------------------------------------------------

    def _release_reservation(self, owner: str) -> None:
        remaining = self._reserved.get(owner, 0) - 1
        if remaining > 0:
            self._reserved[owner] = remaining
        else:
            self._reserved.pop(owner, None)

    def _arm_timer(self, session_id: str) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(self._expire(session_id))

    async def _expire(self, session_id: str) -> None:
        await asyncio.sleep(self.session_timeout)
        entry = self._sessions.get(session_id)
        if entry is None or entry.timer is not asyncio.current_task():
            return
        logger.info(f"Session {session_id} timed out after {self.session_timeout}s")
        await self.end_session(session_id, "timeout")

    async def _notify_end(self, entry: ActiveSession, reason: str) -> None:
        transport = entry.transport
        if transport is None or not transport.is_open:
            return
        try:
            await transport.send(
                {
                    "type": "event",
                    "event_type": "session_end",
                    "data": {"reason": reason},
                    "session_id": entry.session_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )
        except TransportError as e:
            logger.debug(f"Could not notify end of session {entry.session_id}: {e}")
