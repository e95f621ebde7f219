"""
SQL persistence for sessions, messages and per-user settings.

Built on SQLModel. Queries are synchronous; the async methods run them in a
worker thread so a slow database never stalls other sessions on the event
loop. SQLite is the default backend; any SQLAlchemy URL works.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional

from anyio import to_thread
from sqlalchemy import JSON, Column, text
from sqlmodel import Field, Session, SQLModel, create_engine, select

from termrelay.logger import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = {"completed", "aborted", "error", "timeout"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class SessionRecord(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    project_ref: Optional[str] = Field(default=None, index=True)
    model: Optional[str] = None
    working_directory: Optional[str] = None
    status: str = Field(default="active", index=True)
    started_at: datetime = Field(default_factory=_utcnow, index=True)
    ended_at: Optional[datetime] = None
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost_usd: float = 0.0
    meta: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MessageRecord(SQLModel, table=True):
    __tablename__ = "messages"

    id: str = Field(default_factory=_new_id, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id", index=True)
    role: str = Field(index=True)
    content: Optional[str] = None
    event_type: Optional[str] = None
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    file_changes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    bash_commands: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    errors: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    raw_output: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)


class UserSettingsRecord(SQLModel, table=True):
    __tablename__ = "user_settings"

    user_id: str = Field(primary_key=True)
    project_ref: str = Field(primary_key=True)
    preferred_model: Optional[str] = None
    working_directory: Optional[str] = None
    auto_approve_safe_commands: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


def _dump(record: SQLModel) -> Dict[str, Any]:
    data = record.model_dump(mode="json")
    if "meta" in data:
        data["metadata"] = data.pop("meta")
    return data


class SessionDatabase:
    """Persistence gateway used by the session registry and router."""

    def __init__(
        self,
        database_url: str = "sqlite:///termrelay.db",
        default_model: Optional[str] = None,
        default_working_directory: Optional[str] = None,
    ):
        self.database_url = database_url
        self.default_model = default_model
        self.default_working_directory = default_working_directory

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(database_url, connect_args=connect_args)
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    async def _run(self, fn, *args, **kwargs):
        return await to_thread.run_sync(partial(fn, *args, **kwargs))

    def dispose(self) -> None:
        self.engine.dispose()

    # -- Sessions --------------------------------------------------------------

    def _create_session(
        self,
        user_id: str,
        project_ref: Optional[str],
        model: Optional[str],
        working_directory: Optional[str],
    ) -> Dict[str, Any]:
        record = SessionRecord(
            user_id=user_id,
            project_ref=project_ref,
            model=model,
            working_directory=working_directory,
            status="active",
        )
        with self._session() as session:
            session.add(record)
            session.commit()
        return _dump(record)

    async def create_session(
        self,
        user_id: str,
        project_ref: Optional[str],
        model: Optional[str],
        working_directory: Optional[str],
    ) -> Dict[str, Any]:
        """Insert an ``active`` session row and return it."""
        return await self._run(
            self._create_session, user_id, project_ref, model, working_directory
        )

    def _update_session_status(
        self, session_id: str, status: str, metadata: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            record = session.get(SessionRecord, session_id)
            if record is None:
                return None
            record.status = status
            record.meta = {**(record.meta or {}), **(metadata or {})}
            record.updated_at = _utcnow()
            if status in TERMINAL_STATUSES:
                record.ended_at = _utcnow()
            session.add(record)
            session.commit()
            return _dump(record)

    async def update_session_status(
        self, session_id: str, status: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Set status, merge metadata, and stamp ``ended_at`` for terminal statuses."""
        return await self._run(self._update_session_status, session_id, status, metadata)

    def _update_session_tokens(
        self, session_id: str, tokens_in: int, tokens_out: int, cost_usd: float
    ) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            record = session.get(SessionRecord, session_id)
            if record is None:
                return None
            record.total_tokens_in += tokens_in
            record.total_tokens_out += tokens_out
            record.total_cost_usd += cost_usd
            record.updated_at = _utcnow()
            session.add(record)
            session.commit()
            return _dump(record)

    async def update_session_tokens(
        self, session_id: str, tokens_in: int = 0, tokens_out: int = 0, cost_usd: float = 0.0
    ) -> Optional[Dict[str, Any]]:
        return await self._run(
            self._update_session_tokens, session_id, tokens_in, tokens_out, cost_usd
        )

    def _list_sessions(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        with self._session() as session:
            stmt = (
                select(SessionRecord)
                .where(SessionRecord.user_id == user_id)
                .order_by(SessionRecord.started_at.desc())
                .limit(limit)
            )
            return [_dump(r) for r in session.exec(stmt).all()]

    async def list_sessions(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._run(self._list_sessions, user_id, limit)

    def _get_session(self, session_id: str, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            record = session.get(SessionRecord, session_id)
            if record is None or (user_id is not None and record.user_id != user_id):
                return None
            return _dump(record)

    async def get_session(
        self, session_id: str, user_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch a session, optionally only if it belongs to ``user_id``."""
        return await self._run(self._get_session, session_id, user_id)

    # -- Messages --------------------------------------------------------------

    def _insert_message(
        self,
        session_id: str,
        role: str,
        content: Optional[str],
        event_type: Optional[str],
        extras: Dict[str, Any],
    ) -> Dict[str, Any]:
        record = MessageRecord(
            session_id=session_id,
            role=role,
            content=content,
            event_type=event_type,
            tool_calls=extras.get("tool_calls") or [],
            file_changes=extras.get("file_changes") or [],
            bash_commands=extras.get("bash_commands") or [],
            errors=extras.get("errors") or [],
            tokens_in=extras.get("tokens_in"),
            tokens_out=extras.get("tokens_out"),
            raw_output=extras.get("raw_output"),
        )
        with self._session() as session:
            session.add(record)
            session.commit()
        return _dump(record)

    async def insert_message(
        self,
        session_id: str,
        role: str,
        content: Optional[str],
        event_type: Optional[str] = None,
        extras: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self._run(
            self._insert_message, session_id, role, content, event_type, extras or {}
        )

    def _list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        with self._session() as session:
            stmt = (
                select(MessageRecord)
                .where(MessageRecord.session_id == session_id)
                .order_by(MessageRecord.created_at.asc())
            )
            return [_dump(r) for r in session.exec(stmt).all()]

    async def list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        return await self._run(self._list_messages, session_id)

    # -- User settings ---------------------------------------------------------

    def _get_user_settings(self, user_id: str, project_ref: Optional[str]) -> Dict[str, Any]:
        with self._session() as session:
            record = session.get(UserSettingsRecord, (user_id, project_ref or ""))
            if record is not None:
                return _dump(record)

        return {
            "user_id": user_id,
            "project_ref": project_ref,
            "preferred_model": self.default_model,
            "working_directory": self.default_working_directory,
            "auto_approve_safe_commands": False,
        }

    async def get_user_settings(
        self, user_id: str, project_ref: Optional[str]
    ) -> Dict[str, Any]:
        """Return stored settings, or defaults when the user has none."""
        return await self._run(self._get_user_settings, user_id, project_ref)

    def _update_user_settings(
        self, user_id: str, project_ref: Optional[str], settings: Dict[str, Any]
    ) -> Dict[str, Any]:
        key = (user_id, project_ref or "")
        with self._session() as session:
            record = session.get(UserSettingsRecord, key)
            if record is None:
                record = UserSettingsRecord(user_id=user_id, project_ref=key[1])
            for field_name in (
                "preferred_model",
                "working_directory",
                "auto_approve_safe_commands",
            ):
                if field_name in settings:
                    setattr(record, field_name, settings[field_name])
            record.updated_at = _utcnow()
            session.add(record)
            session.commit()
            return _dump(record)

    async def update_user_settings(
        self, user_id: str, project_ref: Optional[str], settings: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._run(self._update_user_settings, user_id, project_ref, settings)

    # -- Health ----------------------------------------------------------------

    def _ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    async def ping(self) -> bool:
        return await self._run(self._ping)
