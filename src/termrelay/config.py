"""
Runtime configuration.

Values are read from the process environment after ``.env`` has been loaded
with python-dotenv. ``Settings.from_env()`` builds an immutable snapshot that
is passed explicitly to the components that need it.
"""

import os
import shlex
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_WORKSPACE = "/home/ubuntu/workspace"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


class Settings(BaseModel):
    """Server settings. Field defaults mirror the documented environment defaults."""

    model_config = {"frozen": True}

    host: str = "0.0.0.0"
    port: int = 9622
    log_level: str = "INFO"
    log_file: Optional[str] = None

    database_url: str = "sqlite:///termrelay.db"
    jwt_secret: Optional[str] = None

    # Child process
    anthropic_api_key: Optional[str] = None
    cli_command: str = "claude"
    cli_args: List[str] = Field(
        default_factory=lambda: ["--dangerously-skip-permissions"]
    )
    workspace_dir: str = DEFAULT_WORKSPACE
    default_model: str = DEFAULT_MODEL
    project_ref: Optional[str] = None

    # Limits and timers
    max_sessions_per_user: int = 3
    session_timeout_ms: int = 3_600_000
    kill_grace_seconds: float = 5.0
    heartbeat_interval_seconds: float = 30.0
    max_payload_bytes: int = 1_048_576

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Load ``.env`` (without overriding real env vars) and build settings."""
        load_dotenv(env_file or PROJECT_DIR / ".env")

        cli_args = os.getenv("CLI_ARGS")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 9622),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
            database_url=os.getenv("DATABASE_URL", "sqlite:///termrelay.db"),
            jwt_secret=os.getenv("JWT_SECRET") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            cli_command=os.getenv("CLI_COMMAND", "claude"),
            cli_args=(
                shlex.split(cli_args)
                if cli_args is not None
                else ["--dangerously-skip-permissions"]
            ),
            workspace_dir=os.getenv("WORKSPACE_DIR", DEFAULT_WORKSPACE),
            default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
            project_ref=os.getenv("PROJECT_REF") or None,
            max_sessions_per_user=_env_int("MAX_SESSIONS_PER_USER", 3),
            session_timeout_ms=_env_int("SESSION_TIMEOUT_MS", 3_600_000),
            kill_grace_seconds=_env_float("KILL_GRACE_SECONDS", 5.0),
            heartbeat_interval_seconds=_env_float("HEARTBEAT_INTERVAL_SECONDS", 30.0),
            max_payload_bytes=_env_int("MAX_PAYLOAD_BYTES", 1_048_576),
        )
