"""Shared pytest fixtures and configuration."""

import asyncio
import sys
import textwrap

import pytest

from termrelay.database import SessionDatabase
from termrelay.errors import TransportError
from termrelay.process.supervisor import ProcessSupervisor

FAKE_CLI = textwrap.dedent(
    """
    import signal
    import sys

    def on_interrupt(signum, frame):
        print("Interrupted", flush=True)

    signal.signal(signal.SIGINT, on_interrupt)
    if "--ignore-term" in sys.argv:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    print("Ready", flush=True)
    for line in sys.stdin:
        line = line.rstrip("\\n")
        if line == "exit":
            sys.exit(0)
        if line == "fail":
            print("fatal: something broke", file=sys.stderr, flush=True)
            sys.exit(3)
        print("● Bash " + line, flush=True)
        print("✓ ran " + line, flush=True)
        print("You said: " + line, flush=True)
    """
)


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    database = SessionDatabase(
        f"sqlite:///{tmp_path / 'test.db'}",
        default_model="test-model",
        default_working_directory=str(tmp_path),
    )
    yield database
    database.dispose()


@pytest.fixture
def fake_cli(tmp_path):
    """Path to a small script that behaves like an interactive CLI."""
    path = tmp_path / "fake_cli.py"
    path.write_text(FAKE_CLI, encoding="utf-8")
    return path


@pytest.fixture
async def make_supervisor(fake_cli, tmp_path):
    """Factory for supervisors that run the fake CLI; reaps them afterwards."""
    created = []

    def factory(session_id="sess-1", model=None, cwd=None, *, api_key="test-key", extra_args=()):
        supervisor = ProcessSupervisor(
            session_id,
            model,
            cwd or str(tmp_path),
            command=sys.executable,
            args=["-u", str(fake_cli), *extra_args],
            api_key=api_key,
            kill_grace_seconds=0.5,
            env={"PYTHONIOENCODING": "utf-8"},
        )
        created.append(supervisor)
        return supervisor

    factory.created = created
    yield factory

    for supervisor in created:
        supervisor.kill()
        await asyncio.wait_for(supervisor.wait_closed(), 5)


class FakeTransport:
    """Collects payloads instead of sending them over a socket."""

    def __init__(self):
        self.sent = []
        self.is_open = True
        self.closed_with = None
        self.pings = 0

    async def send(self, payload):
        if not self.is_open:
            raise TransportError("closed")
        self.sent.append(payload)

    async def ping(self):
        self.pings += 1

    async def close(self, code=1000, reason=None):
        self.is_open = False
        self.closed_with = (code, reason)

    def of_type(self, type_, event_type=None):
        return [
            p
            for p in self.sent
            if p.get("type") == type_
            and (event_type is None or p.get("event_type") == event_type)
        ]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def other_transport():
    """A second client connection of the same user."""
    return FakeTransport()
