"""
Supervisor for one CLI child process.

Owns the asyncio subprocess and its pipes, pipes stdout through an
``OutputTranslator`` and publishes notifications to subscribed listeners:

    output         one per parsed stdout event
    error_output   one per stderr line, verbatim
    process_error  configuration or spawn failure; the handle stays stopped
    exit           exactly once, after both output streams are drained

Every notification payload has the same event shape:
``{type: "event", event_type, data, session_id, timestamp}``.
"""

import asyncio
import os
import signal
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from termrelay.errors import ConfigurationError, ProcessSpawnError, UsageError
from termrelay.logger import get_logger
from termrelay.output.classifier import LineClassifier
from termrelay.output.translator import OutputTranslator

logger = get_logger(__name__)

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]

READ_CHUNK_SIZE = 4096
DEFAULT_KILL_GRACE_SECONDS = 5.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessSupervisor:
    """
    Bridges one session to its CLI process.

    Listeners are awaited in registration order from the reader task of the
    channel that produced the notification, so each channel keeps its own
    arrival order.
    """

    def __init__(
        self,
        session_id: str,
        model: Optional[str] = None,
        working_directory: Optional[str] = None,
        *,
        command: str = "claude",
        args: Optional[List[str]] = None,
        api_key: Optional[str] = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        classifier: Optional[LineClassifier] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        self.session_id = session_id
        self.model = model
        self.working_directory = working_directory
        self.command = command
        self.args = list(args) if args is not None else ["--dangerously-skip-permissions"]
        self.api_key = api_key
        self.kill_grace_seconds = kill_grace_seconds
        self.env = env or {}
        self.translator = OutputTranslator(session_id, classifier)

        self._listeners: List[Listener] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._running = False
        self._exit_task: Optional[asyncio.Task] = None
        self._escalation_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def build_command(self) -> List[str]:
        argv = [self.command, *self.args]
        if self.model:
            argv += ["--model", self.model]
        return argv

    async def start(self) -> bool:
        """
        Spawn the CLI process.

        Returns:
            True if the process is running. Configuration and spawn failures
            are reported as a ``process_error`` notification and return False.

        Raises:
            UsageError: If the process is already running.
        """
        if self._running:
            raise UsageError("Process already running")

        if not self.api_key:
            error = ConfigurationError("ANTHROPIC_API_KEY environment variable is not set")
            logger.error(f"Cannot start session {self.session_id}: {error}")
            await self._emit(
                "process_error",
                self._event("error", {"message": str(error), "source": "config"}),
            )
            return False

        argv = self.build_command()
        env = {
            **os.environ,
            **self.env,
            "ANTHROPIC_API_KEY": self.api_key,
            "TERM": "xterm-256color",
            "COLUMNS": "120",
            "LINES": "40",
        }

        logger.info(
            f"Starting {argv[0]} for session {self.session_id} "
            f"(model={self.model}, cwd={self.working_directory})"
        )

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.working_directory,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            error = ProcessSpawnError(f"Failed to spawn '{self.command}': {e}")
            logger.error(f"Session {self.session_id}: {error}")
            self._process = None
            await self._emit(
                "process_error",
                self._event("error", {"message": str(error), "source": "process"}),
            )
            return False

        self._running = True
        self.translator.reset()
        self._exit_task = asyncio.create_task(self._watch(self._process))
        return True

    async def write(self, text: str) -> None:
        """Send one line of input to the process, adding the newline if missing."""
        if self._process is None or not self._running:
            raise UsageError("Process not running")

        if not text.endswith("\n"):
            text += "\n"

        try:
            self._process.stdin.write(text.encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise UsageError(f"Process input closed: {e}") from e

    def abort(self) -> None:
        """Interrupt the current turn (Ctrl+C). The process stays alive."""
        if self._process is None or not self._running:
            return
        try:
            self._process.send_signal(signal.SIGINT)
            logger.info(f"Sent SIGINT to session {self.session_id}")
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        """Terminate gracefully, escalating to SIGKILL after the grace period."""
        proc = self._process
        if proc is None or proc.returncode is not None:
            return

        try:
            proc.terminate()
        except ProcessLookupError:
            return

        if self._escalation_task is None:
            self._escalation_task = asyncio.get_running_loop().create_task(
                self._escalate(proc)
            )

    async def wait_closed(self) -> None:
        """Wait until the exit notification has been delivered."""
        if self._exit_task is not None:
            await self._exit_task

    # -- Internal ------------------------------------------------------------

    def _event(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "event",
            "event_type": event_type,
            "data": data,
            "session_id": self.session_id,
            "timestamp": _now(),
        }

    async def _emit(self, kind: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(kind, payload)
            except Exception as e:
                logger.error(f"Listener failed on '{kind}' for session {self.session_id}: {e}")

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for event in self.translator.feed(chunk):
                payload = self._event(event.event_type.value, event.data)
                await self._emit("output", payload)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        pending = ""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            lines = (pending + chunk.decode("utf-8", errors="replace")).split("\n")
            pending = lines.pop()
            for line in lines:
                await self._emit_stderr(line)
        if pending:
            await self._emit_stderr(pending)

    async def _emit_stderr(self, line: str) -> None:
        await self._emit(
            "error_output",
            self._event("error", {"message": line.rstrip("\r"), "source": "stderr"}),
        )

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        results = await asyncio.gather(
            self._read_stdout(proc.stdout),
            self._read_stderr(proc.stderr),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Output reader failed for session {self.session_id}: {result}")

        returncode = await proc.wait()
        self._running = False

        if self._escalation_task is not None and not self._escalation_task.done():
            self._escalation_task.cancel()

        if returncode < 0:
            try:
                signal_name = signal.Signals(-returncode).name
            except ValueError:
                signal_name = f"SIG{-returncode}"
            exit_code, reason = None, "signal"
        else:
            signal_name = None
            exit_code = returncode
            reason = "normal" if returncode == 0 else "error"

        logger.info(
            f"Process for session {self.session_id} exited "
            f"(code={exit_code}, signal={signal_name}, reason={reason})"
        )
        await self._emit(
            "exit",
            self._event(
                "session_end",
                {"exit_code": exit_code, "signal": signal_name, "reason": reason},
            ),
        )

    async def _escalate(self, proc: asyncio.subprocess.Process) -> None:
        await asyncio.sleep(self.kill_grace_seconds)
        if proc.returncode is None:
            logger.warning(
                f"Session {self.session_id} ignored SIGTERM for "
                f"{self.kill_grace_seconds}s, sending SIGKILL"
            )
            try:
                proc.kill()
            except ProcessLookupError:
                pass
