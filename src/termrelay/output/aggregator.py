"""
Folds a session's event stream into one assistant response record.
"""

from copy import deepcopy
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from termrelay.output.events import EventType, ParsedEvent


@dataclass
class AggregatedMessage:
    content: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    file_changes: List[Dict[str, Any]] = field(default_factory=list)
    bash_commands: List[Dict[str, Any]] = field(default_factory=list)
    thinking: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_content(self) -> bool:
        """True when the record is worth persisting (text or tool activity)."""
        return bool(self.content) or bool(self.tool_calls)

    def extras(self) -> Dict[str, Any]:
        """Structured columns stored alongside the message text."""
        return {
            "tool_calls": self.tool_calls,
            "file_changes": self.file_changes,
            "bash_commands": self.bash_commands,
            "errors": self.errors,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MessageAggregator:
    """
    Accumulates events for the session currently bound to it.

    Tool results and diff lines attach to the most recently opened tool or
    file slot; without an open slot they are dropped.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self._message = AggregatedMessage()
        self._current_tool: Optional[Dict[str, Any]] = None
        self._current_file: Optional[Dict[str, Any]] = None
        self._current_bash: Optional[Dict[str, Any]] = None

    def add_event(self, event: Union[ParsedEvent, Dict[str, Any]]) -> None:
        if isinstance(event, ParsedEvent):
            event_type, data = event.event_type.value, event.data
        else:
            event_type, data = event.get("event_type"), event.get("data") or {}

        msg = self._message

        if event_type == EventType.TEXT.value:
            msg.content += data.get("content", "") + "\n"

        elif event_type == EventType.TOOL_CALL.value:
            self._current_tool = {
                "name": data.get("tool_name"),
                "parameters": data.get("parameters", ""),
                "status": data.get("status"),
                "result": None,
                "success": None,
            }
            msg.tool_calls.append(self._current_tool)

        elif event_type == EventType.TOOL_RESULT.value:
            if self._current_tool is not None:
                self._current_tool["result"] = data.get("result")
                self._current_tool["success"] = data.get("success")
                self._current_tool = None

        elif event_type == EventType.FILE_EDIT.value:
            self._current_file = {
                "file_path": data.get("file_path"),
                "action": data.get("action"),
                "additions": [],
                "removals": [],
            }
            msg.file_changes.append(self._current_file)

        elif event_type == EventType.DIFF_ADD.value:
            if self._current_file is not None:
                self._current_file["additions"].append(data.get("content", ""))

        elif event_type == EventType.DIFF_REMOVE.value:
            if self._current_file is not None:
                self._current_file["removals"].append(data.get("content", ""))

        elif event_type == EventType.BASH_COMMAND.value:
            self._current_bash = {
                "command": data.get("command"),
                "output": "",
                "exit_code": None,
            }
            msg.bash_commands.append(self._current_bash)

        elif event_type == EventType.THINKING.value:
            msg.thinking.append(data.get("content", ""))

        elif event_type == EventType.ERROR.value:
            msg.errors.append(
                {"message": data.get("message"), "source": data.get("source")}
            )

    def finalize(self) -> AggregatedMessage:
        """Return an independent snapshot and reset to the empty baseline."""
        snapshot = deepcopy(self._message)
        snapshot.content = snapshot.content.strip()
        self.reset()
        return snapshot
