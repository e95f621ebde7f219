"""
Typed events produced from CLI output.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class EventType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FILE_EDIT = "file_edit"
    DIFF_ADD = "diff_add"
    DIFF_REMOVE = "diff_remove"
    BASH_COMMAND = "bash_command"
    THINKING = "thinking"
    USAGE = "usage"
    ERROR = "error"
    SESSION_END = "session_end"


@dataclass
class ParsedEvent:
    """One classified unit of process output."""

    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"event_type": self.event_type.value, "data": dict(self.data)}
