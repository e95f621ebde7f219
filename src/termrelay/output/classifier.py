"""
Line classification for CLI terminal output.

The patterns below track how the CLI currently renders tool calls, diffs and
prompts. They live behind the ``LineClassifier`` protocol so the translator's
buffering never depends on them.
"""

import re
from typing import Callable, List, Optional, Protocol, Tuple

from termrelay.output.events import EventType, ParsedEvent


class LineClassifier(Protocol):
    """Maps one complete line (without its newline) to at most one event."""

    def classify(self, line: str) -> Optional[ParsedEvent]: ...


# CSI and OSC escape sequences emitted by colour terminals
ANSI_ESCAPE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07]*(?:\x07|\x1b\\)")

TOOL_CALL = re.compile(r"^(?:⏺|●|▶|►)\s*(\w+)\s*(.*)$")
TOOL_SUCCESS = re.compile(r"^(?:✓|✔|✅)\s*(.*)$")
TOOL_FAILURE = re.compile(r"^(?:✗|✘|❌|Error:)\s*(.*)$")
FILE_ACTION = re.compile(r"^(Editing|Writing|Reading)\s+(.+)$")
BASH_PROMPT = re.compile(r"^(?:\$|›|>)\s*(.+)$")
THINKING = re.compile(r"^(?:Thinking(?::|\.\.\.)|(?:🤔|💭)(?::|\.\.\.)?)\s*(.*)$")
USAGE = re.compile(r"(?:tokens?|cost).*?(\d+(?:,\d+)?)", re.IGNORECASE)
DECORATIVE = re.compile(r"^[─═━┄┈╌]+$")
RULE_RUN = re.compile(r"^(?:-+|=+)$")

FILE_ACTIONS = {"Editing": "edit", "Writing": "write", "Reading": "read"}

Rule = Callable[[str], Optional[ParsedEvent]]


def _tool_call(line: str) -> Optional[ParsedEvent]:
    match = TOOL_CALL.match(line)
    if not match:
        return None
    return ParsedEvent(
        EventType.TOOL_CALL,
        {
            "tool_name": match.group(1),
            "parameters": match.group(2).strip(),
            "status": "started",
        },
    )


def _tool_success(line: str) -> Optional[ParsedEvent]:
    match = TOOL_SUCCESS.match(line)
    if not match:
        return None
    return ParsedEvent(EventType.TOOL_RESULT, {"result": match.group(1), "success": True})


def _tool_failure(line: str) -> Optional[ParsedEvent]:
    match = TOOL_FAILURE.match(line)
    if not match:
        return None
    return ParsedEvent(EventType.TOOL_RESULT, {"result": match.group(1), "success": False})


def _file_edit(line: str) -> Optional[ParsedEvent]:
    match = FILE_ACTION.match(line)
    if not match:
        return None
    return ParsedEvent(
        EventType.FILE_EDIT,
        {"file_path": match.group(2), "action": FILE_ACTIONS[match.group(1)]},
    )


def _diff_add(line: str) -> Optional[ParsedEvent]:
    if line.startswith("+") and not line.startswith("+++"):
        return ParsedEvent(EventType.DIFF_ADD, {"content": line[1:]})
    return None


def _diff_remove(line: str) -> Optional[ParsedEvent]:
    # "-" and "--" are horizontal rules, not removals
    if line.startswith("-") and not line.startswith("---") and not RULE_RUN.match(line.strip()):
        return ParsedEvent(EventType.DIFF_REMOVE, {"content": line[1:]})
    return None


def _bash_command(line: str) -> Optional[ParsedEvent]:
    match = BASH_PROMPT.match(line)
    if not match:
        return None
    return ParsedEvent(
        EventType.BASH_COMMAND, {"command": match.group(1), "status": "started"}
    )


def _thinking(line: str) -> Optional[ParsedEvent]:
    match = THINKING.match(line)
    if not match:
        return None
    return ParsedEvent(EventType.THINKING, {"content": match.group(1)})


def _usage(line: str) -> Optional[ParsedEvent]:
    if USAGE.search(line):
        return ParsedEvent(EventType.USAGE, {"raw": line})
    return None


DEFAULT_RULES: Tuple[Rule, ...] = (
    _tool_call,
    _tool_success,
    _tool_failure,
    _file_edit,
    _diff_add,
    _diff_remove,
    _bash_command,
    _thinking,
    _usage,
)


def is_noise(line: str) -> bool:
    """Blank lines and horizontal rules carry no content."""
    stripped = line.strip()
    return not stripped or bool(DECORATIVE.match(stripped) or RULE_RUN.match(stripped))


class PatternClassifier:
    """
    Default classifier: ordered rules, first match wins.

    Lines that match no rule fall through to noise suppression and then to
    plain text.
    """

    def __init__(self, rules: Optional[List[Rule]] = None, strip_ansi: bool = True):
        self.rules: List[Rule] = list(rules) if rules is not None else list(DEFAULT_RULES)
        self.strip_ansi = strip_ansi

    def classify(self, line: str) -> Optional[ParsedEvent]:
        line = line.rstrip("\r")
        if self.strip_ansi:
            line = ANSI_ESCAPE.sub("", line)

        for rule in self.rules:
            event = rule(line)
            if event is not None:
                return event

        if is_noise(line):
            return None

        return ParsedEvent(EventType.TEXT, {"content": line})
