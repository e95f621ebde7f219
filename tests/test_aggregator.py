"""Tests for MessageAggregator."""

from termrelay.output.aggregator import MessageAggregator
from termrelay.output.events import EventType, ParsedEvent


def ev(event_type, **data):
    return ParsedEvent(EventType(event_type), data)


class TestMessageAggregator:
    def test_empty_finalize(self):
        message = MessageAggregator().finalize()
        assert message.content == ""
        assert message.has_content is False
        assert message.to_dict() == {
            "content": "",
            "tool_calls": [],
            "file_changes": [],
            "bash_commands": [],
            "thinking": [],
            "errors": [],
        }

    def test_text_is_joined_and_trimmed(self):
        agg = MessageAggregator()
        agg.add_event(ev("text", content="Hello"))
        agg.add_event(ev("text", content="world"))
        assert agg.finalize().content == "Hello\nworld"

    def test_tool_result_attaches_to_open_call(self):
        agg = MessageAggregator()
        agg.add_event(ev("tool_call", tool_name="Read", parameters="a.py", status="started"))
        agg.add_event(ev("tool_result", result="120 lines", success=True))
        agg.add_event(ev("tool_result", result="stray", success=False))

        message = agg.finalize()
        assert message.tool_calls == [
            {
                "name": "Read",
                "parameters": "a.py",
                "status": "started",
                "result": "120 lines",
                "success": True,
            }
        ]
        assert message.has_content is True

    def test_orphan_tool_result_is_dropped(self):
        agg = MessageAggregator()
        agg.add_event(ev("tool_result", result="nothing open", success=True))
        assert agg.finalize().tool_calls == []

    def test_diff_lines_attach_to_current_file(self):
        agg = MessageAggregator()
        agg.add_event(ev("diff_add", content="ignored"))
        agg.add_event(ev("file_edit", file_path="a.py", action="edit"))
        agg.add_event(ev("diff_add", content="x = 1"))
        agg.add_event(ev("diff_remove", content="x = 0"))
        agg.add_event(ev("file_edit", file_path="b.py", action="write"))
        agg.add_event(ev("diff_add", content="y = 2"))

        changes = agg.finalize().file_changes
        assert changes == [
            {"file_path": "a.py", "action": "edit", "additions": ["x = 1"], "removals": ["x = 0"]},
            {"file_path": "b.py", "action": "write", "additions": ["y = 2"], "removals": []},
        ]

    def test_bash_thinking_errors(self):
        agg = MessageAggregator()
        agg.add_event(ev("bash_command", command="ls", status="started"))
        agg.add_event(ev("thinking", content="hmm"))
        agg.add_event(ev("error", message="bad", source="stderr"))

        message = agg.finalize()
        assert message.bash_commands == [{"command": "ls", "output": "", "exit_code": None}]
        assert message.thinking == ["hmm"]
        assert message.errors == [{"message": "bad", "source": "stderr"}]
        # tool-less, text-less responses are not worth persisting
        assert message.has_content is False

    def test_accepts_wire_payloads(self):
        agg = MessageAggregator()
        agg.add_event({"type": "event", "event_type": "text", "data": {"content": "hi"}})
        agg.add_event({"type": "event", "event_type": "usage", "data": {"raw": "tokens 5"}})
        assert agg.finalize().content == "hi"

    def test_finalize_resets_and_snapshot_is_independent(self):
        agg = MessageAggregator()
        agg.add_event(ev("tool_call", tool_name="Bash", parameters="ls", status="started"))
        first = agg.finalize()

        agg.add_event(ev("tool_result", result="late", success=True))
        second = agg.finalize()

        assert first.tool_calls[0]["result"] is None
        assert second.tool_calls == []
        assert second.has_content is False

    def test_extras(self):
        agg = MessageAggregator()
        agg.add_event(ev("bash_command", command="pwd", status="started"))
        extras = agg.finalize().extras()
        assert set(extras) == {"tool_calls", "file_changes", "bash_commands", "errors"}
        assert extras["bash_commands"][0]["command"] == "pwd"
