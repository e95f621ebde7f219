"""
Tests for SessionDatabase against a temporary SQLite file.
"""

import pytest


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_and_get(self, temp_db):
        record = await temp_db.create_session("user-1", "proj", "claude-x", "/work")

        assert record["status"] == "active"
        assert record["user_id"] == "user-1"
        assert record["ended_at"] is None
        assert record["metadata"] == {}

        fetched = await temp_db.get_session(record["id"])
        assert fetched["id"] == record["id"]
        assert fetched["model"] == "claude-x"

    @pytest.mark.asyncio
    async def test_get_with_wrong_owner(self, temp_db):
        record = await temp_db.create_session("user-1", None, None, None)
        assert await temp_db.get_session(record["id"], user_id="user-2") is None
        assert await temp_db.get_session(record["id"], user_id="user-1") is not None
        assert await temp_db.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_terminal_status_sets_ended_at(self, temp_db):
        record = await temp_db.create_session("user-1", None, None, None)

        updated = await temp_db.update_session_status(
            record["id"], "aborted", {"end_reason": "abort"}
        )
        assert updated["status"] == "aborted"
        assert updated["ended_at"] is not None
        assert updated["metadata"] == {"end_reason": "abort"}

    @pytest.mark.asyncio
    async def test_metadata_is_merged(self, temp_db):
        record = await temp_db.create_session("user-1", None, None, None)
        await temp_db.update_session_status(record["id"], "active", {"a": 1})
        updated = await temp_db.update_session_status(record["id"], "completed", {"b": 2})
        assert updated["metadata"] == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, temp_db):
        assert await temp_db.update_session_status("missing", "completed") is None
        assert await temp_db.update_session_tokens("missing", 1, 1) is None

    @pytest.mark.asyncio
    async def test_token_totals_accumulate(self, temp_db):
        record = await temp_db.create_session("user-1", None, None, None)
        await temp_db.update_session_tokens(record["id"], 100, 20, 0.01)
        updated = await temp_db.update_session_tokens(record["id"], 5, 5, 0.02)

        assert updated["total_tokens_in"] == 105
        assert updated["total_tokens_out"] == 25
        assert updated["total_cost_usd"] == pytest.approx(0.03)

    @pytest.mark.asyncio
    async def test_list_sessions_per_user(self, temp_db):
        for _ in range(3):
            await temp_db.create_session("user-1", None, None, None)
        await temp_db.create_session("user-2", None, None, None)

        assert len(await temp_db.list_sessions("user-1")) == 3
        assert len(await temp_db.list_sessions("user-1", limit=2)) == 2
        assert len(await temp_db.list_sessions("user-2")) == 1
        assert await temp_db.list_sessions("nobody") == []


class TestMessages:
    @pytest.mark.asyncio
    async def test_insert_and_list(self, temp_db):
        session = await temp_db.create_session("user-1", None, None, None)
        await temp_db.insert_message(session["id"], "user", "hello", "user_message")
        await temp_db.insert_message(
            session["id"],
            "assistant",
            "hi there",
            "assistant_response",
            {"tool_calls": [{"name": "Read"}], "errors": [{"message": "x", "source": "stderr"}]},
        )

        messages = await temp_db.list_messages(session["id"])
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[0]["tool_calls"] == []
        assert messages[1]["tool_calls"] == [{"name": "Read"}]
        assert messages[1]["errors"] == [{"message": "x", "source": "stderr"}]
        assert messages[1]["event_type"] == "assistant_response"


class TestUserSettings:
    @pytest.mark.asyncio
    async def test_defaults_when_missing(self, temp_db, tmp_path):
        settings = await temp_db.get_user_settings("user-1", "proj")
        assert settings == {
            "user_id": "user-1",
            "project_ref": "proj",
            "preferred_model": "test-model",
            "working_directory": str(tmp_path),
            "auto_approve_safe_commands": False,
        }

    @pytest.mark.asyncio
    async def test_update_then_get(self, temp_db):
        await temp_db.update_user_settings("user-1", None, {"preferred_model": "opus"})
        settings = await temp_db.get_user_settings("user-1", None)
        assert settings["preferred_model"] == "opus"
        assert settings["project_ref"] == ""

        await temp_db.update_user_settings("user-1", None, {"auto_approve_safe_commands": True})
        settings = await temp_db.get_user_settings("user-1", None)
        assert settings["preferred_model"] == "opus"
        assert settings["auto_approve_safe_commands"] is True


@pytest.mark.asyncio
async def test_ping(temp_db):
    assert await temp_db.ping() is True
