import pytest

from toolstream.errors import SessionNotFoundError
from toolstream.message import (
    AssistantMessage,
    ToolRequestMessage,
    ToolResultMessage,
    UserMessage,
)
from toolstream.store import InMemorySessionStore, SQLiteSessionStore
from toolstream.tools import ToolCallRequest, ToolCallResult


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemorySessionStore()
    else:
        store = SQLiteSessionStore(str(tmp_path / "history.db"))
        yield store
        store.close()


def conversation():
    return [
        UserMessage(content="sum 2 and 3"),
        ToolRequestMessage(tool_calls=[
            ToolCallRequest(id="a", name="sum", arguments={"x": 2, "y": 3}),
        ]),
        ToolResultMessage(tool_results=[ToolCallResult(call_id="a", content="5")]),
        AssistantMessage(content="5"),
    ]


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, any_store):
        assert not await any_store.get_session("s1")
        await any_store.create_session("s1")
        assert await any_store.get_session("s1")

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, any_store):
        await any_store.create_session("s1")
        await any_store.append_message("s1", UserMessage(content="hi"))
        await any_store.create_session("s1")
        assert len(await any_store.list_messages("s1")) == 1

    @pytest.mark.asyncio
    async def test_messages_in_insertion_order(self, any_store):
        await any_store.create_session("s1")
        messages = conversation()
        for message in messages:
            await any_store.append_message("s1", message)

        restored = await any_store.list_messages("s1")
        assert restored == messages
        assert [m.role for m in restored] == [
            "user", "tool_request", "tool_result", "assistant",
        ]
        assert restored[1].tool_calls[0].arguments == {"x": 2, "y": 3}

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, any_store):
        await any_store.create_session("s1")
        await any_store.create_session("s2")
        await any_store.append_message("s1", UserMessage(content="only s1"))
        assert await any_store.list_messages("s2") == []

    @pytest.mark.asyncio
    async def test_unknown_session(self, any_store):
        with pytest.raises(SessionNotFoundError):
            await any_store.list_messages("missing")
        with pytest.raises(SessionNotFoundError):
            await any_store.append_message("missing", UserMessage(content="x"))


class TestSQLiteSessionStore:
    @pytest.mark.asyncio
    async def test_history_survives_reopen(self, tmp_path):
        path = str(tmp_path / "history.db")
        store = SQLiteSessionStore(path)
        await store.create_session("s1")
        messages = conversation()
        for message in messages:
            await store.append_message("s1", message)
        store.close()

        reopened = SQLiteSessionStore(path)
        assert await reopened.list_messages("s1") == messages
        reopened.close()
