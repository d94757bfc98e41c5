import pytest
from pydantic import ValidationError

from toolstream.message import (
    AssistantMessage,
    MessageRole,
    ReasoningMessage,
    ToolRequestMessage,
    ToolResultMessage,
    UserMessage,
    message_adapter,
    message_list_adapter,
)
from toolstream.tools import ToolCallRequest, ToolCallResult


class TestMessages:
    def test_roles(self):
        assert UserMessage(content="hi").role == MessageRole.USER
        assert AssistantMessage(content="x").role == MessageRole.ASSISTANT
        assert ReasoningMessage(content="x").role == MessageRole.ASSISTANT_REASONING

    def test_created_at_is_set(self):
        assert UserMessage(content="hi").created_at is not None

    def test_messages_are_frozen(self):
        msg = UserMessage(content="hi")
        with pytest.raises(ValidationError):
            msg.content = "changed"

    def test_tool_request_needs_a_call(self):
        with pytest.raises(ValidationError):
            ToolRequestMessage(tool_calls=[])

    def test_tool_result_needs_a_result(self):
        with pytest.raises(ValidationError):
            ToolResultMessage(tool_results=[])

    def test_discriminated_round_trip(self):
        history = [
            UserMessage(content="sum 2 and 3"),
            ReasoningMessage(content="use the tool"),
            ToolRequestMessage(tool_calls=[
                ToolCallRequest(id="a", name="sum", arguments={"x": 2, "y": 3}),
            ]),
            ToolResultMessage(tool_results=[
                ToolCallResult(call_id="a", content={"value": 5}),
            ]),
            AssistantMessage(content="5"),
        ]
        data = message_list_adapter.dump_json(history)
        restored = message_list_adapter.validate_json(data)

        assert [type(m) for m in restored] == [type(m) for m in history]
        assert restored == history

    def test_single_message_from_dict(self):
        msg = message_adapter.validate_python({"role": "assistant", "content": "ok"})
        assert isinstance(msg, AssistantMessage)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            message_adapter.validate_python({"role": "system", "content": "x"})
