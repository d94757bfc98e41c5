from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from toolstream.tools import ToolCallRequest, ToolCallResult


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ASSISTANT_REASONING = "assistant_reasoning"
    TOOL_REQUEST = "tool_request"
    TOOL_RESULT = "tool_result"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BaseMessage(BaseModel):
    # Finalized messages are shared between history and the store.
    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(default_factory=_now)


class UserMessage(BaseMessage):
    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseMessage):
    role: Literal["assistant"] = "assistant"
    content: str


class ReasoningMessage(BaseMessage):
    role: Literal["assistant_reasoning"] = "assistant_reasoning"
    content: str


class ToolRequestMessage(BaseMessage):
    """Assistant turn that asks for one or more tool calls.

    ``content`` holds reply text the model produced after its tool-call
    spans, if any.
    """

    role: Literal["tool_request"] = "tool_request"
    content: str | None = None
    tool_calls: list[ToolCallRequest] = Field(min_length=1)


class ToolResultMessage(BaseMessage):
    role: Literal["tool_result"] = "tool_result"
    tool_results: list[ToolCallResult] = Field(min_length=1)


Message = Annotated[
    Union[
        UserMessage,
        AssistantMessage,
        ReasoningMessage,
        ToolRequestMessage,
        ToolResultMessage,
    ],
    Field(discriminator="role"),
]

message_adapter: TypeAdapter[Message] = TypeAdapter(Message)
message_list_adapter: TypeAdapter[list[Message]] = TypeAdapter(list[Message])
