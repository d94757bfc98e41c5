"""Events emitted by a model backend stream.

Every event carries a ``type`` tag. The tag names the event in the SSE
encoding and in logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass
class StreamEvent:
    """Base for all streaming events."""

    type: ClassVar[str] = "event"


@dataclass
class StreamStart(StreamEvent):
    type: ClassVar[str] = "start"


@dataclass
class StreamEnd(StreamEvent):
    """Terminal event of a successful stream."""

    type: ClassVar[str] = "end"

    reason: str = "stop"


@dataclass
class StreamError(StreamEvent):
    """Terminal event of a failed stream."""

    type: ClassVar[str] = "error"

    message: str = ""
    error_type: str = "TransportError"


@dataclass
class TextStart(StreamEvent):
    type: ClassVar[str] = "text_start"


@dataclass
class TextDelta(StreamEvent):
    type: ClassVar[str] = "text_delta"

    delta: str = ""


@dataclass
class TextEnd(StreamEvent):
    type: ClassVar[str] = "text_end"


@dataclass
class ReasoningStart(StreamEvent):
    type: ClassVar[str] = "reasoning_start"


@dataclass
class ReasoningDelta(StreamEvent):
    type: ClassVar[str] = "reasoning_delta"

    delta: str = ""


@dataclass
class ReasoningEnd(StreamEvent):
    type: ClassVar[str] = "reasoning_end"


@dataclass
class ToolStart(StreamEvent):
    type: ClassVar[str] = "tool_start"

    id: str = ""
    name: str = ""


@dataclass
class ToolDelta(StreamEvent):
    """A fragment of a tool call's JSON arguments."""

    type: ClassVar[str] = "tool_delta"

    id: str = ""
    delta: str = ""


@dataclass
class ToolEnd(StreamEvent):
    type: ClassVar[str] = "tool_end"

    id: str = ""


TERMINAL_EVENTS = (StreamEnd, StreamError)
