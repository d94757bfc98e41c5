"""Folds a turn's stream events into finalized messages.

The accumulator is a table-driven state machine. Its state is the open
span role, the text buffer with the role that text belongs to, the
tool calls whose arguments are still arriving, and the tool calls that
are complete. Each event type has exactly one handler in
``MessageAccumulator._transitions``:

==================  ====================================================
event               transition
==================  ====================================================
start               reset everything
text_start          finalize buffered content, open a reply span
text_delta          append to the reply buffer (opens one if needed)
text_end            close the reply span, keep its text buffered
reasoning_start     finalize buffered content, open a reasoning span
reasoning_delta     append to the reasoning buffer (opens one if needed)
reasoning_end       finalize the reasoning message
tool_start          finalize buffered content, begin a tool call
tool_delta          append to that call's argument text
tool_end            parse the arguments, mark the call finished
end                 emit the tool_request or the trailing text message
error               reset everything
==================  ====================================================

Inconsistent sequences are logged as warnings and healed. No event
sequence makes the accumulator raise.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Callable

from toolstream.events import (
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    StreamEnd,
    StreamError,
    StreamEvent,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolDelta,
    ToolEnd,
    ToolStart,
)
from toolstream.message import (
    AssistantMessage,
    Message,
    ReasoningMessage,
    ToolRequestMessage,
)
from toolstream.tools import ToolCallRequest

logger = logging.getLogger(__name__)


class SpanRole(enum.Enum):
    NONE = "none"
    REPLY = "reply"
    REASONING = "reasoning"


@dataclass
class _PendingCall:
    name: str
    arguments: str = ""


def parse_arguments(raw: str) -> dict:
    """Parse a tool call's JSON argument text.

    Empty text means the call has no arguments.

    Raises:
        ValueError: If *raw* is not a JSON object.
    """
    if not raw.strip():
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class MessageAccumulator:
    """Builds :class:`~toolstream.message.Message` values from stream events.

    Args:
        logger: Logger for warnings about malformed sequences.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._transitions: dict[type, Callable[[StreamEvent], None]] = {
            StreamStart: self._on_stream_start,
            TextStart: self._on_text_start,
            TextDelta: self._on_text_delta,
            TextEnd: self._on_text_end,
            ReasoningStart: self._on_reasoning_start,
            ReasoningDelta: self._on_reasoning_delta,
            ReasoningEnd: self._on_reasoning_end,
            ToolStart: self._on_tool_start,
            ToolDelta: self._on_tool_delta,
            ToolEnd: self._on_tool_end,
            StreamEnd: self._on_stream_end,
            StreamError: self._on_stream_error,
        }
        self._completed: list[Message] = []
        self._just_finalized: list[Message] = []
        self._reset()

    @property
    def open_role(self) -> SpanRole:
        return self._open_role

    def add_event(self, event: StreamEvent) -> list[Message]:
        """Apply *event* and return the messages it finalized (often none)."""
        self._just_finalized = []
        handler = self._transitions.get(type(event))
        if handler is None:
            self.logger.warning("Ignoring unknown stream event %r", event)
            return []
        handler(event)
        return list(self._just_finalized)

    def drain_completed(self) -> list[Message]:
        """Return every message finalized since the last drain, in order."""
        completed, self._completed = self._completed, []
        return completed

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._open_role = SpanRole.NONE
        self._buffer_role = SpanRole.NONE
        self._buffer = ""
        self._pending_calls: dict[str, _PendingCall] = {}
        self._finished_calls: list[ToolCallRequest] = []

    def _finalize(self, message: Message) -> None:
        self._completed.append(message)
        self._just_finalized.append(message)

    def _flush_buffer(self) -> None:
        """Finalize buffered text as a message of the role it was written under."""
        if self._buffer:
            if self._buffer_role is SpanRole.REASONING:
                self._finalize(ReasoningMessage(content=self._buffer))
            else:
                self._finalize(AssistantMessage(content=self._buffer))
        self._buffer = ""
        self._buffer_role = SpanRole.NONE
        self._open_role = SpanRole.NONE

    def _open_span(self, role: SpanRole) -> None:
        if self._open_role is not SpanRole.NONE:
            self.logger.warning(
                "%s span started while %s span is open; finalizing it",
                role.value, self._open_role.value,
            )
        self._flush_buffer()
        self._open_role = role
        self._buffer_role = role

    def _append(self, role: SpanRole, delta: str) -> None:
        if self._buffer_role not in (role, SpanRole.NONE):
            self.logger.warning(
                "%s delta arrived while buffering %s text; finalizing it",
                role.value, self._buffer_role.value,
            )
            self._flush_buffer()
        self._open_role = role
        self._buffer_role = role
        self._buffer += delta

    def _close_span(self, role: SpanRole) -> None:
        if self._open_role is not role:
            self.logger.warning(
                "%s span ended but %s span is open", role.value,
                self._open_role.value,
            )
        self._open_role = SpanRole.NONE

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_stream_start(self, event: StreamStart) -> None:
        if self._buffer or self._pending_calls or self._finished_calls:
            self.logger.warning("Stream restarted; discarding partial turn state")
        self._reset()

    def _on_text_start(self, event: TextStart) -> None:
        self._open_span(SpanRole.REPLY)

    def _on_text_delta(self, event: TextDelta) -> None:
        self._append(SpanRole.REPLY, event.delta)

    def _on_text_end(self, event: TextEnd) -> None:
        self._close_span(SpanRole.REPLY)

    def _on_reasoning_start(self, event: ReasoningStart) -> None:
        self._open_span(SpanRole.REASONING)

    def _on_reasoning_delta(self, event: ReasoningDelta) -> None:
        self._append(SpanRole.REASONING, event.delta)

    def _on_reasoning_end(self, event: ReasoningEnd) -> None:
        if self._buffer_role is not SpanRole.REASONING:
            self.logger.warning("reasoning_end without an open reasoning span")
            self._open_role = SpanRole.NONE
            return
        self._flush_buffer()

    def _on_tool_start(self, event: ToolStart) -> None:
        if self._open_role is SpanRole.REASONING:
            self.logger.warning("tool_start during reasoning span; finalizing it")
        self._flush_buffer()
        if event.id in self._pending_calls:
            self.logger.warning("Duplicate tool_start for call %s; restarting it", event.id)
        self._pending_calls[event.id] = _PendingCall(name=event.name)

    def _on_tool_delta(self, event: ToolDelta) -> None:
        call = self._pending_calls.get(event.id)
        if call is None:
            self.logger.warning("tool_delta for unknown call %s", event.id)
            return
        call.arguments += event.delta

    def _on_tool_end(self, event: ToolEnd) -> None:
        call = self._pending_calls.pop(event.id, None)
        if call is None:
            self.logger.warning("tool_end for unknown or finished call %s", event.id)
            return
        self._finish_call(event.id, call)

    def _finish_call(self, call_id: str, call: _PendingCall) -> None:
        try:
            arguments = parse_arguments(call.arguments)
        except ValueError as e:
            self.logger.warning(
                "Unparseable arguments for tool call %s (%s): %r",
                call_id, call.name, call.arguments,
            )
            self._finished_calls.append(ToolCallRequest(
                id=call_id, name=call.name, raw_arguments=call.arguments,
                argument_error=f"Invalid JSON arguments: {e}",
            ))
            return
        self._finished_calls.append(ToolCallRequest(
            id=call_id, name=call.name, arguments=arguments,
            raw_arguments=call.arguments,
        ))
        self.logger.debug("Completed tool call %s (%s)", call.name, call_id)

    def _on_stream_end(self, event: StreamEnd) -> None:
        for call_id, call in list(self._pending_calls.items()):
            self.logger.warning("Stream ended inside tool call %s; closing it", call_id)
            self._finish_call(call_id, call)
        self._pending_calls.clear()

        if not self._finished_calls:
            self._flush_buffer()
        else:
            trailing_text = None
            if self._buffer_role is SpanRole.REPLY and self._buffer:
                trailing_text = self._buffer
                self._buffer = ""
            else:
                self._flush_buffer()
            self._finalize(ToolRequestMessage(
                content=trailing_text, tool_calls=list(self._finished_calls),
            ))
        self._reset()

    def _on_stream_error(self, event: StreamError) -> None:
        self.logger.error("Stream error, discarding partial turn: %s", event.message)
        self._reset()
