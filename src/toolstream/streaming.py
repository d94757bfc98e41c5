"""Incremental translation of raw backend output into stream events.

:class:`ReasoningSegmenter` splits a chunked text stream into reply and
reasoning spans around an in-band marker pair such as ``<think>`` /
``</think>``.  :class:`ToolCallTracker` turns the index-keyed tool-call
fragments of OpenAI-style streams into tool span events.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from toolstream.events import (
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    ToolDelta,
    ToolEnd,
    ToolStart,
)

logger = logging.getLogger(__name__)

DEFAULT_OPEN_MARKER = "<think>"
DEFAULT_CLOSE_MARKER = "</think>"


def _partial_marker_length(buffer: str, marker: str) -> int:
    """Length of the longest suffix of *buffer* that is a strict prefix of *marker*."""
    for size in range(min(len(buffer), len(marker) - 1), 0, -1):
        if marker.startswith(buffer[-size:]):
            return size
    return 0


class SegmenterMode(enum.Enum):
    IDLE = "idle"
    IN_TEXT = "in_text"
    IN_REASONING = "in_reasoning"


class ReasoningSegmenter:
    """Classifies text fragments into reply and reasoning spans.

    Output is lossless: the concatenated deltas equal the input with
    the marker strings removed.  A marker split across two fragments is
    recognised because a trailing partial marker is withheld until the
    next fragment (or a final flush) decides it.

    Args:
        open_marker: String that opens a reasoning span.
        close_marker: String that closes a reasoning span.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        open_marker: str = DEFAULT_OPEN_MARKER,
        close_marker: str = DEFAULT_CLOSE_MARKER,
        logger: logging.Logger | None = None,
    ):
        if not open_marker or not close_marker:
            raise ValueError("reasoning markers must be non-empty")
        self.open_marker = open_marker
        self.close_marker = close_marker
        self.logger = logger or logging.getLogger(__name__)
        self.mode = SegmenterMode.IDLE
        self._buffer = ""

    @property
    def is_open(self) -> bool:
        return self.mode is not SegmenterMode.IDLE

    def feed(self, fragment: str, final: bool = False) -> list[StreamEvent]:
        """Consume *fragment* and return the events it completes.

        With ``final=True`` a withheld partial marker is emitted as
        literal content.  The open span stays open; see :meth:`close`.
        """
        self._buffer += fragment
        events: list[StreamEvent] = []
        while self._buffer:
            in_reasoning = self.mode is SegmenterMode.IN_REASONING
            marker = self.close_marker if in_reasoning else self.open_marker
            index = self._buffer.find(marker)
            if index != -1:
                self._emit_content(self._buffer[:index], events)
                self._buffer = self._buffer[index + len(marker):]
                if in_reasoning:
                    events.append(ReasoningEnd())
                    self.mode = SegmenterMode.IDLE
                else:
                    if self.mode is SegmenterMode.IN_TEXT:
                        events.append(TextEnd())
                    events.append(ReasoningStart())
                    self.mode = SegmenterMode.IN_REASONING
                continue

            held = 0 if final else _partial_marker_length(self._buffer, marker)
            cut = len(self._buffer) - held
            self._emit_content(self._buffer[:cut], events)
            self._buffer = self._buffer[cut:]
            break
        return events

    def close(self) -> list[StreamEvent]:
        """Flush withheld text and end the open span, if any."""
        events = self.feed("", final=True)
        if self.mode is SegmenterMode.IN_TEXT:
            events.append(TextEnd())
        elif self.mode is SegmenterMode.IN_REASONING:
            self.logger.debug("Reasoning span closed without %r", self.close_marker)
            events.append(ReasoningEnd())
        self.mode = SegmenterMode.IDLE
        return events

    def reset(self) -> None:
        self.mode = SegmenterMode.IDLE
        self._buffer = ""

    def _emit_content(self, text: str, events: list[StreamEvent]) -> None:
        if not text:
            return
        if self.mode is SegmenterMode.IN_REASONING:
            events.append(ReasoningDelta(delta=text))
            return
        if self.mode is SegmenterMode.IDLE:
            events.append(TextStart())
            self.mode = SegmenterMode.IN_TEXT
        events.append(TextDelta(delta=text))


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


class ToolCallTracker:
    """Turns index-keyed tool-call fragments into tool span events.

    OpenAI-style streams send the call id and name only on the first
    fragment of each index.  Calls arrive one after another, so a new
    index closes the previous call's span.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._ids: dict[int, str] = {}
        self._open_index: int | None = None

    @property
    def is_open(self) -> bool:
        return self._open_index is not None

    def feed(self, fragment: ToolCallFragment) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        if fragment.index not in self._ids:
            if not fragment.call_id:
                self.logger.warning(
                    "Tool call fragment for index %d has no id; dropping",
                    fragment.index,
                )
                return events
            events.extend(self._end_open())
            self._ids[fragment.index] = fragment.call_id
            self._open_index = fragment.index
            events.append(ToolStart(id=fragment.call_id, name=fragment.name or ""))
        elif fragment.index != self._open_index:
            self.logger.warning(
                "Tool call fragment for already closed index %d; dropping",
                fragment.index,
            )
            return events
        if fragment.arguments_delta:
            events.append(ToolDelta(
                id=self._ids[fragment.index], delta=fragment.arguments_delta,
            ))
        return events

    def close(self) -> list[StreamEvent]:
        """End the open tool span, if any."""
        return self._end_open()

    def _end_open(self) -> list[StreamEvent]:
        if self._open_index is None:
            return []
        call_id = self._ids[self._open_index]
        self._open_index = None
        return [ToolEnd(id=call_id)]
