import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from openai import APIError, AsyncOpenAI

from toolstream.events import (
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    StreamEnd,
    StreamError,
    StreamEvent,
    StreamStart,
)
from toolstream.instrumentation import completion_span, record_error, record_usage
from toolstream.message import Message, MessageRole
from toolstream.streaming import (
    DEFAULT_CLOSE_MARKER,
    DEFAULT_OPEN_MARKER,
    ReasoningSegmenter,
    ToolCallFragment,
    ToolCallTracker,
)
from toolstream.tools import ToolCatalogEntry

logger = logging.getLogger(__name__)


class ModelBackend(ABC):
    """A streaming language-model backend.

    ``submit`` must keep span events ordered (start, deltas, end) and
    finish with exactly one :class:`~toolstream.events.StreamEnd` or
    :class:`~toolstream.events.StreamError`.
    """

    system: str = "custom"
    model: str = ""

    @abstractmethod
    def submit(
        self,
        history: list[Message],
        tools: list[ToolCatalogEntry],
    ) -> AsyncIterator[StreamEvent]:
        ...


class _StreamTranslator:
    """Maps chat-completion chunk deltas onto span events.

    Keeps at most one span open: reasoning (from ``reasoning_content``),
    reply/reasoning text (through the segmenter), or one tool call.
    """

    def __init__(self, segmenter: ReasoningSegmenter, tracker: ToolCallTracker):
        self.segmenter = segmenter
        self.tracker = tracker
        self.reasoning_open = False

    def on_delta(self, delta: Any) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        reasoning = (
            getattr(delta, "reasoning_content", None)
            or getattr(delta, "reasoning", None)
        )
        if reasoning:
            events += self.tracker.close()
            if not self.reasoning_open:
                events += self.segmenter.close()
                events.append(ReasoningStart())
                self.reasoning_open = True
            events.append(ReasoningDelta(delta=reasoning))
        if delta.content:
            events += self._end_reasoning()
            events += self.tracker.close()
            events += self.segmenter.feed(delta.content)
        if delta.tool_calls:
            events += self._end_reasoning()
            events += self.segmenter.close()
            for tc in delta.tool_calls:
                fn = tc.function
                events += self.tracker.feed(ToolCallFragment(
                    index=tc.index,
                    call_id=tc.id,
                    name=fn.name if fn else None,
                    arguments_delta=fn.arguments if fn else None,
                ))
        return events

    def close(self) -> list[StreamEvent]:
        return self._end_reasoning() + self.segmenter.close() + self.tracker.close()

    def _end_reasoning(self) -> list[StreamEvent]:
        if not self.reasoning_open:
            return []
        self.reasoning_open = False
        return [ReasoningEnd()]


class OpenAIBackend(ModelBackend):
    """Backend for OpenAI-compatible chat-completions endpoints.

    Works with OpenAI itself, OpenRouter and vLLM. Reasoning that the
    model writes inline between marker tags is split into reasoning
    spans.

    Args:
        model: Model name sent with every request.
        api_key: Defaults to ``OPENAI_API_KEY``.
        base_url: Alternative endpoint, e.g. ``http://localhost:8000/v1``.
        client: A preconfigured ``AsyncOpenAI`` client.
        system_prompt: Prepended to every request, never stored.
        open_marker: Inline marker that opens a reasoning span.
        close_marker: Inline marker that closes a reasoning span.
        include_reasoning: Replay stored reasoning to the model,
            wrapped in the markers.
    """

    system = "openai"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        system_prompt: str | None = None,
        open_marker: str = DEFAULT_OPEN_MARKER,
        close_marker: str = DEFAULT_CLOSE_MARKER,
        include_reasoning: bool = False,
        logger: logging.Logger | None = None,
    ):
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key or os.getenv("OPENAI_API_KEY"),
                base_url=base_url,
                max_retries=5,
                timeout=600.0,
            )
        self.client = client
        self.model = model
        self.system_prompt = system_prompt
        self.open_marker = open_marker
        self.close_marker = close_marker
        self.include_reasoning = include_reasoning
        self.logger = logger or logging.getLogger(__name__)

    def format_tools(self, tools: list[ToolCatalogEntry]) -> list[dict] | None:
        if not tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in tools
        ]

    def format_messages(self, history: list[Message]) -> list[dict]:
        formatted: list[dict] = []
        if self.system_prompt:
            formatted.append({"role": "system", "content": self.system_prompt})

        reasoning = ""
        for msg in history:
            if msg.role == MessageRole.ASSISTANT_REASONING:
                if self.include_reasoning:
                    reasoning += f"{self.open_marker}{msg.content}{self.close_marker}"
                continue

            if msg.role == MessageRole.USER:
                if reasoning:
                    formatted.append({"role": "assistant", "content": reasoning})
                    reasoning = ""
                formatted.append({"role": "user", "content": msg.content})
            elif msg.role == MessageRole.ASSISTANT:
                formatted.append({"role": "assistant", "content": reasoning + msg.content})
                reasoning = ""
            elif msg.role == MessageRole.TOOL_REQUEST:
                content = reasoning + (msg.content or "")
                reasoning = ""
                formatted.append({
                    "role": "assistant",
                    "content": content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": call.raw_arguments or json.dumps(call.arguments),
                            },
                        }
                        for call in msg.tool_calls
                    ],
                })
            elif msg.role == MessageRole.TOOL_RESULT:
                for result in msg.tool_results:
                    content = result.content
                    formatted.append({
                        "role": "tool",
                        "tool_call_id": result.call_id,
                        "content": content if isinstance(content, str) else json.dumps(content),
                    })
        if reasoning:
            formatted.append({"role": "assistant", "content": reasoning})
        return formatted

    async def submit(
        self,
        history: list[Message],
        tools: list[ToolCatalogEntry],
    ) -> AsyncIterator[StreamEvent]:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": self.format_messages(history),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        tool_schemas = self.format_tools(tools)
        if tool_schemas:
            request["tools"] = tool_schemas
            request["tool_choice"] = "auto"

        translator = _StreamTranslator(
            ReasoningSegmenter(self.open_marker, self.close_marker, logger=self.logger),
            ToolCallTracker(logger=self.logger),
        )
        finish_reason = None
        self.logger.info(
            "Streaming %s with %d message(s) and %d tool(s)",
            self.model, len(request["messages"]), len(tools),
        )
        yield StreamStart()
        async with completion_span(self.system, self.model) as span:
            try:
                stream = await self.client.chat.completions.create(**request)
                async with stream:
                    async for chunk in stream:
                        if getattr(chunk, "usage", None) is not None:
                            record_usage(span, chunk.usage, getattr(chunk, "model", None))
                        if not chunk.choices:
                            continue
                        choice = chunk.choices[0]
                        for event in translator.on_delta(choice.delta):
                            yield event
                        if choice.finish_reason:
                            finish_reason = choice.finish_reason
            except APIError as e:
                record_error(span, e)
                self.logger.error("Model stream failed: %s", e)
                yield StreamError(message=f"{type(e).__name__}: {e}")
                return
        for event in translator.close():
            yield event
        yield StreamEnd(reason=finish_reason or "stop")
