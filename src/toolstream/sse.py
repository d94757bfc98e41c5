"""Server-Sent Events adapter for a session's response stream."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import asdict

from toolstream.events import StreamEvent
from toolstream.message import ToolResultMessage


def encode_event(item: StreamEvent | ToolResultMessage) -> str:
    """Format one stream item as an SSE frame."""
    if isinstance(item, ToolResultMessage):
        return f"event: {item.role}\ndata: {item.model_dump_json()}\n\n"
    return f"event: {item.type}\ndata: {json.dumps(asdict(item))}\n\n"


async def sse_generator(
    stream: AsyncIterator[StreamEvent | ToolResultMessage],
) -> AsyncIterator[str]:
    """Convert a ``submit_message`` stream into SSE-formatted strings."""
    async for item in stream:
        yield encode_event(item)
    yield "event: done\ndata: {}\n\n"
