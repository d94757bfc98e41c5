import asyncio
import json
from typing import Any, Callable

import pytest
import pytest_asyncio

from toolstream.backend import ModelBackend
from toolstream.events import (
    StreamEnd,
    StreamEvent,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolDelta,
    ToolEnd,
    ToolStart,
)
from toolstream.providers import ToolProvider
from toolstream.router import ToolRouter
from toolstream.store import InMemorySessionStore
from toolstream.tools import ToolCatalogEntry, ToolOutput


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------

class MockBackend(ModelBackend):
    """Backend that replays pre-queued event scripts. No network calls.

    Each call to ``submit`` pops the next script. A script item that is
    an exception instance is raised at that point in the stream.
    """

    system = "mock"
    model = "mock-model"

    def __init__(self, scripts: list[list] | None = None):
        self.scripts: list[list] = list(scripts or [])
        self.call_log: list[dict] = []
        self.closed = 0

    async def submit(self, history, tools):
        self.call_log.append({"history": list(history), "tools": list(tools)})
        script = self.scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                await asyncio.sleep(0)
                yield item
        finally:
            self.closed += 1


# ---------------------------------------------------------------------------
# Script builder helpers
# ---------------------------------------------------------------------------

def text_script(text: str, reason: str = "stop") -> list[StreamEvent]:
    """Events for a plain text reply."""
    return [
        StreamStart(), TextStart(), TextDelta(delta=text), TextEnd(),
        StreamEnd(reason=reason),
    ]


def tool_script(
    calls: list[tuple[str, str, dict | str]],
    preamble: str | None = None,
) -> list[StreamEvent]:
    """Events for a turn requesting tools.

    Each item in *calls* is ``(call_id, name, args)``; *args* may be a
    raw string to simulate malformed JSON.
    """
    events: list[StreamEvent] = [StreamStart()]
    if preamble:
        events += [TextStart(), TextDelta(delta=preamble), TextEnd()]
    for call_id, name, args in calls:
        raw = args if isinstance(args, str) else json.dumps(args)
        half = len(raw) // 2
        events += [
            ToolStart(id=call_id, name=name),
            ToolDelta(id=call_id, delta=raw[:half]),
            ToolDelta(id=call_id, delta=raw[half:]),
            ToolEnd(id=call_id),
        ]
    events.append(StreamEnd(reason="tool_calls"))
    return events


# ---------------------------------------------------------------------------
# Mock tool provider
# ---------------------------------------------------------------------------

class MockToolProvider(ToolProvider):
    """Provider serving in-memory handlers, with optional failures."""

    def __init__(
        self,
        name: str,
        handlers: dict[str, Callable[..., Any]] | None = None,
        fail_connect: bool = False,
        fail_close: bool = False,
        connect_delay: float = 0.0,
    ):
        self.name = name
        self.handlers = handlers or {}
        self.fail_connect = fail_connect
        self.fail_close = fail_close
        self.connect_delay = connect_delay
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, dict]] = []

    async def connect(self) -> None:
        await asyncio.sleep(self.connect_delay)
        if self.fail_connect:
            raise ConnectionError(f"{self.name} unreachable")
        self.connected = True

    async def list_tools(self) -> list[ToolCatalogEntry]:
        return [
            ToolCatalogEntry(name=n, description=f"{n} on {self.name}")
            for n in self.handlers
        ]

    async def call_tool(self, name, arguments) -> ToolOutput:
        self.calls.append((name, arguments))
        result = self.handlers[name](**arguments)
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, ToolOutput):
            return result
        return ToolOutput(content=result)

    async def close(self) -> None:
        self.closed = True
        if self.fail_close:
            raise RuntimeError(f"{self.name} close failed")


def add(x: int, y: int) -> str:
    return str(x + y)


@pytest.fixture
def mock_backend():
    return MockBackend()


@pytest.fixture
def math_provider():
    return MockToolProvider("math", {"sum": add})


@pytest_asyncio.fixture
async def connected_router(math_provider):
    router = ToolRouter([math_provider])
    await router.connect()
    yield router
    await router.close()


@pytest.fixture
def store():
    return InMemorySessionStore()
