"""Tool providers: the remote (or local) endpoints behind the router."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Literal

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from toolstream.errors import NotFoundError
from toolstream.tools import Tool, ToolCatalogEntry, ToolOutput

logger = logging.getLogger(__name__)

Transport = Literal["sse", "streamable-http"]


class ToolProvider(ABC):
    """One tool endpoint.

    The router calls :meth:`connect` once, reads :meth:`list_tools`,
    dispatches through :meth:`call_tool` and finally :meth:`close`.
    """

    name: str = "provider"

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def list_tools(self) -> list[ToolCatalogEntry]:
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class LocalToolProvider(ToolProvider):
    """Serves Python callables in-process.

    Args:
        tools: Functions or :class:`~toolstream.tools.Tool` objects.
        name: Label used in logs.
    """

    def __init__(self, tools: list[Tool | Callable], name: str = "local"):
        self.name = name
        self._tools = {
            t.name: t for t in (
                t if isinstance(t, Tool) else Tool(t) for t in tools
            )
        }

    async def connect(self) -> None:
        logger.debug("Local provider %s serving %d tool(s)", self.name, len(self._tools))

    async def list_tools(self) -> list[ToolCatalogEntry]:
        return [t.catalog_entry() for t in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        tool_obj = self._tools.get(name)
        if tool_obj is None:
            raise NotFoundError(f"Tool '{name}' not found", tool_name=name)
        result = await tool_obj(**arguments)
        if isinstance(result, ToolOutput):
            return result
        if isinstance(result, (str, dict)):
            return ToolOutput(content=result)
        return ToolOutput(content=json.dumps(result, default=str))

    async def close(self) -> None:
        pass


def _output_from_mcp(result: Any) -> ToolOutput:
    """Convert an MCP ``CallToolResult`` into a :class:`ToolOutput`."""
    is_error = bool(getattr(result, "isError", False))
    structured = getattr(result, "structuredContent", None)
    if structured:
        return ToolOutput(content=structured, is_error=is_error)
    parts = result.content or []
    if not parts:
        return ToolOutput(content="[No content returned by tool]", is_error=is_error)
    if all(getattr(p, "type", None) == "text" for p in parts):
        return ToolOutput(
            content="\n".join(p.text for p in parts), is_error=is_error,
        )
    return ToolOutput(
        content=[p.model_dump(mode="json") for p in parts], is_error=is_error,
    )


class MCPToolProvider(ToolProvider):
    """A remote MCP server reached over SSE or streamable HTTP.

    The MCP client context managers must be entered and exited by the
    same task, so the connection lives in a background task that holds
    it open until :meth:`close`.

    Args:
        url: Server endpoint.
        transport: ``"sse"`` or ``"streamable-http"``.
        timeout: Seconds to wait for the initial handshake.
    """

    def __init__(self, url: str, transport: Transport = "sse", timeout: float = 30.0):
        self.name = url
        self.url = url
        self.transport = transport
        self.timeout = timeout
        self._session: ClientSession | None = None
        self._runner: asyncio.Task | None = None
        self._ready: asyncio.Future | None = None
        self._stop: asyncio.Event | None = None

    def _open_streams(self):
        if self.transport == "sse":
            return sse_client(self.url)
        if self.transport == "streamable-http":
            return streamablehttp_client(self.url)
        raise ValueError(f"Unknown MCP transport: {self.transport}")

    async def connect(self) -> None:
        if self._runner is not None:
            raise RuntimeError(f"{self!r} is already connected")
        self._ready = asyncio.get_running_loop().create_future()
        self._stop = asyncio.Event()
        self._runner = asyncio.create_task(self._hold_connection())
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), self.timeout)
        except BaseException:
            await self.close()
            raise
        logger.info("Connected to MCP server %s", self.url)

    async def _hold_connection(self) -> None:
        try:
            async with self._open_streams() as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set_result(None)
                    await self._stop.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            else:
                logger.warning("MCP connection to %s ended with error: %s", self.url, e)
        finally:
            self._session = None

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"{self!r} is not connected")
        return self._session

    async def list_tools(self) -> list[ToolCatalogEntry]:
        result = await self._require_session().list_tools()
        return [
            ToolCatalogEntry(
                name=t.name,
                description=t.description or "No description provided.",
                input_schema=t.inputSchema or {"type": "object", "properties": {}},
            )
            for t in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        result = await self._require_session().call_tool(name, arguments)
        return _output_from_mcp(result)

    async def close(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        self._stop.set()
        if not self._ready.done():
            runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await runner
        if self._ready.done() and not self._ready.cancelled():
            # Retrieve a stored connect failure so it is not reported as unhandled.
            self._ready.exception()
        logger.info("Closed MCP connection to %s", self.url)


def provider_from_endpoint(
    endpoint: str | ToolProvider, transport: Transport = "sse",
) -> ToolProvider:
    """Build a provider for a configured endpoint URL."""
    if isinstance(endpoint, ToolProvider):
        return endpoint
    return MCPToolProvider(endpoint, transport=transport)
