from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from mcp.types import CallToolResult, ImageContent, TextContent

from toolstream.errors import NotFoundError
from toolstream.providers import (
    LocalToolProvider,
    MCPToolProvider,
    _output_from_mcp,
    provider_from_endpoint,
)
from toolstream.tools import Tool, ToolOutput


def add(x: int, y: int) -> int:
    """Add two integers."""
    return x + y


async def lookup(key: str) -> dict:
    return {"key": key, "found": True}


def shout(text: str) -> str:
    return text.upper()


class TestLocalToolProvider:
    @pytest.mark.asyncio
    async def test_lists_tools(self):
        provider = LocalToolProvider([add, Tool(shout, name="yell")])
        await provider.connect()
        entries = await provider.list_tools()
        assert [e.name for e in entries] == ["add", "yell"]
        assert entries[0].description == "Add two integers."

    @pytest.mark.asyncio
    async def test_non_string_results_are_serialized(self):
        provider = LocalToolProvider([add])
        output = await provider.call_tool("add", {"x": 2, "y": 3})
        assert output == ToolOutput(content="5")

    @pytest.mark.asyncio
    async def test_dict_results_pass_through(self):
        provider = LocalToolProvider([lookup])
        output = await provider.call_tool("lookup", {"key": "k"})
        assert output.content == {"key": "k", "found": True}

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        provider = LocalToolProvider([add])
        with pytest.raises(NotFoundError):
            await provider.call_tool("nope", {})


class TestOutputFromMCP:
    def test_text_parts_joined(self):
        result = CallToolResult(content=[
            TextContent(type="text", text="line one"),
            TextContent(type="text", text="line two"),
        ])
        assert _output_from_mcp(result) == ToolOutput(content="line one\nline two")

    def test_error_flag_kept(self):
        result = CallToolResult(
            content=[TextContent(type="text", text="bad input")], isError=True,
        )
        assert _output_from_mcp(result).is_error

    def test_structured_content_preferred(self):
        result = CallToolResult(
            content=[TextContent(type="text", text='{"value": 5}')],
            structuredContent={"value": 5},
        )
        assert _output_from_mcp(result).content == {"value": 5}

    def test_empty_content(self):
        result = CallToolResult(content=[])
        assert _output_from_mcp(result).content == "[No content returned by tool]"

    def test_mixed_content_kept_as_parts(self):
        result = CallToolResult(content=[
            TextContent(type="text", text="chart"),
            ImageContent(type="image", data="aGk=", mimeType="image/png"),
        ])
        content = _output_from_mcp(result).content
        assert isinstance(content, list)
        assert [p["type"] for p in content] == ["text", "image"]


class TestProviderFromEndpoint:
    def test_url_becomes_mcp_provider(self):
        provider = provider_from_endpoint("http://localhost:8000/sse")
        assert isinstance(provider, MCPToolProvider)
        assert provider.transport == "sse"

    def test_provider_passes_through(self):
        local = LocalToolProvider([add])
        assert provider_from_endpoint(local) is local

    @pytest.mark.asyncio
    async def test_close_before_connect_is_noop(self):
        await MCPToolProvider("http://localhost:8000/mcp", transport="streamable-http").close()


class FakeClientSession:
    def __init__(self, read_stream, write_stream):
        self.streams = (read_stream, write_stream)
        self.initialized = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def initialize(self):
        self.initialized = True

    async def list_tools(self):
        return SimpleNamespace(tools=[
            SimpleNamespace(name="echo", description=None, inputSchema=None),
        ])

    async def call_tool(self, name, arguments):
        return CallToolResult(content=[TextContent(type="text", text=arguments["text"])])


def fake_transport(opened, *streams):
    @asynccontextmanager
    async def client(url):
        opened.append(url)
        yield streams
    return client


class TestMCPTransport:
    def test_sse_client_used_for_sse(self):
        with patch("toolstream.providers.sse_client") as sse, \
                patch("toolstream.providers.streamablehttp_client") as http:
            MCPToolProvider("http://localhost:8000/sse")._open_streams()
        sse.assert_called_once_with("http://localhost:8000/sse")
        http.assert_not_called()

    def test_streamable_http_client_used_for_streamable_http(self):
        with patch("toolstream.providers.sse_client") as sse, \
                patch("toolstream.providers.streamablehttp_client") as http:
            MCPToolProvider(
                "http://localhost:8000/mcp", transport="streamable-http",
            )._open_streams()
        http.assert_called_once_with("http://localhost:8000/mcp")
        sse.assert_not_called()

    def test_unknown_transport(self):
        with pytest.raises(ValueError, match="carrier-pigeon"):
            MCPToolProvider("http://x", transport="carrier-pigeon")._open_streams()

    @pytest.mark.asyncio
    async def test_streamable_http_session_lifecycle(self):
        opened = []
        # streamable HTTP yields a third item, the session-id getter.
        transport = fake_transport(opened, "read", "write", lambda: "sid")
        provider = MCPToolProvider("http://localhost:8000/mcp", transport="streamable-http")

        with patch("toolstream.providers.streamablehttp_client", transport), \
                patch("toolstream.providers.ClientSession", FakeClientSession):
            await provider.connect()
            session = provider._session
            tools = await provider.list_tools()
            output = await provider.call_tool("echo", {"text": "hi"})
            await provider.close()

        assert opened == ["http://localhost:8000/mcp"]
        assert session.initialized
        assert session.streams == ("read", "write")
        assert tools[0].name == "echo"
        assert tools[0].input_schema == {"type": "object", "properties": {}}
        assert output == ToolOutput(content="hi")
        assert provider._session is None

    @pytest.mark.asyncio
    async def test_connect_failure_is_raised(self):
        @asynccontextmanager
        async def refused(url):
            raise ConnectionError("refused")
            yield

        provider = MCPToolProvider("http://localhost:8000/sse", timeout=1.0)
        with patch("toolstream.providers.sse_client", refused):
            with pytest.raises(ConnectionError, match="refused"):
                await provider.connect()
        assert provider._session is None
