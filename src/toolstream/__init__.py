from toolstream.accumulator import MessageAccumulator
from toolstream.backend import ModelBackend, OpenAIBackend
from toolstream.config import Settings
from toolstream.errors import (
    AllProvidersUnreachableError,
    ArgumentParseError,
    NotFoundError,
    SessionNotFoundError,
    SessionNotOpenError,
    ToolInvocationError,
    ToolstreamError,
    TransportError,
    TurnLimitError,
)
from toolstream.instrumentation import instrument, uninstrument
from toolstream.log import configure_logging
from toolstream.message import (
    AssistantMessage,
    Message,
    MessageRole,
    ReasoningMessage,
    ToolRequestMessage,
    ToolResultMessage,
    UserMessage,
)
from toolstream.orchestrator import OrchestratorState, TurnOrchestrator
from toolstream.providers import LocalToolProvider, MCPToolProvider, ToolProvider
from toolstream.router import ConnectResult, ToolRouter
from toolstream.session import SessionManager
from toolstream.sse import sse_generator
from toolstream.store import InMemorySessionStore, SessionStore, SQLiteSessionStore
from toolstream.streaming import ReasoningSegmenter
from toolstream.tools import (
    Tool,
    ToolCallRequest,
    ToolCallResult,
    ToolCatalogEntry,
    ToolOutput,
    tool,
)

__all__ = [
    "AllProvidersUnreachableError",
    "ArgumentParseError",
    "AssistantMessage",
    "ConnectResult",
    "InMemorySessionStore",
    "LocalToolProvider",
    "MCPToolProvider",
    "Message",
    "MessageAccumulator",
    "MessageRole",
    "ModelBackend",
    "NotFoundError",
    "OpenAIBackend",
    "OrchestratorState",
    "ReasoningMessage",
    "ReasoningSegmenter",
    "SQLiteSessionStore",
    "SessionManager",
    "SessionNotFoundError",
    "SessionNotOpenError",
    "SessionStore",
    "Settings",
    "Tool",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCatalogEntry",
    "ToolInvocationError",
    "ToolOutput",
    "ToolProvider",
    "ToolRequestMessage",
    "ToolResultMessage",
    "ToolRouter",
    "ToolstreamError",
    "TransportError",
    "TurnLimitError",
    "TurnOrchestrator",
    "UserMessage",
    "configure_logging",
    "instrument",
    "sse_generator",
    "tool",
    "uninstrument",
]
