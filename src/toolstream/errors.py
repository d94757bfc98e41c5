"""Exception hierarchy for toolstream.

Only :class:`TransportError` ends a turn. Tool-side errors are turned
into ``is_error`` results by the orchestrator and handed back to the
model.
"""


class ToolstreamError(Exception):
    """Base class for every error raised by toolstream."""


class TransportError(ToolstreamError):
    """The model backend was unreachable or its stream broke."""


class TurnLimitError(ToolstreamError):
    """A run exceeded the orchestrator's ``max_turns``."""


class ToolInvocationError(ToolstreamError):
    """A tool call could not be carried out.

    Args:
        message: Human readable description.
        tool_name: Name of the tool that was requested.
    """

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name


class NotFoundError(ToolInvocationError):
    """No connected provider advertises the requested tool."""


class ArgumentParseError(ToolInvocationError):
    """The model produced arguments that are not a JSON object."""


class AllProvidersUnreachableError(ToolstreamError):
    """Every configured tool provider failed to connect.

    Args:
        failures: Mapping of provider name to the error it raised.
    """

    def __init__(self, failures: dict[str, BaseException]):
        self.failures = failures
        names = ", ".join(failures) or "none"
        super().__init__(
            f"Failed to connect to all {len(failures)} tool provider(s): {names}"
        )


class SessionNotFoundError(ToolstreamError):
    """The session id is unknown to the store."""


class SessionNotOpenError(ToolstreamError):
    """The session exists but has not been opened on this manager."""
