"""Optional OpenTelemetry instrumentation for toolstream.

Call ``toolstream.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the package works
identically without it.

Spans that stay open across ``yield`` points in an async generator are
started without being made current, because the generator may resume
in a different context than the one it was suspended in. Callers make
such a span current only while they are running, with ``activate``.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager, contextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "toolstream") -> None:
    """Enable OpenTelemetry tracing for all toolstream operations.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install toolstream[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import toolstream
        toolstream.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install toolstream[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("toolstream instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def run_span(session_id: str):
    """Wrap one ``TurnOrchestrator.run()`` invocation."""
    if _tracer is None:
        yield None
        return
    span = _tracer.start_span(
        "invoke_agent toolstream",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.conversation.id": session_id,
        },
    )
    try:
        yield span
    finally:
        span.end()


@asynccontextmanager
async def completion_span(system: str, model: str):
    """Wrap one streaming backend call in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    span = _tracer.start_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    )
    try:
        yield span
    finally:
        span.end()


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


@contextmanager
def activate(span):
    """Make *span* current for the duration of the block without ending it.

    Used around each resumption of a long-lived span so that spans
    started inside the block are parented to it. No-ops when *span*
    is ``None``.
    """
    if span is None:
        yield
        return
    from opentelemetry import trace

    with trace.use_span(
        span,
        end_on_exit=False,
        record_exception=False,
        set_status_on_exception=False,
    ):
        yield


def record_usage(span, usage, response_model: str | None = None):
    """Set token-usage and response-model attributes on a span."""
    if span is None or usage is None:
        return
    if getattr(usage, "prompt_tokens", None) is not None:
        span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    if getattr(usage, "completion_tokens", None) is not None:
        span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)
    if response_model:
        span.set_attribute("gen_ai.response.model", response_model)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
