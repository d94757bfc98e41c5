import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from toolstream.accumulator import MessageAccumulator
from toolstream.backend import ModelBackend
from toolstream.errors import (
    ArgumentParseError,
    ToolInvocationError,
    TransportError,
    TurnLimitError,
)
from toolstream.events import TERMINAL_EVENTS, StreamError, StreamEvent
from toolstream.instrumentation import activate, record_error, run_span, tool_span
from toolstream.message import Message, ToolRequestMessage, ToolResultMessage
from toolstream.router import ToolRouter
from toolstream.store import SessionStore
from toolstream.tools import ToolCallRequest, ToolCallResult, ToolCatalogEntry

logger = logging.getLogger(__name__)


class OrchestratorState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOLS = "awaiting_tools"
    ERROR = "error"


def _error_result(call_id: str, content: str) -> ToolCallResult:
    return ToolCallResult(call_id=call_id, content=content, is_error=True)


class TurnOrchestrator:
    """Drives the model/tool loop for one session.

    The orchestrator owns the session's in-memory history. ``run``
    appends the new message, streams the model, and dispatches
    requested tool calls. It stops once a turn requests no tools. Runs
    on the same orchestrator must not overlap.

    Args:
        backend: Streaming model backend.
        router: Tool router; ``None`` or a disconnected router means
            the session runs without tools.
        history: Previously persisted messages to resume from.
        store: Where finalized messages are appended, if anywhere.
        session_id: Key used with *store* and in traces.
        max_turns: Upper bound on model round trips per run.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        backend: ModelBackend,
        router: ToolRouter | None = None,
        history: list[Message] | None = None,
        store: SessionStore | None = None,
        session_id: str | None = None,
        max_turns: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self.backend = backend
        self.router = router
        self.store = store
        self.session_id = session_id
        self.max_turns = max_turns
        self.logger = logger or logging.getLogger(__name__)
        self.state = OrchestratorState.IDLE
        self._history: list[Message] = list(history or [])

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    async def run(
        self, new_message: Message,
    ) -> AsyncIterator[StreamEvent | ToolResultMessage]:
        """Process *new_message*, yielding stream events and tool results.

        Backend failures end the run with the backend's ``error``
        event; nothing is raised and the session stays usable.
        """
        self.state = OrchestratorState.IDLE
        await self._record(new_message)

        async with run_span(self.session_id or "") as span:
            turn = 0
            while True:
                turn += 1
                if self.max_turns is not None and turn > self.max_turns:
                    error = TurnLimitError(f"Exceeded {self.max_turns} model turns")
                    self.logger.warning("[Turn %d] %s", turn, error)
                    record_error(span, error)
                    self.state = OrchestratorState.ERROR
                    yield StreamError(message=str(error), error_type="TurnLimitError")
                    return

                accumulator = MessageAccumulator(logger=self.logger)
                pending: dict[str, asyncio.Task] = {}
                unanswered: list[ToolRequestMessage] = []
                try:
                    self.state = OrchestratorState.STREAMING
                    terminal = None
                    tools = self._catalog()
                    self.logger.info(
                        "[Turn %d] Streaming with %d message(s) and %d tool(s)",
                        turn, len(self._history), len(tools),
                    )
                    try:
                        async with aclosing(self.backend.submit(self.history, tools)) as stream:
                            while True:
                                with activate(span):
                                    event = await anext(stream, None)
                                if event is None:
                                    break
                                yield event
                                with activate(span):
                                    for message in accumulator.add_event(event):
                                        if isinstance(message, ToolRequestMessage):
                                            self._start_tools(message, pending, turn)
                                if isinstance(event, TERMINAL_EVENTS):
                                    terminal = event
                                    break
                    except Exception as e:
                        self.logger.error("[Turn %d] Model stream raised: %s", turn, e)
                        terminal = StreamError(message=f"{type(e).__name__}: {e}")
                        yield terminal

                    if terminal is None:
                        terminal = StreamError(message="Model stream ended without a terminal event")
                        yield terminal
                    if isinstance(terminal, StreamError):
                        self.logger.error("[Turn %d] Turn aborted: %s", turn, terminal.message)
                        record_error(span, TransportError(terminal.message))
                        self.state = OrchestratorState.ERROR
                        return

                    finalized = accumulator.drain_completed()
                    for message in finalized:
                        if isinstance(message, ToolRequestMessage):
                            unanswered.append(message)
                        await self._record(message)
                    self.logger.info(
                        "[Turn %d] Stream ended (%s); added %d message(s)",
                        turn, terminal.reason, len(finalized),
                    )

                    if not pending:
                        self.logger.info("[Turn %d] No tool calls; run complete", turn)
                        self.state = OrchestratorState.IDLE
                        return

                    self.state = OrchestratorState.AWAITING_TOOLS
                    for request in list(unanswered):
                        result_message = await self._collect_results(request, pending, turn)
                        unanswered.remove(request)
                        await self._record(result_message)
                        yield result_message
                finally:
                    for task in pending.values():
                        if not task.done():
                            task.cancel()
                    if unanswered:
                        await self._answer_abandoned(unanswered, turn)

    def _catalog(self) -> list[ToolCatalogEntry]:
        if self.router is None or not self.router.is_connected:
            return []
        return self.router.catalog()

    async def _record(self, message: Message) -> None:
        self._history.append(message)
        if self.store is not None and self.session_id is not None:
            await self.store.append_message(self.session_id, message)

    async def _answer_abandoned(self, requests: list[ToolRequestMessage], turn: int) -> None:
        """Close out tool requests whose results were never recorded.

        Runs while the run is being cancelled or closed, so the store
        write is shielded and its failure only logged.
        """
        for request in requests:
            self.logger.warning(
                "[Turn %d] Run stopped with %d tool call(s) unanswered",
                turn, len(request.tool_calls),
            )
            message = ToolResultMessage(tool_results=[
                _error_result(call.id, "Tool execution was cancelled")
                for call in request.tool_calls
            ])
            self._history.append(message)
            if self.store is None or self.session_id is None:
                continue
            try:
                await asyncio.shield(self.store.append_message(self.session_id, message))
            except Exception as e:
                self.logger.error("Could not store cancelled tool results: %s", e)

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    def _start_tools(
        self, message: ToolRequestMessage, pending: dict[str, asyncio.Task], turn: int,
    ) -> None:
        self.logger.info(
            "[Turn %d] Starting %d tool call(s)", turn, len(message.tool_calls),
        )
        for call in message.tool_calls:
            if call.id in pending:
                self.logger.warning("[Turn %d] Duplicate tool call id %s ignored", turn, call.id)
                continue
            pending[call.id] = asyncio.create_task(self._execute(call))

    async def _execute(self, call: ToolCallRequest) -> ToolCallResult:
        if call.argument_error is not None:
            error = ArgumentParseError(call.argument_error, tool_name=call.name)
            self.logger.warning("Not calling %s (%s): %s", call.name, call.id, error)
            return _error_result(call.id, f"Error: {error}")
        if self.router is None:
            return _error_result(call.id, f"Error: tool '{call.name}' is unavailable")

        async with tool_span(call.name, call.id) as span:
            try:
                result = await self.router.invoke(call.name, call.arguments, call_id=call.id)
            except ToolInvocationError as e:
                self.logger.warning("Tool %s (%s) failed: %s", call.name, call.id, e)
                record_error(span, e)
                return _error_result(call.id, f"Error: {e}")
        self.logger.info("Tool %s (%s) finished, is_error=%s", call.name, call.id, result.is_error)
        return result

    async def _collect_results(
        self, request: ToolRequestMessage, pending: dict[str, asyncio.Task], turn: int,
    ) -> ToolResultMessage:
        tasks = {
            call.id: pending[call.id]
            for call in request.tool_calls if call.id in pending
        }
        outcomes = dict(zip(
            tasks, await asyncio.gather(*tasks.values(), return_exceptions=True),
        ))

        results = []
        for call in request.tool_calls:
            if call.id not in outcomes:
                self.logger.error("[Turn %d] No execution found for call %s", turn, call.id)
                results.append(_error_result(
                    call.id, "Internal error: tool execution was not started",
                ))
                continue
            outcome = outcomes[call.id]
            if isinstance(outcome, BaseException):
                self.logger.error("[Turn %d] Tool call %s raised: %s", turn, call.id, outcome)
                results.append(_error_result(
                    call.id, f"Tool execution failed: {outcome}",
                ))
            else:
                results.append(outcome)
        return ToolResultMessage(tool_results=results)
