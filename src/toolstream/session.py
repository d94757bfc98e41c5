import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Callable, Sequence, Union

from toolstream.backend import ModelBackend, OpenAIBackend
from toolstream.config import Settings
from toolstream.errors import (
    AllProvidersUnreachableError,
    SessionNotFoundError,
    SessionNotOpenError,
)
from toolstream.events import StreamEvent
from toolstream.message import ToolResultMessage, UserMessage
from toolstream.orchestrator import TurnOrchestrator
from toolstream.providers import ToolProvider, Transport
from toolstream.router import ToolRouter
from toolstream.store import InMemorySessionStore, SQLiteSessionStore, SessionStore

logger = logging.getLogger(__name__)

# A URL, or a zero-argument callable returning a fresh provider.
Endpoint = Union[str, Callable[[], ToolProvider]]


class _OpenSession:
    def __init__(self, orchestrator: TurnOrchestrator, router: ToolRouter):
        self.orchestrator = orchestrator
        self.router = router
        self.lock = asyncio.Lock()


class SessionManager:
    """Caller-facing entry point: session lifecycle and message submission.

    Each open session gets its own :class:`ToolRouter` and
    :class:`TurnOrchestrator`. Submissions to one session are
    serialized; different sessions run independently.

    Args:
        backend: Model backend shared by all sessions.
        store: Conversation persistence.
        endpoints: Tool provider URLs, or factories returning a new
            :class:`ToolProvider`. Each session connects its own
            providers when it is opened, so closing one session never
            disconnects another.
        transport: MCP transport used for URL endpoints.
        max_turns: Passed to each orchestrator.
    """

    def __init__(
        self,
        backend: ModelBackend,
        store: SessionStore,
        endpoints: Sequence[Endpoint] = (),
        transport: Transport = "sse",
        max_turns: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self.backend = backend
        self.store = store
        for endpoint in endpoints:
            if not (isinstance(endpoint, str) or callable(endpoint)):
                raise TypeError(
                    f"Endpoint {endpoint!r} must be a URL or a provider factory; "
                    "provider objects cannot be shared between sessions"
                )
        self.endpoints = list(endpoints)
        self.transport = transport
        self.max_turns = max_turns
        self.logger = logger or logging.getLogger(__name__)
        self._open: dict[str, _OpenSession] = {}
        if self.endpoints:
            self.logger.info("Configured tool endpoints: %s", self.endpoints)
        else:
            self.logger.info("No tool endpoints configured; sessions run without tools")

    @classmethod
    def from_settings(cls, settings: Settings, store: SessionStore | None = None) -> "SessionManager":
        """Build a manager with an OpenAI-compatible backend from *settings*."""
        backend = OpenAIBackend(
            model=settings.model,
            api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            base_url=settings.base_url,
            system_prompt=settings.system_prompt,
            open_marker=settings.reasoning_open,
            close_marker=settings.reasoning_close,
        )
        if store is None:
            store = (
                SQLiteSessionStore(settings.db_path) if settings.db_path
                else InMemorySessionStore()
            )
        return cls(
            backend=backend,
            store=store,
            endpoints=settings.mcp_servers,
            transport=settings.mcp_transport,
            max_turns=settings.max_turns,
        )

    def is_open(self, session_id: str) -> bool:
        return session_id in self._open

    async def create_session(self) -> str:
        """Create a new session in the store and return its id."""
        session_id = str(uuid.uuid4())
        await self.store.create_session(session_id)
        self.logger.info("Created session %s", session_id)
        return session_id

    async def open_session(self, session_id: str) -> None:
        """Reload the session's history and connect its tool router.

        A router that cannot reach any provider is logged and the
        session runs without tools.

        Raises:
            SessionNotFoundError: If the store has no such session.
        """
        if not await self.store.get_session(session_id):
            raise SessionNotFoundError(
                f"Session {session_id} not found. Create the session first."
            )
        if session_id in self._open:
            self.logger.info("Session %s already open; reopening", session_id)
            await self.close_session(session_id)

        history = await self.store.list_messages(session_id)
        self.logger.info("Loaded %d message(s) for session %s", len(history), session_id)

        router = ToolRouter(
            [e if isinstance(e, str) else e() for e in self.endpoints],
            transport=self.transport,
            logger=self.logger,
        )
        try:
            await router.connect()
        except AllProvidersUnreachableError as e:
            self.logger.error("Session %s continues without tools: %s", session_id, e)

        orchestrator = TurnOrchestrator(
            backend=self.backend,
            router=router,
            history=history,
            store=self.store,
            session_id=session_id,
            max_turns=self.max_turns,
            logger=self.logger,
        )
        self._open[session_id] = _OpenSession(orchestrator, router)

    async def create_and_open_session(self) -> str:
        session_id = await self.create_session()
        await self.open_session(session_id)
        return session_id

    async def close_session(self, session_id: str) -> None:
        """Disconnect the session's router and forget the session."""
        entry = self._open.pop(session_id, None)
        if entry is None:
            self.logger.warning("No open session %s to close", session_id)
            return
        await entry.router.close()
        self.logger.info("Closed session %s", session_id)

    async def disconnect_all(self) -> None:
        """Close every open session."""
        session_ids = list(self._open)
        self.logger.info("Disconnecting %d session(s)", len(session_ids))
        await asyncio.gather(*(self.close_session(s) for s in session_ids))

    async def submit_message(
        self, session_id: str, text: str,
    ) -> AsyncIterator[StreamEvent | ToolResultMessage]:
        """Send *text* as a user message and stream the response.

        Raises:
            SessionNotOpenError: If the session was not opened.
        """
        entry = self._open.get(session_id)
        if entry is None:
            raise SessionNotOpenError(
                f"Session {session_id} is not open. Call open_session() first."
            )
        async with entry.lock:
            self.logger.info("Processing user message for session %s", session_id)
            async for item in entry.orchestrator.run(UserMessage(content=text)):
                yield item
            self.logger.info("Finished processing message for session %s", session_id)
