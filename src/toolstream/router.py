import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Sequence

from toolstream.errors import AllProvidersUnreachableError, NotFoundError
from toolstream.providers import ToolProvider, Transport, provider_from_endpoint
from toolstream.tools import ToolCallResult, ToolCatalogEntry

logger = logging.getLogger(__name__)


def _labels(providers: list[ToolProvider]) -> list[str]:
    counts = Counter(p.name for p in providers)
    return [
        p.name if counts[p.name] == 1 else f"{p.name}#{i}"
        for i, p in enumerate(providers)
    ]


@dataclass
class ConnectResult:
    """Outcome of one :meth:`ToolRouter.connect` cycle.

    Providers are listed by name. A name shared by several providers is
    suffixed with the provider's position, e.g. ``"local#2"``, so no
    outcome overwrites another.
    """

    connected: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)


class ToolRouter:
    """Presents several tool providers as one catalog.

    Each tool name maps to exactly one provider. When two providers
    advertise the same name, the one that finished connecting last
    owns it. ``connect`` rebuilds the map wholesale and must not run
    concurrently with ``catalog`` or ``invoke``.

    Args:
        endpoints: Provider URLs or :class:`ToolProvider` objects used
            when :meth:`connect` is called without arguments.
        transport: MCP transport for URL endpoints.
        logger: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        endpoints: Sequence[str | ToolProvider] = (),
        transport: Transport = "sse",
        logger: logging.Logger | None = None,
    ):
        self.endpoints = list(endpoints)
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)
        self._providers: list[ToolProvider] = []
        self._entries: dict[str, ToolCatalogEntry] = {}
        self._owners: dict[str, ToolProvider] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and bool(self._providers)

    async def connect(
        self, endpoints: Sequence[str | ToolProvider] | None = None,
    ) -> ConnectResult:
        """Connect to every endpoint concurrently and merge their catalogs.

        Raises:
            AllProvidersUnreachableError: If endpoints were given and
                none of them connected.
        """
        if endpoints is not None:
            self.endpoints = list(endpoints)
        if self._connected:
            self.logger.info("Router already connected; reconnecting")
            await self.close()

        providers = [
            provider_from_endpoint(e, transport=self.transport)
            for e in self.endpoints
        ]
        result = ConnectResult()
        if not providers:
            self.logger.info("No tool providers configured")
            self._connected = True
            return result

        self.logger.info("Connecting to %d tool provider(s)", len(providers))
        await asyncio.gather(*(
            self._connect_one(p, label, result)
            for p, label in zip(providers, _labels(providers))
        ))

        self._connected = True
        self.logger.info(
            "Aggregated %d tool(s) from %d provider(s): %s",
            len(self._entries), len(self._providers), list(self._entries),
        )
        if result.failed:
            self.logger.error(
                "Failed to connect to %d provider(s): %s",
                len(result.failed), list(result.failed),
            )
        if not self._providers:
            raise AllProvidersUnreachableError(result.failed)
        return result

    async def _connect_one(
        self, provider: ToolProvider, label: str, result: ConnectResult,
    ) -> None:
        try:
            await provider.connect()
            entries = await provider.list_tools()
        except Exception as e:
            self.logger.error("Failed to connect to %s: %s", label, e)
            result.failed[label] = e
            try:
                await provider.close()
            except Exception as close_error:
                self.logger.debug("Ignoring close error for %s: %s", provider.name, close_error)
            return

        self._providers.append(provider)
        result.connected.append(label)
        self.logger.info("Found %d tool(s) on %s", len(entries), provider.name)
        for entry in entries:
            previous = self._owners.get(entry.name)
            if previous is not None:
                self.logger.warning(
                    "Duplicate tool name '%s': %s overrides %s",
                    entry.name, provider.name, previous.name,
                )
            self._entries[entry.name] = entry
            self._owners[entry.name] = provider

    def catalog(self) -> list[ToolCatalogEntry]:
        """Return the deduplicated catalog (empty until connected)."""
        if not self.is_connected:
            return []
        return list(self._entries.values())

    async def invoke(
        self, name: str, arguments: dict[str, Any], call_id: str = "",
    ) -> ToolCallResult:
        """Run tool *name* on the provider that owns it.

        Provider failures come back as an ``is_error`` result.

        Raises:
            NotFoundError: If no connected provider owns *name*.
        """
        provider = self._owners.get(name)
        if provider is None:
            raise NotFoundError(f"Tool '{name}' not found or unavailable", tool_name=name)

        self.logger.info("Calling %s on %s with %s", name, provider.name, arguments)
        try:
            output = await provider.call_tool(name, arguments)
        except Exception as e:
            self.logger.error("Tool %s failed on %s: %s", name, provider.name, e)
            return ToolCallResult(
                call_id=call_id,
                content=f"Failed to execute tool '{name}': {e}",
                is_error=True,
            )
        if output.is_error:
            self.logger.warning("Tool %s reported an error", name)
        return ToolCallResult(
            call_id=call_id, content=output.content, is_error=output.is_error,
        )

    async def close(self) -> None:
        """Close every provider concurrently. Errors are logged, not raised."""
        providers = self._providers
        self._providers = []
        self._entries = {}
        self._owners = {}
        self._connected = False
        if not providers:
            return
        self.logger.info("Closing %d tool provider(s)", len(providers))
        results = await asyncio.gather(
            *(p.close() for p in providers), return_exceptions=True,
        )
        for provider, outcome in zip(providers, results):
            if isinstance(outcome, Exception):
                self.logger.error("Error closing %s: %s", provider.name, outcome)
