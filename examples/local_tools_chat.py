"""Interactive chat with in-process tools.

Demonstrates:

- Serving plain Python functions through a ``LocalToolProvider`` factory
- Streaming reply, reasoning and tool events from ``SessionManager``
- Persisting the conversation to SQLite and resuming it by session id

Usage:
    Add OPENAI_API_KEY=sk-... to .env, then:
    uv run --env-file=.env examples/local_tools_chat.py [session-id]
"""

import asyncio
import sys
from datetime import datetime
from functools import partial

from toolstream import (
    LocalToolProvider,
    OpenAIBackend,
    SessionManager,
    SQLiteSessionStore,
    ToolResultMessage,
    configure_logging,
    tool,
)
from toolstream.events import ReasoningDelta, StreamError, TextDelta, ToolStart


@tool
def add(x: float, y: float) -> float:
    """Add two numbers."""
    return x + y


@tool
def current_time() -> str:
    """Return the local date and time in ISO format."""
    return datetime.now().isoformat(timespec="seconds")


async def main():
    configure_logging("WARNING")
    manager = SessionManager(
        backend=OpenAIBackend(model="gpt-4o-mini", system_prompt="Use tools when they help."),
        store=SQLiteSessionStore("chat_history.db"),
        endpoints=[partial(LocalToolProvider, [add, current_time])],
    )

    if len(sys.argv) > 1:
        session_id = sys.argv[1]
        await manager.open_session(session_id)
    else:
        session_id = await manager.create_and_open_session()
    print(f"Session {session_id} (Ctrl-D to quit)")

    try:
        while True:
            try:
                text = input("\nyou> ")
            except EOFError:
                break
            async for item in manager.submit_message(session_id, text):
                if isinstance(item, TextDelta):
                    print(item.delta, end="", flush=True)
                elif isinstance(item, ReasoningDelta):
                    print(f"\033[2m{item.delta}\033[0m", end="", flush=True)
                elif isinstance(item, ToolStart):
                    print(f"\n[calling {item.name}]")
                elif isinstance(item, ToolResultMessage):
                    for result in item.tool_results:
                        print(f"[{result.call_id} -> {result.content}]")
                elif isinstance(item, StreamError):
                    print(f"\n[error: {item.message}]")
            print()
    finally:
        await manager.disconnect_all()


if __name__ == "__main__":
    asyncio.run(main())
