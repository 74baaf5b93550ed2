"""
Shared pytest fixtures for the orchestrator tests.
The model is replaced by a scripted gateway and MCP servers by in-process fakes.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable

import pytest
from mcp.types import CallToolResult, TextContent

from orchestrator.context_manager.manager import ContextManager
from orchestrator.core.gateway import StreamChunk, ToolCallFragment
from orchestrator.core.mcp_client import SessionManager
from orchestrator.core.messages import Message
from orchestrator.core.tools import ToolRegistry, ToolSpec
from orchestrator.core.turn import TurnProcessor


def text_chunks(text: str, size: int = 4) -> list[StreamChunk]:
    """Split text into chunks of ``size`` characters"""
    return [StreamChunk(text=text[i : i + size]) for i in range(0, len(text), size)]


def tool_call_chunks(
    call_id: str, name: str, arguments: Any = None, index: int = 0, pieces: int = 3
) -> list[StreamChunk]:
    """
    Stream one tool call the way OpenAI-style providers do: the first fragment
    has id and name, the following ones only the index and argument text.
    """
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
    step = max(1, -(-len(raw) // pieces))
    parts = [raw[i : i + step] for i in range(0, len(raw), step)] or [""]
    chunks = [
        StreamChunk(
            tool_calls=[
                ToolCallFragment(index=index, id=call_id, name=name, arguments=parts[0])
            ]
        )
    ]
    for part in parts[1:]:
        chunks.append(
            StreamChunk(tool_calls=[ToolCallFragment(index=index, arguments=part)])
        )
    return chunks


class ScriptedGateway:
    """
    Replays one script per turn. A script item is either a StreamChunk, which
    is yielded, or a zero-argument callable, which is run when reached.
    The last script repeats once the list is exhausted.
    """

    def __init__(self, scripts: list[list[Any]]):
        self.scripts = scripts
        self.requests: list[dict[str, Any]] = []
        self.chunks_yielded = 0
        self.closed_streams = 0

    async def stream(self, messages, tools, tool_choice="auto"):
        self.requests.append(
            {"messages": messages, "tools": tools, "tool_choice": tool_choice}
        )
        script = self.scripts[min(len(self.requests), len(self.scripts)) - 1]
        try:
            for item in script:
                if callable(item):
                    item()
                    continue
                self.chunks_yielded += 1
                yield item
        finally:
            self.closed_streams += 1


Handler = Callable[[dict[str, Any]], Awaitable[str]]


class FakeServerSession:
    """Stands in for a connected ServerSession"""

    def __init__(self, name: str, handlers: dict[str, Handler] | None = None):
        self.name = name
        self.handlers = handlers or {}
        self.tools = [
            ToolSpec(name=tool_name, description=f"{tool_name} from {name}")
            for tool_name in self.handlers
        ]
        self.connected = True
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]):
        self.calls.append((tool_name, arguments))
        result = await self.handlers[tool_name](arguments)
        if isinstance(result, CallToolResult):
            return result
        return CallToolResult(content=[TextContent(type="text", text=result)])

    async def close(self) -> None:
        self.connected = False


async def echo_handler(arguments: dict[str, Any]) -> str:
    return f"echo: {arguments.get('text', '')}"


@pytest.fixture
def echo_session():
    return FakeServerSession("echo-server", {"echo": echo_handler})


@pytest.fixture
def session_manager():
    return SessionManager()


@pytest.fixture
def registry(echo_session):
    registry = ToolRegistry()
    registry.register_session(echo_session)
    return registry


@pytest.fixture
def context():
    context = ContextManager(system_prompt="You are a test agent.")
    context.add_message(Message(role="user", content="Say hello"))
    return context


@pytest.fixture
def abort():
    return asyncio.Event()


@pytest.fixture
def make_processor(registry, session_manager):
    def _make(scripts: list[list[Any]], parallel_tool_calls: bool = True):
        gateway = ScriptedGateway(scripts)
        processor = TurnProcessor(
            gateway, registry, session_manager, parallel_tool_calls=parallel_tool_calls
        )
        return processor, gateway

    return _make
