"""
Tool system for the agent
Provides ToolSpec and ToolRegistry, the single catalog that unifies the tools
of every connected MCP server plus the reserved exit tools
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from mcp.types import EmbeddedResource, ImageContent, TextContent

if TYPE_CHECKING:
    from orchestrator.core.mcp_client import ServerSession

logger = logging.getLogger(__name__)

TASK_COMPLETE = "task_complete"
ASK_QUESTION = "ask_question"


def first_block_text(content: list) -> str:
    """
    Convert the content blocks of an MCP tool result to the text shown to the model.

    Only the first block is used. Images and binary resources are replaced by a
    short placeholder since the conversation carries text only.
    """
    if not content:
        return ""

    item = content[0]
    if isinstance(item, TextContent):
        return item.text
    if isinstance(item, ImageContent):
        return f"[Image: {item.mimeType}]"
    if isinstance(item, EmbeddedResource):
        resource = item.resource
        if getattr(resource, "text", None):
            return resource.text
        return f"[Resource: {getattr(resource, 'uri', 'unknown')}]"
    return str(item)


@dataclass(frozen=True)
class ToolSpec:
    """Tool specification for LLM"""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_llm(self) -> dict[str, Any]:
        """OpenAI function-calling format, as accepted by litellm"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


EXIT_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name=TASK_COMPLETE,
        description=(
            "Call this when the task given by the user is fully done. "
            "Put your final answer in the message content before calling it."
        ),
    ),
    ToolSpec(
        name=ASK_QUESTION,
        description=(
            "Call this when you need more information from the user to continue. "
            "Put the question in the message content before calling it."
        ),
    ),
)
EXIT_TOOL_NAMES = frozenset(tool.name for tool in EXIT_TOOLS)


def is_exit_tool(name: str | None) -> bool:
    return name in EXIT_TOOL_NAMES


@dataclass(frozen=True)
class ToolLookup:
    """Result of resolving a tool name: the owning session, or nothing"""

    name: str
    session: Optional[ServerSession] = None

    @property
    def found(self) -> bool:
        return self.session is not None


class ToolRegistry:
    """
    Maps tool names to the MCP server session that provides them.

    The registry does not own sessions; SessionManager does. Registering a name
    that already exists replaces the previous entry and moves it to the end of
    the catalog, so the last server to register a name wins.
    """

    def __init__(self):
        self._tools: dict[str, ToolSpec] = {}
        self._sessions: dict[str, ServerSession] = {}

    def register(self, tool: ToolSpec, session: ServerSession) -> None:
        if is_exit_tool(tool.name):
            logger.warning(
                f"Ignoring tool '{tool.name}' from {session.name}: name is reserved"
            )
            return

        previous = self._sessions.pop(tool.name, None)
        if previous is not None:
            self._tools.pop(tool.name)
            logger.warning(
                f"Tool '{tool.name}' from {session.name} replaces the one from {previous.name}"
            )

        self._tools[tool.name] = tool
        self._sessions[tool.name] = session

    def register_session(self, session: ServerSession) -> None:
        """Register every tool discovered on a session, in discovery order"""
        for tool in session.tools:
            self.register(tool, session)

    def lookup(self, name: str) -> ToolLookup:
        return ToolLookup(name=name, session=self._sessions.get(name))

    def catalog(self) -> list[ToolSpec]:
        """Provider tools in registration order, followed by the exit tools"""
        return [*self._tools.values(), *EXIT_TOOLS]

    def get_tool_specs_for_llm(self) -> list[dict[str, Any]]:
        """Get tool specifications in OpenAI format"""
        return [tool.to_llm() for tool in self.catalog()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
