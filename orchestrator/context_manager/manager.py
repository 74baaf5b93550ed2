"""
Context management for conversation history
"""

import json
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Template

from orchestrator.core.messages import Message
from orchestrator.core.tools import EXIT_TOOL_NAMES, ToolSpec

PROMPT_FILE = Path(__file__).parent.parent / "prompts" / "system_prompt.yaml"


class ContextManager:
    """
    Owns the conversation: an ordered, append-only list of messages.

    Only the agent loop and its turn processor write to it. Renderers and
    loggers read ``snapshot()``.
    """

    def __init__(
        self,
        tool_specs: list[ToolSpec] | None = None,
        system_prompt: str | None = None,
    ):
        self.system_prompt = (
            system_prompt
            if system_prompt is not None
            else self._load_system_prompt(tool_specs or [])
        )
        self.items: list[Message] = [Message(role="system", content=self.system_prompt)]

    def _load_system_prompt(self, tool_specs: list[ToolSpec]) -> str:
        """Load and render the system prompt from YAML file with Jinja2"""
        with open(PROMPT_FILE, "r") as f:
            prompt_data = yaml.safe_load(f)
            template_str = prompt_data.get("system_prompt", "")

        provider_tools = [t for t in tool_specs if t.name not in EXIT_TOOL_NAMES]
        template = Template(template_str)
        return template.render(
            tools=provider_tools,
            num_tools=len(provider_tools),
            exit_tools=sorted(EXIT_TOOL_NAMES),
        )

    def add_message(self, message: Message) -> None:
        """Add a message to the history"""
        self.items.append(message)

    def get_messages(self) -> list[dict[str, Any]]:
        """Get all messages for sending to LLM"""
        return [message.to_llm() for message in self.items]

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self.items)

    @property
    def last_message(self) -> Message:
        return self.items[-1]

    def __len__(self) -> int:
        return len(self.items)

    def save(self, path: str | Path) -> None:
        """Write the conversation to a JSON file"""
        with open(path, "w") as f:
            json.dump(self.get_messages(), f, indent=2, ensure_ascii=False)
