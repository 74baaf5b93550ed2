"""
Streaming chat-completion access

The turn logic consumes any InferenceGateway; LiteLLMGateway is the one used
in production. Provider chunks are normalized into StreamChunk so the turn
state machine never touches provider-specific objects.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

from litellm import acompletion


@dataclass
class ToolCallFragment:
    """Partial tool call as streamed by the model"""

    index: int = 0
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass
class StreamChunk:
    text: str = ""
    tool_calls: list[ToolCallFragment] = field(default_factory=list)

    @property
    def has_tool_intent(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.tool_calls


class InferenceGateway(Protocol):
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> AsyncIterator[StreamChunk]: ...


def chunk_from_litellm(chunk: Any) -> StreamChunk:
    """Convert a litellm ModelResponseStream into a StreamChunk"""
    if not chunk.choices:
        return StreamChunk()

    delta = chunk.choices[0].delta
    fragments = []
    for tc in getattr(delta, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        fragments.append(
            ToolCallFragment(
                index=getattr(tc, "index", 0) or 0,
                id=tc.id or None,
                name=(function.name if function else None) or None,
                arguments=(function.arguments if function else None) or "",
            )
        )
    return StreamChunk(text=getattr(delta, "content", None) or "", tool_calls=fragments)


class LiteLLMGateway:
    """InferenceGateway backed by litellm's streaming acompletion"""

    def __init__(self, model: str, api_key: str | None = None):
        self.model = model
        self.api_key = api_key

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> AsyncIterator[StreamChunk]:
        kwargs: dict[str, Any] = {}
        if self.api_key:
            kwargs["api_key"] = self.api_key

        response = await acompletion(
            model=self.model,
            messages=messages,
            tools=tools,
            tool_choice=tool_choice,
            stream=True,
            **kwargs,
        )
        async for chunk in response:
            yield chunk_from_litellm(chunk)
