"""
Conversation message types
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class FunctionCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    # tool role only
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def is_tool_result(self) -> bool:
        return self.role == "tool"

    def to_llm(self) -> dict[str, Any]:
        """Message dict as sent to litellm"""
        data = self.model_dump(exclude_none=True)
        data.setdefault("content", None)
        return data
