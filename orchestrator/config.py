import json
import os
import re
from typing import Any, Literal

from pydantic import BaseModel, model_validator

_ENV_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class MCPServerConfig(BaseModel):
    """Configuration for an MCP server"""

    name: str
    transport: Literal["stdio", "sse"] = "stdio"
    command: str | None = None
    args: list[str] = []
    env: dict[str, str] | None = None
    inherit_env: list[str] = ["PATH"]
    url: str | None = None

    @model_validator(mode="after")
    def _check_transport(self) -> "MCPServerConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError(f"MCP server '{self.name}': stdio transport needs a command")
        if self.transport == "sse" and not self.url:
            raise ValueError(f"MCP server '{self.name}': sse transport needs a url")
        return self

    def build_env(self) -> dict[str, str]:
        """Environment for the server process: the inherited subset plus extras"""
        env = {key: os.environ[key] for key in self.inherit_env if key in os.environ}
        env.update(self.env or {})
        return env


class Config(BaseModel):
    """Configuration manager"""

    model_name: str
    provider: str | None = None
    api_key: str | None = None
    system_prompt: str | None = None
    mcp_servers: list[MCPServerConfig] = []
    max_turns: int = 20
    expect_tool: bool = True
    parallel_tool_calls: bool = True
    fail_on_connection_error: bool = False

    @property
    def litellm_model(self) -> str:
        """Model identifier in litellm's "provider/model" form"""
        if self.provider and not self.model_name.startswith(f"{self.provider}/"):
            return f"{self.provider}/{self.model_name}"
        return self.model_name


def _substitute_env(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [_substitute_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _substitute_env(item) for key, item in value.items()}
    return value


def load_config(config_path: str = "config.json") -> Config:
    """Load configuration from file, expanding ${VAR} placeholders"""
    with open(config_path, "r") as f:
        raw = json.load(f)
    return Config.model_validate(_substitute_env(raw))
