"""
Error taxonomy for the orchestrator

Tool-level errors never leave a turn: their text becomes the content of a
tool-result message. Only connection and cancellation errors reach the caller.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator errors"""


class ServerConnectionError(OrchestratorError, ConnectionError):
    """Handshake or tool discovery with an MCP server failed"""

    def __init__(self, server_name: str, message: str):
        super().__init__(f"Failed to connect to MCP server '{server_name}': {message}")
        self.server_name = server_name


class ToolError(OrchestratorError):
    """Tool-level failure, surfaced to the model as tool output"""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFound(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Error: tool '{tool_name}' not found")


class MalformedArguments(ToolError):
    def __init__(self, tool_name: str, detail: str):
        super().__init__(
            tool_name, f"Error parsing arguments for tool '{tool_name}': {detail}"
        )


class ToolInvocationError(ToolError):
    def __init__(self, tool_name: str, detail: str):
        super().__init__(tool_name, f"Error calling tool '{tool_name}': {detail}")


class AbortError(OrchestratorError):
    """Cancellation was observed; never retried"""

    def __init__(self, message: str = "Run aborted"):
        super().__init__(message)
