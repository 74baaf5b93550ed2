"""
Core agent implementation
Tool registry, MCP session management, turn processing and the agent loop
"""

from orchestrator.core.tools import ToolRegistry, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolSpec",
]
