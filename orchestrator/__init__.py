"""
MCP tool orchestration for a tool-calling language-model agent
"""
