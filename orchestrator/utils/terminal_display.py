"""
Terminal display utilities with colors and formatting
"""

from orchestrator.core.tools import ToolSpec, is_exit_tool


# ANSI color codes
class Colors:
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    UNDERLINE = "\033[4m"
    RESET = "\033[0m"


def truncate_to_lines(text: str, max_lines: int = 6) -> str:
    """Truncate text to max_lines, adding '...' if truncated"""
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text
    return (
        "\n".join(lines[:max_lines])
        + f"\n{Colors.CYAN}... ({len(lines) - max_lines} more lines){Colors.RESET}"
    )


def format_header(text: str, emoji: str = "") -> str:
    """Format a header with bold"""
    full_text = f"{emoji} {text}" if emoji else text
    return f"{Colors.BOLD}{full_text}{Colors.RESET}"


def format_error(message: str) -> str:
    """Format an error message in red"""
    return f"{Colors.RED}ERROR: {message}{Colors.RESET}"


def format_tool_call(tool_name: str, arguments: str) -> str:
    """Format a tool call message"""
    if is_exit_tool(tool_name):
        return f"{Colors.MAGENTA}{tool_name}{Colors.RESET}"
    return f"{Colors.YELLOW}Calling tool: {Colors.BOLD}{tool_name}{Colors.RESET}{Colors.YELLOW} with arguments: {arguments}{Colors.RESET}"


def format_tool_output(output: str, success: bool, truncate: bool = True) -> str:
    """Format tool output with color and optional truncation"""
    original_length = len(output)
    if truncate:
        output = truncate_to_lines(output, max_lines=6)

    color = Colors.YELLOW if success else Colors.RED
    return f"{color}Tool output ({original_length} chars): {Colors.RESET}\n{output}"


def format_catalog(tools: list[ToolSpec]) -> str:
    """List the tools available to the model, one per line"""
    lines = [format_header(f"{len(tools)} tools available")]
    for tool in tools:
        marker = "*" if is_exit_tool(tool.name) else "-"
        description = tool.description.split("\n", 1)[0]
        lines.append(f"  {marker} {tool.name}: {description}")
    return "\n".join(lines)


def format_termination(reason: str, turns: int) -> str:
    """Format the end of an agent run"""
    color = Colors.RED if reason == "cancelled" else Colors.GREEN
    return f"{color}{Colors.BOLD}Run finished ({reason}) after {turns} turns{Colors.RESET}\n"


def format_separator(char: str = "=", length: int = 60) -> str:
    """Format a separator line"""
    return char * length
