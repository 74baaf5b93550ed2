"""
Interactive CLI chat with the agent
"""

import argparse
import asyncio
import logging
import os
import signal

import litellm
from dotenv import load_dotenv
from lmnr import Laminar, LaminarLiteLLMCallback

from orchestrator.config import Config, load_config
from orchestrator.context_manager.manager import ContextManager
from orchestrator.core.agent_loop import AgentLoop, TerminationReason
from orchestrator.core.errors import AbortError
from orchestrator.core.gateway import LiteLLMGateway
from orchestrator.core.mcp_client import SessionManager
from orchestrator.core.messages import Message
from orchestrator.core.session import Event
from orchestrator.core.tools import ToolRegistry
from orchestrator.core.turn import TurnProcessor
from orchestrator.utils.terminal_display import (
    format_catalog,
    format_error,
    format_header,
    format_separator,
    format_termination,
    format_tool_call,
    format_tool_output,
)

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit", "/quit", "/exit"}


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("litellm").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def setup_tracing() -> None:
    lmnr_api_key = os.environ.get("LMNR_API_KEY")
    if not lmnr_api_key:
        return
    try:
        Laminar.initialize(project_api_key=lmnr_api_key)
        litellm.callbacks = [LaminarLiteLLMCallback()]
        logger.info("Laminar initialized")
    except Exception as e:
        logger.warning(f"Failed to initialize Laminar: {e}")


def render_event(event: Event) -> None:
    data = event.data or {}
    if event.event_type == "assistant_chunk":
        print(data.get("content", ""), end="", flush=True)
    elif event.event_type == "tool_call":
        print()
        print(format_tool_call(data.get("tool", ""), data.get("arguments", "")))
    elif event.event_type == "tool_output":
        print(format_tool_output(data.get("output", ""), data.get("success", False)))
    elif event.event_type == "terminated":
        print()
        print(format_termination(data.get("reason", ""), data.get("turns", 0)))


async def run_task(
    processor: TurnProcessor, context: ContextManager, config: Config
) -> TerminationReason:
    """Run the agent loop once; Ctrl+C aborts the run, not the session"""
    abort = asyncio.Event()
    agent_loop = AgentLoop(
        processor,
        context,
        max_turns=config.max_turns,
        expect_tool=config.expect_tool,
        abort=abort,
    )

    event_loop = asyncio.get_running_loop()
    event_loop.add_signal_handler(signal.SIGINT, abort.set)
    try:
        async for event in agent_loop.run():
            render_event(event)
    except AbortError:
        print(format_error("Interrupted"))
    finally:
        event_loop.remove_signal_handler(signal.SIGINT)
    return agent_loop.termination


async def get_user_input(prompt: str = "You: ") -> str:
    """Get user input asynchronously"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, prompt)


async def chat(config: Config, task: str | None, transcript: str | None) -> None:
    registry = ToolRegistry()

    async with SessionManager() as session_manager:
        failures = await session_manager.connect_all(
            config.mcp_servers, registry, fail_fast=config.fail_on_connection_error
        )
        for server_name, error in failures:
            print(format_error(f"{server_name}: {error}"))

        catalog = registry.catalog()
        print(format_catalog(catalog))
        print(format_separator())

        context = ContextManager(tool_specs=catalog, system_prompt=config.system_prompt)
        processor = TurnProcessor(
            LiteLLMGateway(config.litellm_model, config.api_key),
            registry,
            session_manager,
            parallel_tool_calls=config.parallel_tool_calls,
        )

        try:
            text = task
            while True:
                if text is None:
                    try:
                        text = await get_user_input()
                    except EOFError:
                        break
                if text.strip().lower() in EXIT_COMMANDS:
                    break
                if not text.strip():
                    text = None
                    continue

                context.add_message(Message(role="user", content=text))
                await run_task(processor, context, config)
                if task is not None:
                    break
                text = None
        finally:
            if transcript:
                context.save(transcript)
                logger.info(f"Transcript written to {transcript}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tool-calling agent over MCP servers")
    parser.add_argument("--config", default="config.json", help="Path to config JSON")
    parser.add_argument("--task", help="Run a single task and exit")
    parser.add_argument("--model", help="Override the model name from the config")
    parser.add_argument("--max-turns", type=int, help="Override the turn budget")
    parser.add_argument("--transcript", help="Write the conversation to this JSON file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.verbose)
    setup_tracing()
    litellm.drop_params = True

    config = load_config(args.config)
    if args.model:
        config.model_name = args.model
    if args.max_turns is not None:
        config.max_turns = args.max_turns

    print(format_header(f"Agent chat ({config.litellm_model})"))
    print("Type your messages below. Type 'exit', 'quit', or '/quit' to end.\n")
    try:
        asyncio.run(chat(config, args.task, args.transcript))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
    print("Goodbye!\n")


if __name__ == "__main__":
    main()
