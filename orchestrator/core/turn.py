"""
Turn processing: one request/response exchange with the model, including the
tool calls it asks for
"""

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Optional

from lmnr import observe

from orchestrator.context_manager.manager import ContextManager
from orchestrator.core.errors import (
    AbortError,
    MalformedArguments,
    ToolError,
    ToolNotFound,
)
from orchestrator.core.gateway import InferenceGateway, ToolCallFragment
from orchestrator.core.mcp_client import SessionManager
from orchestrator.core.messages import FunctionCall, Message, ToolCall
from orchestrator.core.session import Event
from orchestrator.core.tools import (
    ASK_QUESTION,
    TASK_COMPLETE,
    ToolRegistry,
    is_exit_tool,
)

logger = logging.getLogger(__name__)

EXIT_TOOL_RESULTS = {
    TASK_COMPLETE: "Task marked as complete.",
    ASK_QUESTION: "Question handed to the user.",
}


class TurnOutcome(Enum):
    ANSWERED = "answered"
    TOOL_CALLS = "tool_calls"
    EARLY_EXIT = "early_exit"


class ToolCallAccumulator:
    """
    Joins streamed tool-call fragments into complete calls, keyed by call id.

    Only the first fragment of a call carries its id; later fragments are
    matched to it through their positional index.
    """

    def __init__(self):
        self._calls: dict[str, dict[str, Any]] = {}
        self._ids_by_index: dict[int, str] = {}

    def add(self, fragment: ToolCallFragment) -> None:
        call_id = fragment.id or self._ids_by_index.get(fragment.index)
        if call_id is None:
            call_id = f"call_{uuid.uuid4().hex[:24]}"
        self._ids_by_index[fragment.index] = call_id

        entry = self._calls.setdefault(call_id, {"name": "", "arguments": []})
        if fragment.name and not entry["name"]:
            entry["name"] = fragment.name
        if fragment.arguments:
            entry["arguments"].append(fragment.arguments)

    def calls(self) -> list[ToolCall]:
        return [
            ToolCall(
                id=call_id,
                function=FunctionCall(
                    name=entry["name"], arguments="".join(entry["arguments"])
                ),
            )
            for call_id, entry in self._calls.items()
        ]


def decode_arguments(call: ToolCall) -> dict[str, Any]:
    raw = call.function.arguments.strip()
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedArguments(call.function.name, str(e)) from e
    if not isinstance(arguments, dict):
        raise MalformedArguments(
            call.function.name, f"expected a JSON object, got {type(arguments).__name__}"
        )
    return arguments


def cut_at_exit_tool(calls: list[ToolCall]) -> list[ToolCall]:
    """
    Drop the calls requested after the first exit tool.

    The exit tool result must be the last message of the turn, and the calls
    behind it are never dispatched.
    """
    for position, call in enumerate(calls):
        if is_exit_tool(call.function.name):
            if position + 1 < len(calls):
                logger.debug(
                    f"Dropping {len(calls) - position - 1} tool calls after {call.function.name}"
                )
            return calls[: position + 1]
    return calls


class Turn:
    """
    A single pass over one model response.

    Iterating the turn streams the model, yields Events as they happen and
    appends the resulting messages to the conversation. It can be iterated
    only once; a retry means starting a new turn.
    """

    def __init__(
        self,
        processor: "TurnProcessor",
        context: ContextManager,
        abort: asyncio.Event,
        exit_if_first_chunk_no_tool: bool = False,
    ):
        self.processor = processor
        self.context = context
        self.abort = abort
        self.exit_if_first_chunk_no_tool = exit_if_first_chunk_no_tool
        self.outcome: Optional[TurnOutcome] = None
        self.appended: list[Message] = []
        self._started = False

    def __aiter__(self) -> AsyncIterator[Event]:
        if self._started:
            raise RuntimeError("A turn can only be consumed once")
        self._started = True
        return self._run()

    async def drain(self) -> TurnOutcome:
        async for _ in self:
            pass
        return self.outcome

    def _check_abort(self, where: str) -> None:
        if self.abort.is_set():
            raise AbortError(f"Turn aborted {where}")

    def _commit(self, message: Message) -> None:
        self.context.add_message(message)
        self.appended.append(message)

    async def _run(self) -> AsyncIterator[Event]:
        self._check_abort("before generation")

        registry = self.processor.registry
        stream = self.processor.gateway.stream(
            self.context.get_messages(),
            registry.get_tool_specs_for_llm(),
            tool_choice="auto",
        )
        accumulator = ToolCallAccumulator()
        text_parts: list[str] = []
        first_chunk = True

        try:
            async for chunk in stream:
                self._check_abort("while streaming")
                if chunk.is_empty:
                    continue

                if first_chunk:
                    first_chunk = False
                    if self.exit_if_first_chunk_no_tool and not chunk.has_tool_intent:
                        logger.debug("First chunk has no tool call, ending turn early")
                        self.outcome = TurnOutcome.EARLY_EXIT
                        return

                if chunk.text:
                    text_parts.append(chunk.text)
                    yield Event(event_type="assistant_chunk", data={"content": chunk.text})
                for fragment in chunk.tool_calls:
                    accumulator.add(fragment)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self._check_abort("after streaming")

        if first_chunk and self.exit_if_first_chunk_no_tool:
            self.outcome = TurnOutcome.EARLY_EXIT
            return

        content = "".join(text_parts)
        calls = cut_at_exit_tool(accumulator.calls())

        if not calls:
            self._commit(Message(role="assistant", content=content))
            self.outcome = TurnOutcome.ANSWERED
            return

        for call in calls:
            yield Event(
                event_type="tool_call",
                data={
                    "tool": call.function.name,
                    "arguments": call.function.arguments,
                    "tool_call_id": call.id,
                },
            )

        results = await self.processor.dispatch(calls, self.abort)

        self._commit(Message(role="assistant", content=content or None, tool_calls=calls))
        for call, (output, success) in zip(calls, results):
            self._commit(
                Message(
                    role="tool",
                    content=output,
                    tool_call_id=call.id,
                    name=call.function.name,
                )
            )
            yield Event(
                event_type="tool_output",
                data={"tool": call.function.name, "output": output, "success": success},
            )
        self.outcome = TurnOutcome.TOOL_CALLS


class TurnProcessor:
    """Runs turns against a gateway and resolves tool calls through the registry"""

    def __init__(
        self,
        gateway: InferenceGateway,
        registry: ToolRegistry,
        session_manager: SessionManager,
        parallel_tool_calls: bool = True,
    ):
        self.gateway = gateway
        self.registry = registry
        self.session_manager = session_manager
        self.parallel_tool_calls = parallel_tool_calls
        # Invocations left running after an abort
        self._detached: set[asyncio.Future] = set()

    def start(
        self,
        context: ContextManager,
        abort: asyncio.Event,
        exit_if_first_chunk_no_tool: bool = False,
    ) -> Turn:
        return Turn(self, context, abort, exit_if_first_chunk_no_tool)

    async def execute_tool(self, call: ToolCall) -> tuple[str, bool]:
        """Run one tool call, turning every tool-level failure into text"""
        tool_name = call.function.name
        if is_exit_tool(tool_name):
            return EXIT_TOOL_RESULTS[tool_name], True

        try:
            arguments = decode_arguments(call)
            lookup = self.registry.lookup(tool_name)
            if not lookup.found:
                raise ToolNotFound(tool_name)
            output = await self.session_manager.invoke(
                lookup.session, tool_name, arguments
            )
            return output, True
        except ToolError as e:
            logger.warning(str(e))
            return str(e), False

    @observe(name="dispatch_tools")
    async def dispatch(
        self, calls: list[ToolCall], abort: asyncio.Event
    ) -> list[tuple[str, bool]]:
        """
        Execute tool calls and return their results in request order.

        The abort signal is checked before each dispatch and while waiting.
        Calls already dispatched when it fires keep running detached and
        their results are dropped.
        """
        if not self.parallel_tool_calls:
            results = []
            for call in calls:
                if abort.is_set():
                    raise AbortError("Turn aborted before tool dispatch")
                results.append(await self._wait_or_abort(self.execute_tool(call), abort))
            return results

        tasks = []
        for call in calls:
            if abort.is_set():
                self._detach(tasks)
                raise AbortError("Turn aborted before tool dispatch")
            tasks.append(asyncio.ensure_future(self.execute_tool(call)))
        return await self._wait_or_abort(asyncio.gather(*tasks), abort, tasks)

    async def _wait_or_abort(
        self,
        awaitable: Awaitable,
        abort: asyncio.Event,
        tasks: list[asyncio.Future] | None = None,
    ):
        work = asyncio.ensure_future(awaitable)
        aborted = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({work, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()

        if not work.done():
            if tasks is not None:
                work.add_done_callback(self._forget)
            self._detach(tasks if tasks is not None else [work])
            raise AbortError("Turn aborted during tool execution")
        return work.result()

    def _detach(self, futures: list[asyncio.Future]) -> None:
        for future in futures:
            if future.done():
                continue
            self._detached.add(future)
            future.add_done_callback(self._forget)

    def _forget(self, future: asyncio.Future) -> None:
        self._detached.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"Detached tool call failed: {future.exception()}")
