"""
Main agent loop: repeats turns over one conversation until it terminates
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Optional

from lmnr import observe

from orchestrator.context_manager.manager import ContextManager
from orchestrator.core.errors import AbortError
from orchestrator.core.session import Event
from orchestrator.core.tools import is_exit_tool
from orchestrator.core.turn import TurnProcessor

logger = logging.getLogger(__name__)


class LoopState(Enum):
    RUNNING = "running"
    TERMINATED = "terminated"


class TerminationReason(Enum):
    EXIT_TOOL = "exit_tool"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CONVERGED = "converged"
    CANCELLED = "cancelled"


class AgentLoop:
    """
    Drives turns over one conversation.

    ``expect_tool`` starts as configured and afterwards records whether the
    previous turn ended without a tool result. While it is set, every turn
    after the first gives up as soon as the model's first chunk carries no
    tool call, and a plain answer ends the run.
    """

    def __init__(
        self,
        processor: TurnProcessor,
        context: ContextManager,
        max_turns: int = 20,
        expect_tool: bool = True,
        abort: asyncio.Event | None = None,
    ):
        self.processor = processor
        self.context = context
        self.max_turns = max_turns
        self.expect_tool = expect_tool
        self.abort = abort or asyncio.Event()
        self.state: Optional[LoopState] = None
        self.turn_count = 0
        self.termination: Optional[TerminationReason] = None
        self.exit_tool: Optional[str] = None

    def _terminate(self, reason: TerminationReason) -> Event:
        self.state = LoopState.TERMINATED
        self.termination = reason
        logger.info(f"Agent loop terminated after {self.turn_count} turns: {reason.value}")
        return Event(
            event_type="terminated",
            data={
                "reason": reason.value,
                "turns": self.turn_count,
                "exit_tool": self.exit_tool,
            },
        )

    def _check_termination(self) -> Optional[TerminationReason]:
        last = self.context.last_message
        if last.is_tool_result and is_exit_tool(last.name):
            self.exit_tool = last.name
            return TerminationReason.EXIT_TOOL
        if self.turn_count > self.max_turns:
            return TerminationReason.BUDGET_EXHAUSTED
        if not last.is_tool_result and self.expect_tool:
            return TerminationReason.CONVERGED
        self.expect_tool = not last.is_tool_result
        return None

    async def run(self) -> AsyncIterator[Event]:
        if self.state is not None:
            raise RuntimeError("AgentLoop instances run only once")
        self.state = LoopState.RUNNING

        while self.state is LoopState.RUNNING:
            turn = self.processor.start(
                self.context,
                self.abort,
                exit_if_first_chunk_no_tool=self.turn_count > 0 and self.expect_tool,
            )
            try:
                async for event in turn:
                    yield event
            except AbortError:
                self.turn_count += 1
                yield self._terminate(TerminationReason.CANCELLED)
                raise

            self.turn_count += 1
            logger.debug(
                f"Turn {self.turn_count} finished: {turn.outcome.value}, "
                f"{len(turn.appended)} messages appended"
            )
            yield Event(
                event_type="turn_complete",
                data={
                    "turn": self.turn_count,
                    "outcome": turn.outcome.value,
                    "history_size": len(self.context),
                },
            )

            reason = self._check_termination()
            if reason is not None:
                yield self._terminate(reason)

    @observe(name="run_agent")
    async def run_to_completion(self) -> TerminationReason:
        async for _ in self.run():
            pass
        return self.termination
