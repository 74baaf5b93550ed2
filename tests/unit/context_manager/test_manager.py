"""
Unit tests for the conversation owner.
"""

import json

from orchestrator.context_manager.manager import ContextManager
from orchestrator.core.messages import FunctionCall, Message, ToolCall
from orchestrator.core.tools import EXIT_TOOLS, ToolSpec


class TestSystemPrompt:
    def test_rendered_prompt_lists_provider_tools(self):
        tools = [ToolSpec(name="analyze_sentiment", description="Score text"), *EXIT_TOOLS]

        context = ContextManager(tool_specs=tools)

        assert "analyze_sentiment: Score text" in context.system_prompt
        assert "1 tools" in context.system_prompt
        assert "task_complete" in context.system_prompt
        assert context.items[0].role == "system"

    def test_override_is_used_verbatim(self):
        context = ContextManager(system_prompt="Be brief.")

        assert context.get_messages() == [{"role": "system", "content": "Be brief."}]


class TestMessages:
    def test_assistant_tool_call_keeps_null_content(self):
        message = Message(
            role="assistant",
            tool_calls=[ToolCall(id="c1", function=FunctionCall(name="echo", arguments="{}"))],
        )

        payload = message.to_llm()

        assert payload["content"] is None
        assert payload["tool_calls"][0] == {
            "id": "c1",
            "type": "function",
            "function": {"name": "echo", "arguments": "{}"},
        }

    def test_snapshot_is_detached_from_history(self):
        context = ContextManager(system_prompt="x")
        snapshot = context.snapshot()

        context.add_message(Message(role="user", content="hi"))

        assert len(snapshot) == 1
        assert len(context) == 2
        assert context.last_message.content == "hi"

    def test_save_writes_llm_payload(self, tmp_path):
        context = ContextManager(system_prompt="x")
        context.add_message(
            Message(role="tool", content="ok", tool_call_id="c1", name="echo")
        )
        path = tmp_path / "transcript.json"

        context.save(path)

        saved = json.loads(path.read_text())
        assert saved[1] == {"role": "tool", "content": "ok", "tool_call_id": "c1", "name": "echo"}
