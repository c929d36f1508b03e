"""
Test Reply Generation
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from whatsapp_bridge.core.conversation import ASSISTANT, USER, Turn
from whatsapp_bridge.llm.generator import AnthropicReplyGenerator, build_messages


def mock_response(*texts):
    response = MagicMock()
    response.content = [MagicMock(text=t) for t in texts]
    response.usage.input_tokens = 12
    response.usage.output_tokens = 3
    return response


class TestBuildMessages:

    def test_alternating(self):
        turns = [Turn(role=USER, text="hello"), Turn(role=ASSISTANT, text="hi")]

        assert build_messages(turns) == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi"},
        ]

    def test_merges_consecutive_roles(self):
        turns = [Turn(role=USER, text="one"), Turn(role=USER, text="two")]

        assert build_messages(turns) == [{"role": "user", "content": "one\n\ntwo"}]

    def test_prompt_appended_as_user(self):
        turns = [Turn(role=USER, text="hello"), Turn(role=ASSISTANT, text="hi")]

        messages = build_messages(turns, prompt="check in")

        assert messages[-1] == {"role": "user", "content": "check in"}

    def test_leading_assistant(self):
        messages = build_messages([Turn(role=ASSISTANT, text="you there?")])

        assert messages[0] == {"role": "user", "content": "[Conversation resumed]"}
        assert messages[1]["role"] == "assistant"

    def test_empty(self):
        assert build_messages([]) == []


class TestAnthropicReplyGenerator:

    def setup_method(self):
        self.generator = AnthropicReplyGenerator(api_key="test", system_prompt="You are Ava.")
        self.generator._client = MagicMock()
        self.generator._client.messages.create = AsyncMock(return_value=mock_response("hi ", "there"))

    @pytest.mark.asyncio
    async def test_generate_reply(self):
        reply = await self.generator.generate_reply([Turn(role=USER, text="hello")])

        assert reply == "hi there"
        kwargs = self.generator._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "You are Ava."
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
        assert kwargs["model"] == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_no_system_prompt(self):
        self.generator.system_prompt = ""

        await self.generator.generate_reply([Turn(role=USER, text="hello")])

        assert "system" not in self.generator._client.messages.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_history_limit(self):
        self.generator.history_limit = 2
        turns = [Turn(role=USER if i % 2 == 0 else ASSISTANT, text=str(i)) for i in range(6)]

        await self.generator.generate_reply(turns)

        messages = self.generator._client.messages.create.call_args.kwargs["messages"]
        assert [m["content"] for m in messages] == ["4", "5"]

    @pytest.mark.asyncio
    async def test_empty_input_raises(self):
        with pytest.raises(ValueError):
            await self.generator.generate_reply([])

    @pytest.mark.asyncio
    async def test_silent_prompt_not_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="whatsapp_bridge.llm.generator")

        await self.generator.generate_reply(
            [Turn(role=USER, text="hello")],
            prompt="SECRET PROACTIVE INSTRUCTIONS",
            silent=True,
        )

        assert "SECRET PROACTIVE INSTRUCTIONS" not in caplog.text
        sent = self.generator._client.messages.create.call_args.kwargs["messages"]
        assert sent[-1]["content"] == "SECRET PROACTIVE INSTRUCTIONS"
