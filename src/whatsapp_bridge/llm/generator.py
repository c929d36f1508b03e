"""
Reply Generation

The relay loop and the proactive scheduler only need "give me the bot's
next reply for this conversation". ReplyGenerator is that capability;
AnthropicReplyGenerator backs it with Claude.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from anthropic import AsyncAnthropic

from ..core.conversation import ASSISTANT, USER, Turn

logger = logging.getLogger(__name__)


class ReplyGenerator(ABC):
    """Produces the next bot reply for a conversation"""

    @abstractmethod
    async def generate_reply(
        self,
        turns: List[Turn],
        prompt: Optional[str] = None,
        silent: bool = False,
    ) -> str:
        """
        Generate the next assistant reply.

        Args:
            turns: Conversation history, oldest first
            prompt: Extra instruction appended after the history
            silent: The prompt must not surface in any visible log

        Returns:
            Reply text (may be empty)
        """


def build_messages(turns: List[Turn], prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """Convert turns into alternating user/assistant API messages."""
    messages: List[Dict[str, str]] = []

    def add(role: str, text: str):
        if not text:
            return
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + text
        else:
            messages.append({"role": role, "content": text})

    for turn in turns:
        add(USER if turn.is_user else ASSISTANT, turn.text)

    if prompt:
        add(USER, prompt)

    # The API requires the first message to come from the user
    if messages and messages[0]["role"] != USER:
        messages.insert(0, {"role": USER, "content": "[Conversation resumed]"})

    return messages


class AnthropicReplyGenerator(ReplyGenerator):
    """Claude-backed reply generation"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        system_prompt: Optional[str] = None,
        max_tokens: int = 1024,
        history_limit: int = 40,
    ):
        self.model = model
        self.system_prompt = system_prompt or ""
        self.max_tokens = max_tokens
        self.history_limit = history_limit
        self._api_key = api_key
        self._client: Optional[AsyncAnthropic] = None

    def _get_client(self) -> AsyncAnthropic:
        """Lazy initialize Anthropic client"""
        if not self._client:
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def generate_reply(
        self,
        turns: List[Turn],
        prompt: Optional[str] = None,
        silent: bool = False,
    ) -> str:
        history = turns[-self.history_limit:] if self.history_limit else turns
        messages = build_messages(history, prompt)
        if not messages:
            raise ValueError("Nothing to generate from: empty conversation and no prompt")

        if prompt:
            if silent:
                logger.debug(f"Silent generation prompt: {prompt}")
            else:
                logger.info(f"Generation prompt: {prompt[:80]}...")

        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if self.system_prompt:
            kwargs["system"] = self.system_prompt

        response = await self._get_client().messages.create(**kwargs)

        response_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                response_text += block.text

        logger.info(
            f"Generated reply ({response.usage.input_tokens} in / "
            f"{response.usage.output_tokens} out tokens)"
        )
        return response_text
