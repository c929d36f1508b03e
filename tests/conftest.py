"""
Shared test doubles for the WhatsApp bridge tests.
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from whatsapp_bridge.core.conversation import Conversation, Turn
from whatsapp_bridge.core.storage import BridgeStorage
from whatsapp_bridge.llm.generator import ReplyGenerator

USER_JID = "15551234567@c.us"
T0 = 1_760_745_600.0  # epoch seconds


class FakeGenerator(ReplyGenerator):
    """Returns canned replies in order; optionally blocks until released"""

    def __init__(self, *replies: str, delays: Optional[List[float]] = None, gated: bool = False):
        self.replies = list(replies) or ["ok"]
        self.delays = list(delays or [])
        self.calls = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not gated:
            self.release.set()

    async def generate_reply(self, turns: List[Turn], prompt: Optional[str] = None, silent: bool = False) -> str:
        self.calls.append({"turns": list(turns), "prompt": prompt, "silent": silent})
        self.started.set()
        delay = self.delays.pop(0) if self.delays else 0
        if delay:
            await asyncio.sleep(delay)
        await self.release.wait()
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, minutes: float):
        self.now += minutes * 60


def make_client(status: Optional[dict] = None) -> MagicMock:
    """Bridge client double with every I/O method as an AsyncMock"""
    client = MagicMock()
    client.get_status = AsyncMock(return_value=status)
    client.connect = AsyncMock(return_value=True)
    client.disconnect = AsyncMock(return_value={"success": True})
    client.logout = AsyncMock(return_value={"success": True})
    client.get_qr = AsyncMock(return_value=None)
    client.fetch_pending_messages = AsyncMock(return_value=[])
    client.send_message = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


@pytest.fixture
def storage(tmp_path):
    return BridgeStorage(tmp_path / "bridge")


@pytest.fixture
def conversation():
    return Conversation()


@pytest.fixture
def client():
    return make_client()


@pytest.fixture
def clock():
    return FakeClock()
