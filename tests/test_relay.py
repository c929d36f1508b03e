"""
Test Inbound Relay Loop
"""

import asyncio

import pytest

from conftest import FakeGenerator, USER_JID
from whatsapp_bridge.channels.whatsapp.client import InboundMessage
from whatsapp_bridge.core.conversation import ASSISTANT, USER
from whatsapp_bridge.core.relay import InboundRelayLoop
from whatsapp_bridge.core.scheduler import ProactiveScheduler


def make_relay(client, generator, conversation, storage, clock, destination=USER_JID, **kwargs):
    scheduler = ProactiveScheduler(
        client=client,
        generator=generator,
        conversation=conversation,
        storage=storage,
        destination=lambda: destination,
        clock=clock,
    )
    relay = InboundRelayLoop(
        client=client,
        generator=generator,
        conversation=conversation,
        scheduler=scheduler,
        destination=lambda: destination,
        **kwargs,
    )
    return relay, scheduler


def inbound(body, **kwargs):
    kwargs.setdefault("from_id", USER_JID)
    return InboundMessage(body=body, **kwargs)


class TestRelayTick:

    @pytest.mark.asyncio
    async def test_hello_round_trip(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello", id="m1")]
        generator = FakeGenerator("hi there!")
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        assert await relay.tick() == 1

        client.send_message.assert_awaited_once_with(USER_JID, "hi there!")
        turns = conversation.tail()
        assert [(t.role, t.text) for t in turns] == [(USER, "hello"), (ASSISTANT, "hi there!")]
        assert all(t.channel == "whatsapp" for t in turns)
        assert turns[1].metadata["in_reply_to"] == "m1"

    @pytest.mark.asyncio
    async def test_empty_inbox(self, client, conversation, storage, clock):
        generator = FakeGenerator()
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        assert await relay.tick() == 0
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_batch_processed_in_order(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("one"), inbound("two")]
        generator = FakeGenerator("first reply", "second reply")
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        assert await relay.tick() == 2

        sent = [c.args for c in client.send_message.await_args_list]
        assert sent == [(USER_JID, "first reply"), (USER_JID, "second reply")]
        assert [t.text for t in conversation.tail()] == ["one", "first reply", "two", "second reply"]

    @pytest.mark.asyncio
    async def test_at_most_one_batch_in_flight(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello")]
        generator = FakeGenerator("hi", gated=True)
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        first = asyncio.create_task(relay.tick())
        await generator.started.wait()
        assert relay.is_processing

        # Overlapping tick does nothing, not even fetch
        assert await relay.tick() == 0
        assert client.fetch_pending_messages.await_count == 1

        generator.release.set()
        assert await first == 1
        assert not relay.is_processing
        assert client.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_flag_cleared_after_error(self, client, conversation, storage, clock):
        client.fetch_pending_messages.side_effect = [RuntimeError("bridge exploded"), [inbound("hello")]]
        relay, _ = make_relay(client, FakeGenerator("hi"), conversation, storage, clock)

        assert await relay.tick() == 0
        assert not relay.is_processing

        assert await relay.tick() == 1

    @pytest.mark.asyncio
    async def test_timeout_moves_to_next_message(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("first"), inbound("second")]
        generator = FakeGenerator("fast", delays=[1.0])
        relay, _ = make_relay(client, generator, conversation, storage, clock, reply_timeout=0.05)

        assert await relay.tick() == 1

        client.send_message.assert_awaited_once_with(USER_JID, "fast")
        assert [t.text for t in conversation.tail()] == ["first", "second", "fast"]

    @pytest.mark.asyncio
    async def test_inbound_interrupts_proactive_timer(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("I'm back")]
        relay, scheduler = make_relay(client, FakeGenerator("yay"), conversation, storage, clock)
        scheduler.schedule(30, "casual_followup")

        await relay.tick()

        assert not scheduler.is_armed
        assert storage.load_timer() is None

    @pytest.mark.asyncio
    async def test_media_annotation(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [
            inbound("look", has_media=True, media_type="image"),
        ]
        generator = FakeGenerator("cute!")
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        await relay.tick()

        assert generator.calls[0]["turns"][-1].text == "[Sent a image via WhatsApp] look"

    @pytest.mark.asyncio
    async def test_reply_directives_stripped_and_scheduled(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("exam tomorrow")]
        generator = FakeGenerator("good luck!\nNEXT_CHECKIN_MINUTES: 45\nNEXT_INTENT: worried_checkin")
        relay, scheduler = make_relay(client, generator, conversation, storage, clock)

        await relay.tick()

        client.send_message.assert_awaited_once_with(USER_JID, "good luck!")
        assert conversation.tail()[-1].text == "good luck!"
        assert scheduler.is_armed
        assert scheduler.timer_state.delay_minutes == 45
        assert scheduler.timer_state.intent == "worried_checkin"

        scheduler.cancel()

    @pytest.mark.asyncio
    async def test_inactive_conversation_skipped(self, client, conversation, storage, clock):
        conversation.active = False
        client.fetch_pending_messages.return_value = [inbound("hello")]
        generator = FakeGenerator("hi")
        relay, _ = make_relay(client, generator, conversation, storage, clock)

        assert await relay.tick() == 0
        assert generator.calls == []
        client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_reply_falls_back_to_sender(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello", from_id="15550009999")]
        relay, _ = make_relay(client, FakeGenerator("hi"), conversation, storage, clock, destination=None)

        await relay.tick()

        client.send_message.assert_awaited_once_with("15550009999@c.us", "hi")

    @pytest.mark.asyncio
    async def test_configured_destination_wins(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello", from_id="15550009999@c.us")]
        relay, _ = make_relay(client, FakeGenerator("hi"), conversation, storage, clock)

        await relay.tick()

        client.send_message.assert_awaited_once_with(USER_JID, "hi")

    @pytest.mark.asyncio
    async def test_markup_stripped(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello")]
        relay, _ = make_relay(client, FakeGenerator("<p>hi <b>there</b></p>"), conversation, storage, clock)

        await relay.tick()

        client.send_message.assert_awaited_once_with(USER_JID, "hi there")

    @pytest.mark.asyncio
    async def test_logged_reply_matches_sent_text(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello")]
        relay, _ = make_relay(client, FakeGenerator("<p>**so** glad</p>"), conversation, storage, clock)

        await relay.tick()

        client.send_message.assert_awaited_once_with(USER_JID, "*so* glad")
        assert conversation.tail()[-1].text == "*so* glad"

    @pytest.mark.asyncio
    async def test_empty_reply_not_sent(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello")]
        relay, _ = make_relay(client, FakeGenerator("   "), conversation, storage, clock)

        assert await relay.tick() == 0
        client.send_message.assert_not_called()


class TestRelayLifecycle:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, client, conversation, storage, clock):
        relay, _ = make_relay(client, FakeGenerator(), conversation, storage, clock, poll_interval_ms=10)

        relay.start()
        await asyncio.sleep(0.05)

        assert relay.is_running
        assert client.fetch_pending_messages.await_count >= 2

        await relay.stop()
        calls = client.fetch_pending_messages.await_count
        await asyncio.sleep(0.05)

        assert not relay.is_running
        assert client.fetch_pending_messages.await_count == calls

    @pytest.mark.asyncio
    async def test_stop_aborts_batch_in_flight(self, client, conversation, storage, clock):
        client.fetch_pending_messages.return_value = [inbound("hello")]
        generator = FakeGenerator("hi", gated=True)
        relay, _ = make_relay(client, generator, conversation, storage, clock, poll_interval_ms=10)

        relay.start()
        await generator.started.wait()
        await relay.stop()

        assert not relay.is_processing
        client.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, client, conversation, storage, clock):
        relay, _ = make_relay(client, FakeGenerator(), conversation, storage, clock)
        await relay.stop()
        assert not relay.is_running
