"""
Inbound Relay Loop

While connected, polls the bridge inbox every `poll_interval_ms`:

    fetch batch -> for each message in order:
        interrupt proactive timer
        append user turn
        generate reply (bounded wait)
        append bot turn, send reply to WhatsApp

At most one batch is in flight. A tick that starts while a batch is being
processed is skipped without fetching, so nothing is drained from the inbox
that could not be handled.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Set

from ..channels.whatsapp.client import InboundMessage, WhatsAppBridgeClient, to_whatsapp_jid
from ..channels.whatsapp.delivery import send_text
from ..channels.whatsapp.formatting import describe_inbound, to_whatsapp_text
from ..llm.generator import ReplyGenerator
from .conversation import ASSISTANT, USER, Conversation, Turn
from .errors import GenerationTimeout
from .metadata import parse_proactive_response
from .scheduler import ProactiveScheduler

logger = logging.getLogger(__name__)


class InboundRelayLoop:
    """WhatsApp inbox -> conversation -> WhatsApp reply"""

    def __init__(
        self,
        client: WhatsAppBridgeClient,
        generator: ReplyGenerator,
        conversation: Conversation,
        scheduler: ProactiveScheduler,
        destination: Callable[[], Optional[str]],
        poll_interval_ms: int = 3000,
        reply_timeout: float = 120.0,
        channel_name: str = "whatsapp",
        channel_label: str = "WhatsApp",
        chunk_limit: int = 4000,
        convert_markdown: bool = True,
    ):
        self.client = client
        self.generator = generator
        self.conversation = conversation
        self.scheduler = scheduler
        self.destination = destination
        self.poll_interval_ms = poll_interval_ms
        self.reply_timeout = reply_timeout
        self.channel_name = channel_name
        self.channel_label = channel_label
        self.chunk_limit = chunk_limit
        self.convert_markdown = convert_markdown

        self._processing = False
        self._poll_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start polling (restarts if already running)."""
        if self.is_running:
            self._poll_task.cancel()
        self._poll_task = asyncio.create_task(self._run())
        logger.info(f"Message polling started ({self.poll_interval_ms}ms)")

    async def stop(self) -> None:
        """Stop polling and abort any batch in flight."""
        tasks = list(self._tick_tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Message polling stopped")

    async def _run(self) -> None:
        # Ticks are spawned rather than awaited so a slow batch never delays
        # the poll cadence; the in-flight flag keeps batches from overlapping
        while True:
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.poll_interval_ms / 1000)

    # =========================================================================
    # RELAY
    # =========================================================================

    async def tick(self) -> int:
        """
        One poll cycle.

        Returns:
            Number of replies delivered to WhatsApp
        """
        if self._processing:
            logger.debug("Previous batch still processing, skipping poll")
            return 0

        self._processing = True
        try:
            messages = await self.client.fetch_pending_messages()
            if not messages:
                return 0
            return await self.process_batch(messages)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error processing incoming messages")
            return 0
        finally:
            self._processing = False

    async def process_batch(self, messages) -> int:
        logger.info(f"Relaying batch of {len(messages)} WhatsApp message(s)")
        delivered = 0
        for message in messages:
            if await self.handle_message(message):
                delivered += 1
        return delivered

    def _reply_destination(self, message: InboundMessage) -> Optional[str]:
        destination = self.destination()
        if destination:
            return destination
        if message.from_id:
            return to_whatsapp_jid(message.from_id)
        return None

    async def handle_message(self, message: InboundMessage) -> bool:
        """Relay one inbound message; True if a reply reached WhatsApp."""
        if not self.conversation.is_active():
            logger.warning("No active conversation, skipping incoming message")
            return False

        logger.info(f"Processing incoming: \"{message.body[:50]}\"")

        # User activity cancels any scheduled outreach
        self.scheduler.interrupt()

        self.conversation.append_turn(Turn(
            role=USER,
            text=describe_inbound(message, self.channel_label),
            channel=self.channel_name,
            metadata={
                "channel": self.channel_name,
                "timestamp": message.timestamp,
                "message_id": message.id,
            },
        ))

        try:
            reply = await asyncio.wait_for(
                self.generator.generate_reply(self.conversation.tail()),
                timeout=self.reply_timeout,
            )
        except asyncio.TimeoutError:
            error = GenerationTimeout(f"No bot reply within {self.reply_timeout:g}s")
            logger.warning(f"Timed out waiting for bot response: {error}")
            return False

        # Replies may carry the same scheduling directives as proactive texts
        parsed = parse_proactive_response(reply or "")
        text = to_whatsapp_text(parsed.message, convert_markdown=self.convert_markdown)
        if not text:
            logger.warning("Bot produced an empty reply, nothing to relay")
            return False

        self.conversation.append_turn(Turn(
            role=ASSISTANT,
            text=text,
            channel=self.channel_name,
            metadata={
                "channel": self.channel_name,
                "timestamp": int(time.time() * 1000),
                "in_reply_to": message.id,
            },
        ))

        destination = self._reply_destination(message)
        if not destination:
            logger.warning("No destination for bot reply, not relaying")
            return False

        sent = await send_text(self.client, destination, text, chunk_limit=self.chunk_limit)
        if sent:
            logger.info(f"Sent bot response to {destination}")

        if parsed.wants_reschedule:
            self.scheduler.schedule(parsed.next_delay, parsed.next_intent)

        return sent
