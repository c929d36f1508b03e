"""
Bridge Controller

One object per bridge process that owns every moving part:

    WhatsAppBridgeClient   - HTTP I/O to the bridge plugin
    ConnectionStateMachine - lifecycle, gates the loops below
    InboundRelayLoop       - runs only while connected
    ProactiveScheduler     - resumed on connect, cancelled on disconnect
    QR polling             - runs while connecting / waiting for a scan
    status watch           - runs while connected, notices a dropped session

Entering `connected` starts the relay loop and resumes the proactive timer.
Leaving `connected` stops the relay loop and cancels the timer.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..channels.whatsapp.client import BridgeStatus, WhatsAppBridgeClient, to_whatsapp_jid
from ..config.schema import BridgeConfig
from ..llm.generator import AnthropicReplyGenerator, ReplyGenerator
from .conversation import Conversation
from .relay import InboundRelayLoop
from .scheduler import ProactiveScheduler
from .state import ConnectionState, ConnectionStateMachine
from .storage import BridgeStorage

logger = logging.getLogger(__name__)


class BridgeController:
    """Session object for one WhatsApp bridge connection"""

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        client: Optional[WhatsAppBridgeClient] = None,
        generator: Optional[ReplyGenerator] = None,
        storage: Optional[BridgeStorage] = None,
        conversation: Optional[Conversation] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or BridgeConfig()
        cfg = self.config

        self.client = client or WhatsAppBridgeClient(
            base_url=cfg.bridge.url,
            headers=cfg.bridge.headers,
            request_timeout=cfg.bridge.request_timeout,
        )
        self.storage = storage or BridgeStorage(cfg.storage.base_dir)
        if conversation is None:
            path = self.storage.conversation_path if cfg.storage.persist_conversation else None
            conversation = Conversation(path=path)
        self.conversation = conversation
        self.generator = generator or AnthropicReplyGenerator(
            api_key=cfg.llm.api_key,
            model=cfg.llm.model,
            system_prompt=cfg.llm.system_prompt,
            max_tokens=cfg.llm.max_tokens,
            history_limit=cfg.llm.history_limit,
        )

        self.state_machine = ConnectionStateMachine()
        self.scheduler = ProactiveScheduler(
            client=self.client,
            generator=self.generator,
            conversation=self.conversation,
            storage=self.storage,
            destination=self.destination,
            channel_name=cfg.channel_name,
            channel_label=cfg.channel_label,
            generation_timeout=cfg.proactive.generation_timeout_seconds,
            chunk_limit=cfg.relay.text_chunk_limit,
            convert_markdown=cfg.relay.convert_markdown,
            enabled=cfg.proactive.enabled,
            clock=clock,
        )
        self.relay = InboundRelayLoop(
            client=self.client,
            generator=self.generator,
            conversation=self.conversation,
            scheduler=self.scheduler,
            destination=self.destination,
            poll_interval_ms=cfg.relay.poll_interval_ms,
            reply_timeout=cfg.relay.reply_timeout_seconds,
            channel_name=cfg.channel_name,
            channel_label=cfg.channel_label,
            chunk_limit=cfg.relay.text_chunk_limit,
            convert_markdown=cfg.relay.convert_markdown,
        )

        self.qr_code: Optional[str] = None
        self.client_info: Dict[str, Any] = {}
        self._qr_task: Optional[asyncio.Task] = None
        self._status_task: Optional[asyncio.Task] = None
        self._status_failures = 0

        self.state_machine.on_enter(ConnectionState.CONNECTED, self._on_connected)
        self.state_machine.on_exit(ConnectionState.CONNECTED, self._on_left_connected)

    @property
    def state(self) -> ConnectionState:
        return self.state_machine.state

    def destination(self) -> Optional[str]:
        """JID of the user who receives texts, if configured."""
        phone = self.config.destination_phone or self.storage.get_destination()
        return to_whatsapp_jid(phone) if phone else None

    # =========================================================================
    # STATE SIDE EFFECTS
    # =========================================================================

    async def _on_connected(self, previous: ConnectionState, current: ConnectionState):
        self._stop_qr_polling()
        self.qr_code = None
        self.relay.start()
        self._start_status_watch()
        await self.scheduler.resume()

    async def _on_left_connected(self, previous: ConnectionState, current: ConnectionState):
        self._stop_status_watch()
        await self.relay.stop()
        self.scheduler.cancel()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> Optional[BridgeStatus]:
        """Reconstruct connection state from the bridge and auto-connect if configured."""
        status = await self.refresh_status()
        if status is None:
            logger.warning("WhatsApp bridge unreachable, staying disconnected")
            return None

        reported = ConnectionState.parse(status.state)
        await self.state_machine.force(reported)
        if reported in (ConnectionState.CONNECTING, ConnectionState.QR_PENDING):
            # The bridge is still establishing a session; watch for the QR
            self._start_qr_polling()

        if self.config.auto_connect and self.state == ConnectionState.DISCONNECTED:
            logger.info("Auto-connecting...")
            await self.connect()

        logger.info(f"WhatsApp bridge controller started ({self.state.value})")
        return status

    async def stop(self):
        """Tear down loops and close the HTTP session. The WhatsApp session stays up."""
        self._stop_qr_polling()
        self._stop_status_watch()
        await self.relay.stop()
        self.scheduler.cancel()
        await self.client.close()
        logger.info("WhatsApp bridge controller stopped")

    async def refresh_status(self) -> Optional[BridgeStatus]:
        status = await self.client.get_status()
        if status is not None:
            self.client_info = status.client_info
        return status

    # =========================================================================
    # CONNECTION OPERATIONS
    # =========================================================================

    async def connect(self) -> bool:
        """
        Ask the bridge to connect, then watch for the QR / linked session.

        A bridge failure is logged and the state falls back to disconnected;
        there is no automatic retry.
        """
        if self.state in (
            ConnectionState.CONNECTING,
            ConnectionState.QR_PENDING,
            ConnectionState.CONNECTED,
        ):
            logger.info(f"Connect ignored, already {self.state.value}")
            return self.state == ConnectionState.CONNECTED

        await self.state_machine.transition(ConnectionState.CONNECTING)

        if not await self.client.connect():
            logger.error("WhatsApp bridge refused to connect")
            await self.state_machine.transition(ConnectionState.DISCONNECTED)
            return False

        self._start_qr_polling()
        return True

    async def disconnect(self) -> Optional[Dict[str, Any]]:
        """Drop the WhatsApp session, keeping its credentials."""
        self._stop_qr_polling()
        await self._to_disconnected()
        return await self.client.disconnect()

    async def logout(self) -> Optional[Dict[str, Any]]:
        """Log out of WhatsApp; the next connect needs a fresh QR scan."""
        self._stop_qr_polling()
        await self._to_disconnected()
        self.client_info = {}
        return await self.client.logout()

    async def fail(self, reason: str):
        """Move to the error state after a fatal bridge problem."""
        logger.error(f"WhatsApp bridge error: {reason}")
        self._stop_qr_polling()
        if self.state != ConnectionState.ERROR:
            await self.state_machine.transition(ConnectionState.ERROR)

    async def retry(self) -> bool:
        """Manual retry out of the error state."""
        if self.state != ConnectionState.ERROR:
            logger.warning(f"Retry ignored in state {self.state.value}")
            return False
        return await self.connect()

    async def _to_disconnected(self):
        self.qr_code = None
        if self.state != ConnectionState.DISCONNECTED:
            await self.state_machine.transition(ConnectionState.DISCONNECTED)

    # =========================================================================
    # QR POLLING
    # =========================================================================

    def _start_qr_polling(self):
        self._stop_qr_polling()
        self._qr_task = asyncio.create_task(self._poll_qr())

    def _stop_qr_polling(self):
        task = self._qr_task
        self._qr_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _poll_qr(self):
        interval = self.config.bridge.qr_poll_interval_ms / 1000
        while self.state in (ConnectionState.CONNECTING, ConnectionState.QR_PENDING):
            await asyncio.sleep(interval)
            try:
                data = await self.client.get_qr()
                if data:
                    await self.handle_qr(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("QR poll failed")

    async def handle_qr(self, data: Dict[str, Any]):
        """Apply one /qr payload to the state machine."""
        if data.get("available") and data.get("qr"):
            if data["qr"] != self.qr_code:
                logger.info("QR code ready - scan it with the bot's WhatsApp")
            self.qr_code = data["qr"]
            if self.state == ConnectionState.CONNECTING:
                await self.state_machine.transition(ConnectionState.QR_PENDING)

        elif data.get("reason") == "already_connected":
            if self.state in (ConnectionState.CONNECTING, ConnectionState.QR_PENDING):
                await self.state_machine.transition(ConnectionState.CONNECTED)
                await self.refresh_status()


    # =========================================================================
    # STATUS WATCH
    # =========================================================================

    def _start_status_watch(self):
        self._stop_status_watch()
        self._status_failures = 0
        self._status_task = asyncio.create_task(self._watch_status())

    def _stop_status_watch(self):
        task = self._status_task
        self._status_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _watch_status(self):
        interval = self.config.bridge.status_check_interval_ms / 1000
        while self.state == ConnectionState.CONNECTED:
            await asyncio.sleep(interval)
            try:
                await self.check_connection()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Status check failed")

    async def check_connection(self) -> ConnectionState:
        """
        Re-read bridge status while connected.

        If the bridge no longer reports the session as connected the machine
        leaves `connected` (for `error` when the bridge says so, otherwise
        `disconnected`), which stops the relay loop and cancels the timer.
        An unreachable bridge counts as a miss; `max_status_failures` misses
        in a row disconnect.
        """
        if self.state != ConnectionState.CONNECTED:
            return self.state

        status = await self.refresh_status()
        if self.state != ConnectionState.CONNECTED:
            return self.state

        if status is None:
            self._status_failures += 1
            limit = self.config.bridge.max_status_failures
            logger.warning(f"WhatsApp bridge status unavailable ({self._status_failures}/{limit})")
            if self._status_failures < limit:
                return self.state
            target = ConnectionState.DISCONNECTED
        else:
            self._status_failures = 0
            reported = ConnectionState.parse(status.state)
            if reported == ConnectionState.CONNECTED:
                return self.state
            target = ConnectionState.ERROR if reported == ConnectionState.ERROR else ConnectionState.DISCONNECTED

        logger.warning(f"WhatsApp session lost, moving to {target.value}")
        await self.state_machine.transition(target)
        return self.state


async def run_bridge(config: BridgeConfig):
    """Run the bridge until cancelled."""
    controller = BridgeController(config)
    await controller.start()
    try:
        await asyncio.Event().wait()
    finally:
        await controller.stop()
