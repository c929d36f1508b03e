"""
Proactive Scheduler

Lets the bot reach out after a period of silence. One deadline at a time:

    schedule(30, "casual_followup")
        -> persist {delayMinutes, intent, setAtEpochMs}
        -> sleep 30 min
        -> on_fire(intent): silent generation, relay, append turn
        -> parsed NEXT_CHECKIN_MINUTES? schedule(next) : clear persisted timer

The chain has no length limit. It stops only when cancelled: an inbound
user message (interrupt), a disconnect or a logout.

The in-memory task is the source of truth while the process runs. The
persisted copy only exists so resume() can re-arm or fire after a restart.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..channels.whatsapp.client import WhatsAppBridgeClient
from ..channels.whatsapp.delivery import send_text
from ..channels.whatsapp.formatting import to_whatsapp_text
from ..llm.generator import ReplyGenerator
from .conversation import ASSISTANT, Conversation, Turn
from .errors import ConfigurationError, GenerationTimeout
from .metadata import DEFAULT_INTENT, ProactiveReply, parse_proactive_response
from .prompts import Scene, build_proactive_prompt, describe_elapsed
from .storage import BridgeStorage

logger = logging.getLogger(__name__)


@dataclass
class TimerState:
    """Persisted proactive timer. Deadline = set_at + delay."""
    delay_minutes: float
    intent: str
    set_at_epoch_ms: int

    @property
    def deadline_epoch_ms(self) -> float:
        return self.set_at_epoch_ms + self.delay_minutes * 60_000

    def remaining_minutes(self, now_epoch_ms: float) -> float:
        elapsed = (now_epoch_ms - self.set_at_epoch_ms) / 60_000
        return self.delay_minutes - elapsed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delayMinutes": self.delay_minutes,
            "intent": self.intent,
            "setAtEpochMs": self.set_at_epoch_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimerState":
        return cls(
            delay_minutes=float(data["delayMinutes"]),
            intent=data.get("intent") or DEFAULT_INTENT,
            set_at_epoch_ms=int(data["setAtEpochMs"]),
        )


class ResumeOutcome(str, Enum):
    """What resume() did with the persisted timer"""
    NOTHING = "nothing"
    REARMED = "rearmed"
    FIRED = "fired"


class ProactiveScheduler:
    """Owns TimerState exclusively"""

    def __init__(
        self,
        client: WhatsAppBridgeClient,
        generator: ReplyGenerator,
        conversation: Conversation,
        storage: BridgeStorage,
        destination: Callable[[], Optional[str]],
        scene: Optional[Callable[[], Scene]] = None,
        channel_name: str = "whatsapp",
        channel_label: str = "WhatsApp",
        generation_timeout: float = 120.0,
        chunk_limit: int = 4000,
        convert_markdown: bool = True,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.generator = generator
        self.conversation = conversation
        self.storage = storage
        self.destination = destination
        self.scene = scene or storage.load_scene
        self.channel_name = channel_name
        self.channel_label = channel_label
        self.generation_timeout = generation_timeout
        self.chunk_limit = chunk_limit
        self.convert_markdown = convert_markdown
        self.enabled = enabled
        self.clock = clock

        self._timer: Optional[TimerState] = None
        self._task: Optional[asyncio.Task] = None
        self._firing = False

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def timer_state(self) -> Optional[TimerState]:
        """Most recently scheduled timer (kept after cancel, like the persisted copy)"""
        return self._timer

    @property
    def is_armed(self) -> bool:
        """A deadline is pending (not counting a fire already in progress)"""
        return self._task is not None and not self._task.done() and not self._firing

    @property
    def is_firing(self) -> bool:
        return self._firing

    def _now_ms(self) -> float:
        return self.clock() * 1000

    def remaining_minutes(self) -> Optional[float]:
        if not self.is_armed or self._timer is None:
            return None
        return max(0.0, self._timer.remaining_minutes(self._now_ms()))

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule(self, delay_minutes: Optional[float], intent: Optional[str] = None) -> bool:
        """
        Arm the one-shot timer, replacing any existing one.

        Returns:
            False (and changes nothing) when delay_minutes <= 0 or scheduling is disabled
        """
        if not self.enabled:
            logger.debug("Proactive messaging disabled, not scheduling")
            return False
        if delay_minutes is None or delay_minutes <= 0:
            return False

        self.cancel()

        timer = TimerState(
            delay_minutes=delay_minutes,
            intent=intent or DEFAULT_INTENT,
            set_at_epoch_ms=int(self._now_ms()),
        )
        self._timer = timer
        self.storage.save_timer(timer.to_dict())
        self._task = asyncio.create_task(self._wait_and_fire(timer))

        logger.info(f"Proactive timer set: {delay_minutes:g}min (intent: {timer.intent})")
        return True

    def cancel(self) -> None:
        """
        Drop the armed timer (or abort a fire in progress).

        Safe to call with nothing armed. Persisted state is left alone so a
        reconnect can resume it.
        """
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.info("Proactive timer cancelled")

    def interrupt(self) -> None:
        """User activity: cancel and forget the scheduled outreach."""
        self.cancel()
        if self._timer is not None or self.storage.load_timer():
            logger.info("Proactive timer cleared by user activity")
        self._timer = None
        self.storage.clear_timer()

    async def resume(self) -> ResumeOutcome:
        """
        Restore the persisted timer after (re)connecting.

        Re-arms for the remaining minutes, or fires now if the deadline passed
        while offline.
        """
        if not self.enabled:
            return ResumeOutcome.NOTHING

        data = self.storage.load_timer()
        if not data:
            return ResumeOutcome.NOTHING

        try:
            timer = TimerState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable persisted timer {data!r}: {e}")
            self.storage.clear_timer()
            return ResumeOutcome.NOTHING

        remaining = timer.remaining_minutes(self._now_ms())
        if remaining > 0:
            logger.info(f"Resuming proactive timer: {remaining:.1f}min left (intent: {timer.intent})")
            self.schedule(remaining, timer.intent)
            return ResumeOutcome.REARMED

        logger.info(f"Proactive timer expired while offline, firing now (intent: {timer.intent})")
        self.cancel()
        self._timer = timer
        self._task = asyncio.create_task(self._fire(timer.intent))
        return ResumeOutcome.FIRED

    async def join(self) -> None:
        """Wait for the current timer task (tests and shutdown)."""
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _wait_and_fire(self, timer: TimerState) -> None:
        await asyncio.sleep(timer.delay_minutes * 60)
        logger.info("Proactive timer fired! Generating message...")
        await self._fire(timer.intent)

    async def _fire(self, intent: str) -> None:
        self._firing = True
        try:
            await self.on_fire(intent)
        except asyncio.CancelledError:
            logger.info("Proactive message aborted")
            raise
        except Exception:
            logger.exception("Proactive message generation failed")
        finally:
            self._firing = False
            if self._task is asyncio.current_task():
                self._task = None

    # =========================================================================
    # FIRING
    # =========================================================================

    def _current_time(self) -> str:
        return datetime.fromtimestamp(self.clock()).strftime("%A, %B %d, %Y at %I:%M %p")

    def _check_ready(self) -> str:
        """Destination JID for the fire, or ConfigurationError."""
        destination = self.destination()
        if not destination:
            raise ConfigurationError("No destination phone number configured")
        if not self.conversation.is_active():
            raise ConfigurationError("No active conversation")
        return destination

    async def on_fire(self, intent: Optional[str]) -> Optional[ProactiveReply]:
        """
        Generate and relay one proactive message, then reschedule.

        Returns:
            The parsed reply, or None if the fire was skipped
        """
        intent = intent or DEFAULT_INTENT
        try:
            destination = self._check_ready()
        except ConfigurationError as e:
            # No retry: without configuration it would loop forever
            logger.warning(f"Skipping proactive message: {e}")
            return None

        since_last = self.conversation.seconds_since_last_turn(
            datetime.fromtimestamp(self.clock()).astimezone()
        )
        prompt = build_proactive_prompt(
            intent=intent,
            current_time=self._current_time(),
            time_since_last=describe_elapsed(since_last),
            scene=self.scene(),
            channel_label=self.channel_label,
        )

        try:
            raw = await asyncio.wait_for(
                self.generator.generate_reply(self.conversation.tail(), prompt=prompt, silent=True),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError:
            error = GenerationTimeout(f"No proactive reply within {self.generation_timeout:g}s")
            logger.warning(f"Skipping proactive message: {error}")
            return None

        if not raw or not raw.strip():
            logger.warning("Generator returned an empty proactive message")
            return None

        parsed = parse_proactive_response(raw)
        text = to_whatsapp_text(parsed.message, convert_markdown=self.convert_markdown)

        if text:
            await send_text(self.client, destination, text, chunk_limit=self.chunk_limit)
            logger.info(f"Proactive message sent: \"{text[:50]}\"")

            self.conversation.append_turn(Turn(
                role=ASSISTANT,
                text=text,
                channel=self.channel_name,
                metadata={
                    "channel": self.channel_name,
                    "timestamp": int(self._now_ms()),
                    "proactive": True,
                    "intent": intent,
                },
            ))

        if parsed.wants_reschedule:
            self.schedule(parsed.next_delay, parsed.next_intent)
        else:
            self._timer = None
            self.storage.clear_timer()

        return parsed
