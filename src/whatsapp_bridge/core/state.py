"""
Connection State Machine

Tracks the WhatsApp connection lifecycle and notifies listeners when states
are entered or left. The controller hangs the relay loop and the proactive
scheduler off the `connected` state.

    disconnected --connect()--> connecting --qr ready--> qr_pending
    qr_pending / connecting --already_connected--> connected
    connected / connecting / qr_pending --disconnect, logout--> disconnected
    any --fatal error--> error --retry--> connecting
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from .errors import InvalidTransition

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """WhatsApp connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_PENDING = "qr_pending"
    CONNECTED = "connected"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConnectionState":
        """Map a bridge-reported state string, unknown values -> disconnected"""
        try:
            return cls(value)
        except ValueError:
            return cls.DISCONNECTED


S = ConnectionState

TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    S.DISCONNECTED: frozenset({S.CONNECTING, S.ERROR}),
    S.CONNECTING: frozenset({S.QR_PENDING, S.CONNECTED, S.DISCONNECTED, S.ERROR}),
    S.QR_PENDING: frozenset({S.CONNECTED, S.DISCONNECTED, S.ERROR}),
    S.CONNECTED: frozenset({S.DISCONNECTED, S.ERROR}),
    S.ERROR: frozenset({S.CONNECTING, S.DISCONNECTED}),
}

StateListener = Callable[[ConnectionState, ConnectionState], Awaitable[None]]


class ConnectionStateMachine:
    """
    Owns ConnectionState exclusively.

    Listeners are awaited in registration order with (previous, current).
    A listener failure is logged and does not undo the transition.
    """

    def __init__(self, initial: ConnectionState = ConnectionState.DISCONNECTED):
        self._state = initial
        self._on_enter: Dict[ConnectionState, List[StateListener]] = {}
        self._on_exit: Dict[ConnectionState, List[StateListener]] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def on_enter(self, state: ConnectionState, listener: StateListener) -> None:
        self._on_enter.setdefault(state, []).append(listener)

    def on_exit(self, state: ConnectionState, listener: StateListener) -> None:
        self._on_exit.setdefault(state, []).append(listener)

    def can_transition(self, target: ConnectionState) -> bool:
        return target in TRANSITIONS[self._state]

    async def transition(self, target: ConnectionState) -> bool:
        """
        Move to `target`.

        Returns:
            False if already in `target` (no listeners fire), True otherwise

        Raises:
            InvalidTransition: if the move is not in the transition table
        """
        if target == self._state:
            return False
        if not self.can_transition(target):
            raise InvalidTransition(self._state, target)
        await self._apply(target)
        return True

    async def force(self, target: ConnectionState) -> bool:
        """
        Jump to `target` without checking the table.

        Used to reconstruct state from a bridge status query on startup.
        """
        if target == self._state:
            return False
        await self._apply(target)
        return True

    async def _apply(self, target: ConnectionState) -> None:
        previous = self._state
        self._state = target
        logger.info(f"Connection state: {previous.value} -> {target.value}")

        for listener in self._on_exit.get(previous, []):
            await self._notify(listener, previous, target)
        for listener in self._on_enter.get(target, []):
            await self._notify(listener, previous, target)

    async def _notify(
        self,
        listener: StateListener,
        previous: ConnectionState,
        current: ConnectionState,
    ) -> None:
        try:
            await listener(previous, current)
        except Exception:
            logger.exception(
                f"State listener failed on {previous.value} -> {current.value}"
            )
