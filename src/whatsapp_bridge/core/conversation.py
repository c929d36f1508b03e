"""
Conversation Log

The chat history shared by the relay loop and the proactive scheduler.
Turns are kept in memory and, when a path is given, written through to a
JSONL file so history survives restarts.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

USER = "user"
ASSISTANT = "assistant"


@dataclass
class Turn:
    """One conversation turn"""
    role: str
    text: str
    channel: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_user(self) -> bool:
        return self.role == USER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "channel": self.channel,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(
            role=data["role"],
            text=data.get("text", ""),
            channel=data.get("channel"),
            created_at=datetime.fromisoformat(data["created_at"]),
            metadata=data.get("metadata", {}),
        )


class Conversation:
    """
    Ordered turn log for the active character/chat.

    `active` mirrors whether the host has a conversation selected; with no
    active conversation inbound messages and proactive fires are skipped.
    """

    def __init__(self, path: Optional[Path] = None, active: bool = True):
        self.path = Path(path) if path else None
        self.active = active
        self._turns: List[Turn] = []
        self._unterminated = False

        if self.path:
            self._load()

    def _load(self):
        if not self.path.exists():
            return

        line = ""
        with self.path.open("r") as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    self._turns.append(Turn.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    # A crash mid-append leaves a torn last line
                    logger.warning(f"Skipping unreadable turn at {self.path}:{lineno}: {e}")
            self._unterminated = bool(line) and not line.endswith("\n")

        logger.info(f"Loaded {len(self._turns)} turns from {self.path}")

    def is_active(self) -> bool:
        return self.active

    def append_turn(self, turn: Turn) -> None:
        self._turns.append(turn)

        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as f:
                if self._unterminated:
                    f.write("\n")
                    self._unterminated = False
                f.write(json.dumps(turn.to_dict()) + "\n")

    def tail(self, limit: Optional[int] = None) -> List[Turn]:
        """Most recent turns, oldest first"""
        if limit is None:
            return list(self._turns)
        return self._turns[-limit:] if limit > 0 else []

    def last_turn_at(self) -> Optional[datetime]:
        return self._turns[-1].created_at if self._turns else None

    def seconds_since_last_turn(self, now: Optional[datetime] = None) -> Optional[float]:
        last = self.last_turn_at()
        if last is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - last).total_seconds()

    def __len__(self) -> int:
        return len(self._turns)
