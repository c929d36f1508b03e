"""
Proactive Response Metadata

Generated proactive texts end with scheduling directives:

    Hey, how did the interview go?
    NEXT_CHECKIN_MINUTES: 90
    NEXT_INTENT: casual_followup

The directive lines are removed from the user-facing message. A missing or
malformed delay means "no reschedule".
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import MetadataParseError

logger = logging.getLogger(__name__)

DEFAULT_INTENT = "casual_followup"
KNOWN_INTENTS = ("casual_followup", "worried_checkin", "excited_share", "continuation")

CHECKIN_KEY = "NEXT_CHECKIN_MINUTES"
INTENT_KEY = "NEXT_INTENT"

_DIRECTIVE = re.compile(rf"^\s*({CHECKIN_KEY}|{INTENT_KEY})\s*:(.*)$")


@dataclass
class ProactiveReply:
    """User-facing message plus optional next-timer directives"""
    message: str
    next_delay: Optional[int] = None
    next_intent: str = DEFAULT_INTENT

    @property
    def wants_reschedule(self) -> bool:
        return self.next_delay is not None and self.next_delay > 0


def _parse_delay(raw: str) -> int:
    value = raw.strip()
    if not re.fullmatch(r"[+-]?\d+", value):
        raise MetadataParseError(f"{CHECKIN_KEY} is not an integer: {value!r}")
    return int(value)


def parse_proactive_response(text: str) -> ProactiveReply:
    """Split generated text into the message and its scheduling directives."""
    message_lines = []
    next_delay = None
    next_intent = DEFAULT_INTENT

    for line in (text or "").strip().split("\n"):
        match = _DIRECTIVE.match(line)
        if not match:
            message_lines.append(line)
            continue

        key, value = match.group(1), match.group(2)
        if key == CHECKIN_KEY:
            try:
                next_delay = _parse_delay(value)
            except MetadataParseError as e:
                logger.warning(f"Ignoring check-in directive: {e}")
                next_delay = None
        else:
            # Intents are single tokens; anything after a second colon is dropped
            next_intent = value.split(":")[0].strip() or DEFAULT_INTENT

    return ProactiveReply(
        message="\n".join(message_lines).strip(),
        next_delay=next_delay,
        next_intent=next_intent,
    )


def format_proactive_response(
    message: str,
    next_delay: Optional[int] = None,
    next_intent: Optional[str] = None,
) -> str:
    """Inverse of parse_proactive_response."""
    lines = [message]
    if next_delay is not None:
        lines.append(f"{CHECKIN_KEY}: {next_delay}")
    if next_intent:
        lines.append(f"{INTENT_KEY}: {next_intent}")
    return "\n".join(lines)
