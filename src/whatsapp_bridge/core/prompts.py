"""
Proactive Prompt Construction

Builds the silent prompt sent to the generator when the proactive timer
fires. The scene state is informational context maintained by the host.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .metadata import CHECKIN_KEY, DEFAULT_INTENT, INTENT_KEY, KNOWN_INTENTS


class SceneState(str, Enum):
    """Coarse narrative context"""
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass
class Scene:
    state: SceneState = SceneState.ENDED
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "summary": self.summary}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Scene":
        if not data:
            return cls()
        try:
            state = SceneState(data.get("state", SceneState.ENDED.value))
        except ValueError:
            state = SceneState.ENDED
        return cls(state=state, summary=data.get("summary") or "")


def describe_elapsed(seconds: Optional[float]) -> str:
    """Human wording for the time since the last conversation turn."""
    if seconds is None:
        return "No previous messages"

    minutes = int(max(seconds, 0) // 60)
    if minutes < 60:
        return f"{minutes} minutes ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hours ago"
    return f"{hours // 24} days ago"


def build_proactive_prompt(
    intent: Optional[str],
    current_time: str,
    time_since_last: str,
    scene: Scene,
    channel_label: str = "WhatsApp",
) -> str:
    """Prompt asking for one short text plus the next check-in directives."""
    scene_line = f"Scene state: {scene.state.value}"
    if scene.summary:
        scene_line += f" ({scene.summary})"

    return f"""[System: You are about to send a text message ({channel_label}) to the user.
Current time: {current_time}
Time since last message: {time_since_last}
{scene_line}
Intent hint: {intent or DEFAULT_INTENT}
Channel: {channel_label} text message (keep it casual, short, like a real text)

Generate your text message, then on a NEW LINE provide scheduling metadata in this exact format:
{CHECKIN_KEY}: <number>
{INTENT_KEY}: <{'|'.join(KNOWN_INTENTS)}>

Remember: This is a text message, not a roleplay. Be natural. Be yourself as the character would be over text.]"""
