"""
Bridge State Storage

Minimal durable state for restart recovery, kept in one JSON file:

~/.whatsapp_bridge/
├── state.json          # timer, scene, destination
└── conversation.jsonl  # conversation turns (see core.conversation)

state.json layout:
{
    "timer": {"delayMinutes": 10, "intent": "casual_followup", "setAtEpochMs": 1760745600000},
    "scene": {"state": "active", "summary": "..."},
    "destination": "15551234567"
}
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .prompts import Scene

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = Path.home() / ".whatsapp_bridge"


class BridgeStorage:
    """Opaque key/value store backed by a JSON file"""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_BASE_DIR
        self.state_path = self.base_dir / "state.json"
        self.conversation_path = self.base_dir / "conversation.jsonl"
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            return json.loads(self.state_path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable bridge state at {self.state_path}: {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        # Write to a temp file and rename so a crash never leaves half a file
        fd, tmp = tempfile.mkstemp(prefix="state.", suffix=".json", dir=str(self.base_dir))
        try:
            with os.fdopen(fd, "w") as f:
                f.write(json.dumps(data, indent=2))
            os.replace(tmp, self.state_path)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    # =========================================================================
    # Timer
    # =========================================================================

    def save_timer(self, timer: Dict[str, Any]) -> None:
        self.set("timer", timer)

    def load_timer(self) -> Optional[Dict[str, Any]]:
        return self.get("timer")

    def clear_timer(self) -> None:
        self.delete("timer")

    # =========================================================================
    # Scene / destination
    # =========================================================================

    def load_scene(self) -> Scene:
        return Scene.from_dict(self.get("scene"))

    def save_scene(self, scene: Scene) -> None:
        """Host-facing: the embedding app records narrative context here; the scheduler only reads it."""
        self.set("scene", scene.to_dict())

    def get_destination(self) -> Optional[str]:
        return self.get("destination") or None

    def set_destination(self, phone_number: str) -> None:
        """Remember the user's number (written by `--phone`, read when no destination_phone is configured)."""
        self.set("destination", phone_number)

    def __str__(self):
        return f"BridgeStorage @ {self.base_dir}"
