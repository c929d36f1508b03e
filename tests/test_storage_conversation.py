"""
Test Bridge Storage and Conversation Log
"""

import json
from datetime import datetime, timedelta, timezone

from whatsapp_bridge.core.conversation import ASSISTANT, USER, Conversation, Turn
from whatsapp_bridge.core.prompts import Scene, SceneState
from whatsapp_bridge.core.storage import BridgeStorage


class TestBridgeStorage:

    def test_creates_base_dir(self, tmp_path):
        storage = BridgeStorage(tmp_path / "nested" / "bridge")
        assert storage.base_dir.is_dir()
        assert storage.get("anything") is None

    def test_timer_round_trip(self, storage):
        timer = {"delayMinutes": 10, "intent": "casual_followup", "setAtEpochMs": 1760745600000}

        storage.save_timer(timer)
        assert storage.load_timer() == timer

        storage.clear_timer()
        assert storage.load_timer() is None

    def test_clear_when_empty(self, storage):
        storage.clear_timer()
        assert storage.load_timer() is None

    def test_survives_new_instance(self, tmp_path):
        BridgeStorage(tmp_path).save_timer({"delayMinutes": 5, "setAtEpochMs": 1})
        assert BridgeStorage(tmp_path).load_timer() == {"delayMinutes": 5, "setAtEpochMs": 1}

    def test_keys_are_independent(self, storage):
        storage.save_timer({"delayMinutes": 5})
        storage.set_destination("15551234567")
        storage.clear_timer()

        assert storage.get_destination() == "15551234567"

    def test_scene(self, storage):
        assert storage.load_scene() == Scene()

        storage.save_scene(Scene(state=SceneState.PAUSED, summary="on a hike"))

        assert storage.load_scene() == Scene(state=SceneState.PAUSED, summary="on a hike")

    def test_corrupt_state_file(self, storage):
        storage.state_path.write_text("{not json")
        assert storage.load_timer() is None

        storage.save_timer({"delayMinutes": 1})
        assert json.loads(storage.state_path.read_text())["timer"] == {"delayMinutes": 1}

    def test_no_temp_files_left(self, storage):
        storage.save_timer({"delayMinutes": 1})
        storage.set_destination("1555")

        assert sorted(p.name for p in storage.base_dir.iterdir()) == ["state.json"]


class TestConversation:

    def test_append_and_tail(self):
        conversation = Conversation()
        conversation.append_turn(Turn(role=USER, text="hello"))
        conversation.append_turn(Turn(role=ASSISTANT, text="hi"))
        conversation.append_turn(Turn(role=USER, text="how are you"))

        assert len(conversation) == 3
        assert [t.text for t in conversation.tail(2)] == ["hi", "how are you"]
        assert conversation.tail(0) == []

    def test_seconds_since_last_turn(self):
        conversation = Conversation()
        assert conversation.seconds_since_last_turn() is None

        at = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        conversation.append_turn(Turn(role=USER, text="hello", created_at=at))

        assert conversation.seconds_since_last_turn(at + timedelta(minutes=90)) == 5400

    def test_persists_jsonl(self, tmp_path):
        path = tmp_path / "conversation.jsonl"
        conversation = Conversation(path=path)
        conversation.append_turn(Turn(role=USER, text="hello", channel="whatsapp"))
        conversation.append_turn(Turn(
            role=ASSISTANT,
            text="hi",
            channel="whatsapp",
            metadata={"proactive": True},
        ))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["text"] == "hello"

        reloaded = Conversation(path=path)
        assert [t.text for t in reloaded.tail()] == ["hello", "hi"]
        assert reloaded.tail()[1].metadata == {"proactive": True}
        assert reloaded.tail()[0].channel == "whatsapp"

    def test_torn_line_skipped_on_load(self, tmp_path):
        path = tmp_path / "conversation.jsonl"
        Conversation(path=path).append_turn(Turn(role=USER, text="hello"))
        with path.open("a") as f:
            f.write('{"role": "user", "te')

        reloaded = Conversation(path=path)

        assert [t.text for t in reloaded.tail()] == ["hello"]

        reloaded.append_turn(Turn(role=ASSISTANT, text="hi"))
        assert len(Conversation(path=path)) == 2

    def test_inactive(self):
        assert Conversation(active=False).is_active() is False
