from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from dayops.events import COMMAND_OK, INIT_READY, PERSIST_FAILED, STORAGE_RECOVERED, EventBus, make_event


class TestEventBus(unittest.TestCase):
    def test_held_events_are_written_when_log_path_is_set(self) -> None:
        with TemporaryDirectory() as tmp:
            event_log = Path(tmp) / "logs" / "events.jsonl"
            captured: list[dict[str, object]] = []

            bus = EventBus()
            bus.subscribe(lambda event: captured.append(event))
            event = bus.publish_event(COMMAND_OK, "add_inbox_item", metadata={"command": "add_inbox_item"})

            self.assertEqual(1, len(captured))
            self.assertEqual("store", captured[0]["source"])
            self.assertEqual("info", captured[0]["severity"])
            self.assertTrue(str(event["id"]).startswith("evt-"))
            self.assertIsNone(bus.log_path)

            bus.set_log_path(event_log)
            self.assertEqual([event], bus.recent())
            lines = event_log.read_text(encoding="utf-8").splitlines()
            self.assertEqual([COMMAND_OK], [json.loads(line)["type"] for line in lines])

    def test_events_are_normalized(self) -> None:
        event = make_event("", None, severity="WARNING", metadata="not a dict")
        self.assertEqual("store.event", event["type"])
        self.assertEqual("warn", event["severity"])
        self.assertEqual("", event["message"])
        self.assertEqual({}, event["metadata"])
        self.assertEqual({"id", "ts", "type", "severity", "source", "message", "metadata"}, set(event))
        self.assertEqual("info", make_event("x", "y", severity="loud")["severity"])

    def test_history_is_bounded_without_a_log(self) -> None:
        bus = EventBus(history=20)
        for index in range(300):
            bus.publish_event(COMMAND_OK, f"command {index}")
        recent = bus.recent(limit=500)
        self.assertEqual(20, len(recent))
        self.assertEqual("command 299", recent[-1]["message"])
        self.assertEqual(["command 298", "command 299"], [event["message"] for event in bus.recent(limit=2)])
        self.assertEqual([], bus.recent(limit=0))

    def test_held_events_are_bounded_before_log_is_attached(self) -> None:
        with TemporaryDirectory() as tmp:
            event_log = Path(tmp) / "events.jsonl"
            bus = EventBus(history=5)
            for index in range(12):
                bus.publish_event(COMMAND_OK, f"command {index}")
            bus.set_log_path(event_log)
            lines = event_log.read_text(encoding="utf-8").splitlines()
            self.assertEqual(5, len(lines))
            self.assertEqual("command 7", json.loads(lines[0])["message"])

    def test_failing_handler_does_not_block_others_and_unsubscribe_works(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def broken(_event: dict) -> None:
            raise RuntimeError("handler bug")

        bus.subscribe(broken)
        unsubscribe = bus.subscribe(lambda event: seen.append(event["type"]))
        bus.publish_event("a", "first")
        unsubscribe()
        unsubscribe()
        bus.publish_event("b", "second")
        self.assertEqual(["a"], seen)

    def test_log_path_given_up_front_appends_and_keeps_history(self) -> None:
        with TemporaryDirectory() as tmp:
            event_log = Path(tmp) / "events.jsonl"
            bus = EventBus(event_log)
            bus.publish_event(PERSIST_FAILED, "write failed", severity="error")
            bus.publish_event(STORAGE_RECOVERED, "storage recovered")
            bus.publish_event(INIT_READY, "store ready")
            self.assertEqual(3, len(event_log.read_text(encoding="utf-8").splitlines()))
            self.assertEqual([PERSIST_FAILED, STORAGE_RECOVERED, INIT_READY], [event["type"] for event in bus.recent()])


if __name__ == "__main__":
    unittest.main()
