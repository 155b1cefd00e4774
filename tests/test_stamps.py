from __future__ import annotations

import unittest

from dayops.stamps import ensure_stamps, latest_stamp, read_stamped, stamp, write_stamped


class TestFieldStamps(unittest.TestCase):
    def test_write_stamped_mirrors_plain_value(self) -> None:
        record = {"id": "t1", "title": "old"}
        write_stamped(record, "title", "new", "dev_a_00000001", "2026-02-17T10:00:00+00:00")
        self.assertEqual("new", record["title"])
        self.assertEqual(
            {"value": "new", "updatedAt": "2026-02-17T10:00:00+00:00", "updatedByDeviceId": "dev_a_00000001"},
            record["stamps"]["title"],
        )

    def test_read_stamped_prefers_stamp_then_raw_then_fallback(self) -> None:
        record = {"title": "plain", "stamps": {"title": stamp("stamped", "dev_a_00000001", "2026-02-17T10:00:00Z")}}
        self.assertEqual("stamped", read_stamped(record, "title"))
        record["stamps"]["title"] = {"value": "broken", "updatedAt": "not a time"}
        self.assertEqual("plain", read_stamped(record, "title"))
        self.assertEqual("fallback", read_stamped({"stamps": "garbage"}, "title", "fallback"))

    def test_latest_stamp_prefers_newer_and_ties_go_to_incoming(self) -> None:
        older = stamp("a", "dev_a_00000001", "2026-02-17T10:00:00Z")
        newer = stamp("b", "dev_b_00000002", "2026-02-17T11:00:00Z")
        self.assertEqual("b", latest_stamp(older, newer)["value"])
        self.assertEqual("b", latest_stamp(newer, older)["value"])
        tie = stamp("c", "dev_b_00000002", "2026-02-17T10:00:00+00:00")
        self.assertEqual("c", latest_stamp(older, tie)["value"])

    def test_latest_stamp_with_missing_or_malformed_sides(self) -> None:
        valid = stamp("a", "dev_a_00000001", "2026-02-17T10:00:00Z")
        self.assertEqual("a", latest_stamp(None, valid)["value"])
        self.assertEqual("a", latest_stamp(valid, {"value": "x"})["value"])
        self.assertIsNone(latest_stamp(None, {"updatedAt": "2026-02-17T10:00:00Z"}))

    def test_ensure_stamps_only_fills_missing(self) -> None:
        record = {"title": "t", "status": "backlog", "stamps": {"title": stamp("t", "dev_a_00000001", "2026-01-01T00:00:00Z")}}
        added = ensure_stamps(record, ("title", "status"), device_id="dev_b_00000002", timestamp="2026-02-17T00:00:00Z")
        self.assertEqual(1, added)
        self.assertEqual("dev_a_00000001", record["stamps"]["title"]["updatedByDeviceId"])
        self.assertEqual("backlog", record["stamps"]["status"]["value"])


if __name__ == "__main__":
    unittest.main()
