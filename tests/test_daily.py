from __future__ import annotations

import copy
from datetime import date
import unittest

from dayops.daily import apply_rollover, build_daily_log, close_readiness, has_trailing_note, preview_daily_log
from dayops.migrate import guard_document


NOW = "2026-02-18T08:00:00+00:00"


def _today_item(item_id: str, status: str, notes: list | None = None) -> dict:
    return {"id": item_id, "title": f"Item {item_id}", "execution": {"status": status, "notes": notes or []}}


class TestCloseReadiness(unittest.TestCase):
    def test_blockers_are_reported_in_order(self) -> None:
        doc = guard_document(
            {
                "today": [
                    _today_item("td1", "complete"),
                    _today_item("td2", "in progress", [{"id": "nt1", "text": "halfway"}]),
                    _today_item("td3", "not started", [{"id": "nt2", "text": "early"}, {"id": "nt3", "text": "   "}]),
                ],
                "inbox": [
                    {"id": "in1", "raw": "loose"},
                    {"id": "in2", "raw": "later", "snoozed": True},
                    {"id": "in3", "raw": "done", "processed": True},
                    {"id": "in4", "raw": "gone", "archived": True},
                ],
            }
        )
        readiness = close_readiness(doc)
        self.assertFalse(readiness.ready)
        self.assertEqual(("missing_today_notes", "unprocessed_inbox", "snoozed_inbox"), readiness.blockers)
        self.assertEqual(("td3",), readiness.missing_today_notes)
        self.assertEqual(("in1",), readiness.unprocessed_inbox)
        self.assertEqual(("in2",), readiness.snoozed_inbox)
        self.assertEqual(["missing_today_notes", "unprocessed_inbox", "snoozed_inbox"], readiness.to_dict()["blockers"])

    def test_empty_day_is_ready(self) -> None:
        self.assertTrue(close_readiness(guard_document({})).ready)

    def test_trailing_note_must_be_last(self) -> None:
        self.assertTrue(has_trailing_note(_today_item("td1", "blocked", [{"text": "   "}, {"text": "waiting on Mina"}])))
        self.assertFalse(has_trailing_note(_today_item("td1", "blocked")))


class TestDailyLogs(unittest.TestCase):
    def test_log_partitions_items(self) -> None:
        items = [_today_item("td1", "complete"), _today_item("td2", "blocked")]
        log = build_daily_log(items, kind="close", log_date="2026-02-17", created_at=NOW, note="wrap")
        self.assertEqual("close", log["kind"])
        self.assertEqual({"planned": 2, "completed": 1, "incomplete": 1}, log["summary"])
        self.assertEqual(["td1"], [item["id"] for item in log["completed"]])
        self.assertEqual(["td2"], [item["id"] for item in log["incomplete"]])
        self.assertTrue(log["id"].startswith("dl_"))
        log["planned"][0]["title"] = "changed"
        self.assertEqual("Item td1", items[0]["title"])

    def test_preview_counts(self) -> None:
        doc = guard_document({"today": [_today_item("td1", "complete"), _today_item("td2", "deferred")]})
        self.assertEqual({"planned": 2, "completed": 1, "incomplete": 1}, preview_daily_log(doc))


class TestRollover(unittest.TestCase):
    def _doc(self, last_active: str, count: int) -> dict:
        return guard_document(
            {
                "lastActiveDate": last_active,
                "today": [_today_item(f"td{index}", "in progress") for index in range(count)],
            }
        )

    def test_unclosed_day_is_archived(self) -> None:
        doc = self._doc("2026-02-17", 3)
        before = copy.deepcopy(doc)
        updated, notice = apply_rollover(doc, date(2026, 2, 18), now_iso=NOW)

        self.assertEqual(before, doc)
        self.assertEqual([], updated["today"])
        self.assertEqual("2026-02-18", updated["lastActiveDate"])
        self.assertEqual(1, len(updated["dailyLogs"]))
        log = updated["dailyLogs"][0]
        self.assertEqual("rollover", log["kind"])
        self.assertEqual("2026-02-17", log["date"])
        self.assertEqual("Recovered 3 Today item(s) from 2026-02-17.", log["note"])
        self.assertEqual(3, notice.recovered_item_count)
        self.assertEqual(log["id"], notice.daily_log_id)
        self.assertEqual("2026-02-17", notice.to_dict()["previousDate"])

    def test_same_day_is_a_no_op(self) -> None:
        updated, notice = apply_rollover(self._doc("2026-02-18", 2), date(2026, 2, 18), now_iso=NOW)
        self.assertIsNone(notice)
        self.assertEqual(2, len(updated["today"]))

    def test_first_run_only_records_date(self) -> None:
        updated, notice = apply_rollover(self._doc("", 0), date(2026, 2, 18), now_iso=NOW)
        self.assertIsNone(notice)
        self.assertEqual("2026-02-18", updated["lastActiveDate"])

    def test_empty_plan_rolls_without_log(self) -> None:
        updated, notice = apply_rollover(self._doc("2026-02-16", 0), date(2026, 2, 18), now_iso=NOW)
        self.assertEqual(0, notice.recovered_item_count)
        self.assertEqual("", notice.daily_log_id)
        self.assertEqual([], updated["dailyLogs"])


if __name__ == "__main__":
    unittest.main()
