from __future__ import annotations

import unittest

from dayops.migrate import MigrationContext, MigrationError, guard_document, migrate_collections, migrate_document
from dayops.model import CURRENT_SCHEMA_VERSION, RECORD_COLLECTIONS, STAMPED_FIELDS, sample_collections_v1


NOW = "2026-02-17T09:00:00+00:00"


class TestMigration(unittest.TestCase):
    def test_v1_document_reaches_current_with_stamps(self) -> None:
        v1 = sample_collections_v1()
        v1["tasks"][0]["updatedAt"] = "2026-02-10T08:00:00+00:00"
        outcome = migrate_document({"payload": v1}, device_id="dev_a_00000001", now_iso=NOW)

        self.assertFalse(outcome.fell_back)
        self.assertTrue(outcome.migrated)
        self.assertEqual(1, outcome.source_version)
        doc = outcome.document
        self.assertEqual(CURRENT_SCHEMA_VERSION, doc["schemaVersion"])
        self.assertFalse(doc["isDemoMode"])
        for name in RECORD_COLLECTIONS:
            self.assertIsInstance(doc[name], list)
            for record in doc[name]:
                self.assertFalse(record["deleted"])
                for field in STAMPED_FIELDS[name]:
                    self.assertIn(field, record["stamps"], f"{name}.{field}")

        t1 = doc["tasks"][0]
        self.assertEqual("2026-02-10T08:00:00+00:00", t1["stamps"]["title"]["updatedAt"])
        self.assertEqual(NOW, doc["tasks"][1]["stamps"]["title"]["updatedAt"])
        self.assertEqual("dev_a_00000001", t1["stamps"]["priority"]["updatedByDeviceId"])

    def test_persisted_record_shape_round_trips_without_migration(self) -> None:
        first = migrate_document({"payload": sample_collections_v1()}, device_id="dev_a_00000001", now_iso=NOW).document
        record = {"id": "wireframe-state", "schemaVersion": 3, "payload": {"schemaVersion": 3, "collections": first}}
        outcome = migrate_document(record, device_id="dev_b_00000002", now_iso="2026-03-01T00:00:00+00:00")
        self.assertFalse(outcome.migrated)
        self.assertEqual(first, outcome.document)

    def test_newer_version_falls_back_with_warning(self) -> None:
        record = {"schemaVersion": 99, "payload": {"schemaVersion": 99, "collections": {"tasks": []}}}
        outcome = migrate_document(record, device_id="dev_a_00000001", now_iso=NOW)
        self.assertTrue(outcome.fell_back)
        self.assertEqual(1, len(outcome.warnings))
        self.assertIn("newer", outcome.warnings[0])
        self.assertEqual([], outcome.document["tasks"])

    def test_garbage_never_raises(self) -> None:
        for envelope in ("text", 42, {"payload": "x"}, {"schemaVersion": "two", "tasks": []}, {"unrelated": 1}):
            outcome = migrate_document(envelope, device_id="dev_a_00000001", now_iso=NOW)
            self.assertTrue(outcome.fell_back, envelope)

    def test_missing_record_is_empty_document_without_warning(self) -> None:
        outcome = migrate_document(None, device_id="dev_a_00000001", now_iso=NOW)
        self.assertFalse(outcome.fell_back)
        self.assertEqual((), outcome.warnings)
        self.assertEqual([], outcome.document["inbox"])

    def test_migrate_collections_raises_for_unknown_step(self) -> None:
        ctx = MigrationContext(device_id="dev_a_00000001", now_iso=NOW)
        with self.assertRaises(MigrationError):
            migrate_collections({}, 5, ctx)

    def test_guard_pass_is_idempotent_and_clamps(self) -> None:
        state = {
            "tasks": [{"id": "t1", "title": "x"}, "junk"],
            "today": [{"id": "td1", "title": "y", "status": "bogus"}],
            "suggestions": {"must": [{"id": "s"}, 3]},
            "storageStatus": "exploded",
            "notes": "not-a-list",
            "customKey": {"kept": True},
        }
        once = guard_document(state, device_id="dev_a_00000001")
        self.assertEqual([], once["notes"])
        self.assertEqual(1, len(once["tasks"]))
        self.assertEqual("loading", once["storageStatus"])
        self.assertEqual({"must": [{"id": "s"}], "should": [], "could": []}, once["suggestions"])
        self.assertEqual("not started", once["today"][0]["execution"]["status"])
        self.assertEqual({"kept": True}, once["customKey"])
        self.assertEqual(once, guard_document(once, device_id="dev_a_00000001"))


if __name__ == "__main__":
    unittest.main()
