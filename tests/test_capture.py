from __future__ import annotations

from datetime import date
import unittest

from dayops.capture import CaptureOptions, infer_heuristics, parse_capture, resolve_capture


TODAY = date(2026, 2, 17)


class TestCaptureParsing(unittest.TestCase):
    def test_tokens_are_extracted_and_title_cleaned(self) -> None:
        tokens = parse_capture("Book 1:1 with @Harper #Roadmap do:2026-02-18")
        self.assertEqual(("Harper",), tokens.people)
        self.assertEqual(("Roadmap",), tokens.projects)
        self.assertEqual("2026-02-18", tokens.scheduled)
        self.assertEqual("", tokens.due)
        self.assertEqual("Book 1:1 with Harper", tokens.title)

    def test_priority_due_type_and_context_tokens(self) -> None:
        tokens = parse_capture("!p1 work: fix login bug due:2026-02-20 type:reminder")
        self.assertEqual(1, tokens.priority)
        self.assertEqual("2026-02-20", tokens.due)
        self.assertEqual("reminder", tokens.target_type)
        self.assertEqual("work", tokens.context)
        self.assertEqual("fix login bug", tokens.title)

    def test_people_are_deduplicated_case_insensitively(self) -> None:
        tokens = parse_capture("ping @mina and @Mina about #q2 #Q2")
        self.assertEqual(("mina",), tokens.people)
        self.assertEqual(("q2",), tokens.projects)

    def test_heuristics(self) -> None:
        inferred = infer_heuristics("Follow up tomorrow on the sync", TODAY)
        self.assertEqual("2026-02-18", inferred.scheduled)
        self.assertEqual("meeting", inferred.target_type)
        quiet = infer_heuristics("Follow up tomorrow on the sync", TODAY, CaptureOptions(relative_dates=False, meeting_heuristic=False))
        self.assertEqual("", quiet.scheduled)
        self.assertEqual("", quiet.target_type)


class TestCaptureResolution(unittest.TestCase):
    def test_meeting_language_with_tokens(self) -> None:
        result = resolve_capture("Book 1:1 with @Harper #Roadmap do:2026-02-18", "", None, local_date=TODAY)
        self.assertTrue(result.ok)
        capture = result.value
        self.assertEqual("meetings", capture.collection)
        self.assertEqual("2026-02-18", capture.scheduled)
        self.assertEqual(("Harper",), capture.people)
        self.assertEqual(("Roadmap",), capture.projects)

    def test_explicit_fields_override_tokens(self) -> None:
        result = resolve_capture(
            "Book 1:1 with @Harper #Roadmap do:2026-02-18 !p1",
            "task",
            {"scheduleDate": "2026-02-20", "priority": "4", "people": "@Mina, Ana", "title": "Plan roadmap"},
            local_date=TODAY,
        )
        self.assertTrue(result.ok)
        capture = result.value
        self.assertEqual("tasks", capture.collection)
        self.assertEqual("2026-02-20", capture.scheduled)
        self.assertEqual(4, capture.priority)
        self.assertEqual(("Mina", "Ana"), capture.people)
        self.assertEqual(("Roadmap",), capture.projects)
        self.assertEqual("Plan roadmap", capture.title)

    def test_tokens_override_heuristics(self) -> None:
        result = resolve_capture("sync with team tomorrow type:note do:2026-03-01", "", {}, local_date=TODAY)
        self.assertEqual("notes", result.value.collection)
        self.assertEqual("2026-03-01", result.value.scheduled)

    def test_defaults_apply_last(self) -> None:
        result = resolve_capture("Sketch decision log format", "", None, local_date=TODAY)
        capture = result.value
        self.assertEqual("tasks", capture.collection)
        self.assertEqual(3, capture.priority)
        self.assertEqual("work", capture.context)
        self.assertEqual("", capture.due)
        personal = resolve_capture("Sketch", "", None, local_date=TODAY, options=CaptureOptions(default_context="personal"))
        self.assertEqual("personal", personal.value.context)

    def test_follow_up_alias(self) -> None:
        self.assertEqual("followUps", resolve_capture("Share metrics", "follow-up", None, local_date=TODAY).value.collection)

    def test_unknown_type_token_falls_through(self) -> None:
        result = resolve_capture("Pick up dry cleaning type:errand", "", {}, local_date=TODAY)
        self.assertTrue(result.ok)
        self.assertEqual("tasks", result.value.collection)
        self.assertEqual("Pick up dry cleaning", result.value.title)

        meeting = resolve_capture("Standup with design type:errand", "", {}, local_date=TODAY)
        self.assertEqual("meetings", meeting.value.collection)

    def test_failures(self) -> None:
        self.assertEqual("VALIDATION_STATUS_INVALID", resolve_capture("x", "widget", None, local_date=TODAY).code)
        self.assertEqual(
            "VALIDATION_DATE_INVALID",
            resolve_capture("x", "task", {"dueDate": "next week"}, local_date=TODAY).code,
        )
        self.assertEqual("VALIDATION_REQUIRED_TEXT_MISSING", resolve_capture("   ", "task", None, local_date=TODAY).code)
        self.assertEqual("VALIDATION_STATUS_INVALID", resolve_capture("x", "task", {"context": "office"}, local_date=TODAY).code)


if __name__ == "__main__":
    unittest.main()
