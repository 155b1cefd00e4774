from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
import io
import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from dayops import cli
from dayops.locks import workspace_lock
from dayops.paths import runtime_paths


def _run(*argv: str) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = cli.main(list(argv))
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):
    def test_capture_then_list_and_status(self) -> None:
        with TemporaryDirectory() as tmp:
            code, out, _err = _run("--root", tmp, "capture", "Book", "room", "#Offsite")
            self.assertEqual(0, code)
            self.assertTrue(out.startswith("captured in_"))

            code, out, _err = _run("--root", tmp, "inbox")
            self.assertEqual(0, code)
            self.assertIn("Book room #Offsite", out)

            code, out, _err = _run("--root", tmp)
            self.assertEqual(0, code)
            self.assertIn("storage: ready", out)
            self.assertIn("inbox: 1 active / 1 total", out)
            self.assertTrue((runtime_paths(Path(tmp).resolve()).events_log).exists())

    def test_process_and_close_flow(self) -> None:
        with TemporaryDirectory() as tmp:
            _run("--root", tmp, "capture", "Draft", "agenda")
            state = json.loads(_run("--root", tmp, "export")[1])
            inbox_id = state["collections"]["inbox"][0]["id"]

            code, _out, err = _run("--root", tmp, "process", inbox_id, "--set", "oops")
            self.assertEqual(2, code)
            self.assertIn("KEY=VALUE", err)

            code, out, _err = _run("--root", tmp, "process", inbox_id, "--type", "note", "--set", "body=First pass")
            self.assertEqual(0, code)
            self.assertIn("created notes", out)

            code, out, _err = _run("--root", tmp, "close-day", "--note", "quiet day")
            self.assertEqual(0, code)
            self.assertIn("day closed: 0/0 complete", out)

    def test_close_day_reports_blockers(self) -> None:
        with TemporaryDirectory() as tmp:
            _run("--root", tmp, "capture", "loose", "end")
            code, _out, err = _run("--root", tmp, "close-day")
            self.assertEqual(1, code)
            self.assertIn("error: CLOSE_BLOCKED", err)
            self.assertIn("unprocessedInbox", err)

    def test_export_import_between_workspaces(self) -> None:
        with TemporaryDirectory() as first, TemporaryDirectory() as second:
            self.assertEqual(0, _run("--root", first, "sample")[0])
            snapshot = Path(first) / "snapshot.json"
            code, out, _err = _run("--root", first, "export", "--out", str(snapshot))
            self.assertEqual(0, code)
            self.assertIn("exported snapshot", out)

            code, out, _err = _run("--root", second, "import", str(snapshot))
            self.assertEqual(0, code)
            self.assertIn("merged 12 record(s)", out)

            bad = Path(second) / "bad.json"
            bad.write_text("{", encoding="utf-8")
            code, _out, err = _run("--root", second, "import", str(bad))
            self.assertEqual(1, code)
            self.assertIn("IMPORT_INVALID", err)

    def test_delete_requires_phrase_for_hard_delete(self) -> None:
        with TemporaryDirectory() as tmp:
            _run("--root", tmp, "sample")
            code, _out, err = _run("--root", tmp, "delete", "tasks", "t2", "--hard")
            self.assertEqual(1, code)
            self.assertIn("DELETE_CONFIRMATION_MISMATCH", err)

            code, out, _err = _run("--root", tmp, "delete", "tasks", "t2", "--hard", "--confirm", "DELETE")
            self.assertEqual(0, code)
            self.assertIn("hard deleted tasks/t2", out)

            code, _out, err = _run("--root", tmp, "restore", "tasks", "t2")
            self.assertEqual(1, code)
            self.assertIn("NOT_FOUND", err)

    def test_reset_needs_confirmation(self) -> None:
        with TemporaryDirectory() as tmp:
            _run("--root", tmp, "sample")
            self.assertEqual(2, _run("--root", tmp, "reset")[0])
            code, out, _err = _run("--root", tmp, "reset", "--yes")
            self.assertEqual(0, code)
            self.assertIn("all local data erased", out)

    def test_config_guide_runs_without_store(self) -> None:
        with TemporaryDirectory() as tmp:
            code, out, _err = _run("--root", tmp, "config")
            self.assertEqual(0, code)
            self.assertTrue(out.startswith("dayops.toml guide ("))
            self.assertFalse((Path(tmp) / ".dayops").exists())

    def test_locked_workspace_exits_nonzero(self) -> None:
        with TemporaryDirectory() as tmp:
            with workspace_lock(runtime_paths(Path(tmp).resolve()).lock_file):
                code, _out, err = _run("--root", tmp, "status")
            self.assertEqual(1, code)
            self.assertIn("another dayops process", err)


if __name__ == "__main__":
    unittest.main()
