from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
import sys
from typing import Any, Awaitable, Callable

from . import __version__
from .config import explain_config, load_config
from .locks import WorkspaceLockedError, workspace_lock
from .model import BUCKETS, RECORD_COLLECTIONS, TODAY
from .paths import find_workspace_root, runtime_paths
from .store import Store, build_store
from .validation import Result


Action = Callable[[Store, argparse.Namespace], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dayops",
        description="dayops: capture, plan, execute and close your day from a local-first store",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", help="Workspace directory (default: nearest dayops.toml at or above cwd)")

    sub = parser.add_subparsers(dest="cmd", required=False)

    sub.add_parser("status", help="Show storage status and collection counts.")
    sub.add_parser("config", help="Explain dayops.toml settings and current values.")

    capture = sub.add_parser("capture", help="Add a raw capture to the inbox.")
    capture.add_argument("text", nargs="+", help="Capture text; tokens like @person #project due:YYYY-MM-DD are parsed later")

    sub.add_parser("inbox", help="List unprocessed inbox captures.")

    process = sub.add_parser("process", help="Turn an inbox capture into a task, meeting, note, ...")
    process.add_argument("id", help="Inbox item id")
    process.add_argument("--type", default="", help="task|meeting|note|reminder|followup|project|person")
    process.add_argument("--set", action="append", default=[], metavar="KEY=VALUE", help="Explicit field override")

    sub.add_parser("plan", help="Show must/should/could suggestions.")

    add_today = sub.add_parser("add-today", help="Add a suggestion to the Today plan.")
    add_today.add_argument("suggestion_id")
    add_today.add_argument("--bucket", choices=BUCKETS, help="Bucket holding the suggestion (default: look it up)")

    sub.add_parser("today", help="Show the Today plan.")

    set_status = sub.add_parser("set-status", help="Set a Today item's execution status.")
    set_status.add_argument("id")
    set_status.add_argument("status")

    note = sub.add_parser("note", help="Append an update note to a Today item.")
    note.add_argument("id")
    note.add_argument("text", nargs="+")

    close_day = sub.add_parser("close-day", help="Close the day into a daily log.")
    close_day.add_argument("--note", default="", help="Optional note stored on the daily log")

    export = sub.add_parser("export", help="Write a snapshot of the whole document.")
    export.add_argument("--out", help="Output file (default: stdout)")

    import_cmd = sub.add_parser("import", help="Merge a snapshot file into the document.")
    import_cmd.add_argument("file")

    delete = sub.add_parser("delete", help="Soft delete (or hard delete) a record.")
    delete.add_argument("collection")
    delete.add_argument("id")
    delete.add_argument("--hard", action="store_true", help="Remove permanently")
    delete.add_argument("--confirm", default="", metavar="PHRASE", help="Type DELETE to confirm a hard delete")

    restore = sub.add_parser("restore", help="Clear delete/archive flags on a record.")
    restore.add_argument("collection")
    restore.add_argument("id")

    sub.add_parser("sample", help="Replace the document with demo data.")

    reset = sub.add_parser("reset", help="Erase all local data.")
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")

    return parser


def _report(result: Result, success: str = "") -> int:
    if result.ok:
        if success:
            print(success)
        return 0
    print(f"error: {result.code}: {result.message}", file=sys.stderr)
    return 1


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _parse_assignments(values: list[str]) -> tuple[dict[str, str], str]:
    fields: dict[str, str] = {}
    for raw in values:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            return {}, f"--set expects KEY=VALUE, got: {raw}"
        fields[key.strip()] = value.strip()
    return fields, ""


async def cmd_status(store: Store, args: argparse.Namespace) -> int:
    state = store.get_state()
    status = store.persistence_status()
    print(f"workspace: {store.config.workspace.name}")
    print(f"device: {store.device_id}")
    print(f"storage: {status['status']}" + (f" ({status['lastError']})" if status["lastError"] else ""))
    print(f"last active: {state.get('lastActiveDate') or '-'}")
    print(f"demo mode: {'on' if state.get('isDemoMode') else 'off'}")
    for name in RECORD_COLLECTIONS:
        records = state.get(name) or []
        live = sum(1 for record in records if not record.get("deleted") and not record.get("archived"))
        print(f"{name}: {live} active / {len(records)} total")
    return 0


async def cmd_capture(store: Store, args: argparse.Namespace) -> int:
    result = await store.add_inbox_item(" ".join(args.text))
    return _report(result, f"captured {result.value['id']}" if result.ok else "")


async def cmd_inbox(store: Store, args: argparse.Namespace) -> int:
    items = [
        item
        for item in store.get_state().get("inbox") or []
        if not item.get("deleted") and not item.get("archived") and not item.get("processed")
    ]
    if not items:
        print("inbox is empty")
    for item in items:
        flag = " [snoozed]" if item.get("snoozed") else ""
        print(f"{item['id']}{flag}  {item.get('raw', '')}")
    return 0


async def cmd_process(store: Store, args: argparse.Namespace) -> int:
    fields, error = _parse_assignments(args.set)
    if error:
        print(f"error: {error}", file=sys.stderr)
        return 2
    result = await store.process_inbox_item(args.id, args.type, fields)
    if not result.ok:
        return _report(result)
    record = result.value["record"]
    return _report(result, f"created {result.value['collection']} {record['id']}: {record.get('title') or record.get('name', '')}")


async def cmd_plan(store: Store, args: argparse.Namespace) -> int:
    buckets = store.get_state().get("suggestions") or {}
    for bucket in BUCKETS:
        items = buckets.get(bucket) or []
        print(f"{bucket} ({len(items)})")
        for item in items:
            print(f"  {item['id']}  {item.get('title', '')}  ({item.get('meta', '')})")
    return 0


async def cmd_add_today(store: Store, args: argparse.Namespace) -> int:
    bucket = args.bucket
    if not bucket:
        buckets = store.get_state().get("suggestions") or {}
        bucket = next(
            (name for name in BUCKETS if any(item.get("id") == args.suggestion_id for item in buckets.get(name) or [])),
            BUCKETS[0],
        )
    result = await store.add_to_today(bucket, args.suggestion_id)
    return _report(result, f"added {result.value['id']} to today" if result.ok else "")


async def cmd_today(store: Store, args: argparse.Namespace) -> int:
    items = [item for item in store.get_state().get(TODAY) or [] if not item.get("deleted")]
    if not items:
        print("today plan is empty")
    for item in items:
        execution = item.get("execution") or {}
        notes = execution.get("notes") or []
        print(f"{item['id']}  [{execution.get('status', 'not started')}]  {item.get('title', '')}  notes={len(notes)}")
    return 0


async def cmd_set_status(store: Store, args: argparse.Namespace) -> int:
    result = await store.set_today_status(args.id, args.status)
    return _report(result, f"{args.id} -> {args.status}")


async def cmd_note(store: Store, args: argparse.Namespace) -> int:
    result = await store.add_today_update_note(args.id, " ".join(args.text))
    return _report(result, f"note added to {args.id}")


async def cmd_close_day(store: Store, args: argparse.Namespace) -> int:
    result = await store.close_day(args.note)
    if result.ok:
        summary = result.value["summary"]
        print(f"day closed: {summary['completed']}/{summary['planned']} complete (log {result.value['id']})")
        return 0
    code = _report(result)
    readiness = result.error.details.get("readiness") if result.error else None
    if isinstance(readiness, dict):
        for key in ("missingTodayNotes", "unprocessedInbox", "snoozedInbox"):
            if readiness.get(key):
                print(f"  {key}: {', '.join(readiness[key])}", file=sys.stderr)
    return code


async def cmd_export(store: Store, args: argparse.Namespace) -> int:
    snapshot = store.export_snapshot()
    if not args.out:
        _print_json(snapshot)
        return 0
    out = Path(args.out)
    out.write_text(json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"exported snapshot to {out}")
    return 0


async def cmd_import(store: Store, args: argparse.Namespace) -> int:
    try:
        payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"error: IMPORT_INVALID: could not read snapshot: {exc}", file=sys.stderr)
        return 1
    result = await store.import_snapshot(payload)
    return _report(result, f"merged {result.value['total']} record(s)" if result.ok else "")


async def cmd_delete(store: Store, args: argparse.Namespace) -> int:
    request = store.request_delete(args.collection, args.id, hard=args.hard)
    if not request.ok:
        return _report(request)
    result = await store.confirm_delete(request.value, args.confirm or None)
    kind = "hard deleted" if args.hard else "deleted"
    return _report(result, f"{kind} {args.collection}/{args.id}")


async def cmd_restore(store: Store, args: argparse.Namespace) -> int:
    result = await store.restore_entity(args.collection, args.id)
    return _report(result, f"restored {args.collection}/{args.id}")


async def cmd_sample(store: Store, args: argparse.Namespace) -> int:
    return _report(await store.load_sample_data(), "sample data loaded")


async def cmd_reset(store: Store, args: argparse.Namespace) -> int:
    return _report(await store.reset_all_local_data(), "all local data erased")


COMMANDS: dict[str, Action] = {
    "status": cmd_status,
    "capture": cmd_capture,
    "inbox": cmd_inbox,
    "process": cmd_process,
    "plan": cmd_plan,
    "add-today": cmd_add_today,
    "today": cmd_today,
    "set-status": cmd_set_status,
    "note": cmd_note,
    "close-day": cmd_close_day,
    "export": cmd_export,
    "import": cmd_import,
    "delete": cmd_delete,
    "restore": cmd_restore,
    "sample": cmd_sample,
    "reset": cmd_reset,
}


async def _session(workspace: Path, action: Action, args: argparse.Namespace) -> int:
    store, warning = build_store(workspace)
    if warning:
        print(f"warning: {warning}", file=sys.stderr)
    started = await store.init()
    if not started.ok:
        print(f"warning: {started.code}: {started.message}", file=sys.stderr)
    notice = store.startup_rollover_notice()
    if notice is not None:
        print(
            f"rolled over {notice.recovered_item_count} Today item(s) from {notice.previous_date} to {notice.current_date}",
            file=sys.stderr,
        )
        store.dismiss_rollover_notice()
    return await action(store, args)


def cmd_config(workspace: Path) -> int:
    path = runtime_paths(workspace).config_toml
    config, warning = load_config(path)
    if warning:
        print(f"warning: {warning}", file=sys.stderr)
    print(explain_config(config, path=path))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    argv = list(argv) if argv is not None else list(sys.argv[1:])
    args = parser.parse_args(argv)
    cmd = args.cmd or "status"
    workspace = Path(args.root).expanduser().resolve() if args.root else find_workspace_root()

    if cmd == "config":
        return cmd_config(workspace)
    if cmd == "reset" and not args.yes:
        print("error: reset erases every record; re-run with --yes to confirm", file=sys.stderr)
        return 2

    action = COMMANDS.get(cmd)
    if action is None:
        parser.error(f"Unknown command: {cmd}")
        return 2

    try:
        with workspace_lock(runtime_paths(workspace).lock_file):
            return asyncio.run(_session(workspace, action, args))
    except WorkspaceLockedError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
