from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
from typing import List, Optional

from intuneinv.config.loader import load_settings
from intuneinv.core.auth import AuthError
from intuneinv.core.errors import InventoryError, NotFoundError
from intuneinv.core.models import ItemType, RunStatus
from intuneinv.core.session import Session
from intuneinv.core.store import InventoryStore
from intuneinv.http.errors import HttpError
from intuneinv.report.generator import FORMATS, render, save_report
from intuneinv.util.logging import set_level


def _item_type(value: str) -> ItemType:
    try:
        return ItemType.parse(value)
    except ValueError as ex:
        raise argparse.ArgumentTypeError(str(ex))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="intuneinv", description="Inventory Intune apps, scripts and remediations")
    parser.add_argument("--config", type=pathlib.Path, help="Path to appsettings.json")
    parser.add_argument("--storage-root", type=pathlib.Path, help="Override the inventory directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log HTTP requests")
    sub = parser.add_subparsers(dest="command", required=True)

    inv = sub.add_parser("inventory", help="Sync one type (or all) from Graph")
    inv.add_argument("type", help="application | script | remediation | all")
    inv.add_argument("--force", action="store_true", help="Clear the collection before repopulating")
    inv.add_argument("--include-content", action="store_true", help="Fetch script bodies")
    inv.add_argument("--include-assignments", action="store_true", help="Fetch and resolve assignments")

    ls = sub.add_parser("list", help="List stored items")
    ls.add_argument("type", type=_item_type)
    ls.add_argument("--search", help="Display name substring")
    ls.add_argument("--with-content", action="store_true")

    show = sub.add_parser("show", help="Show one stored item as JSON")
    show.add_argument("type", type=_item_type)
    show.add_argument("id")

    add = sub.add_parser("add-content", help="Attach script content to an item")
    add.add_argument("type", type=_item_type)
    add.add_argument("id")
    add.add_argument("file", type=pathlib.Path)
    add.add_argument("--comment", default="")
    add.add_argument("--version")
    add.add_argument("--added-by")

    hist = sub.add_parser("history", help="Content history, newest first")
    hist.add_argument("type", type=_item_type)
    hist.add_argument("id")

    export = sub.add_parser("export-source", help="Write an item's content to source-code/")
    export.add_argument("type", type=_item_type)
    export.add_argument("id")

    rm = sub.add_parser("delete", help="Delete an item with its assignments and history")
    rm.add_argument("type", type=_item_type)
    rm.add_argument("id")

    runs = sub.add_parser("runs", help="Recent inventory runs")
    runs.add_argument("--type", type=_item_type)
    runs.add_argument("--limit", type=int, default=10)

    sub.add_parser("stats", help="Aggregate counts")

    rep = sub.add_parser("report", help="Render a report")
    rep.add_argument("--format", choices=FORMATS, default="table")
    rep.add_argument("--type", type=_item_type)
    rep.add_argument("--save", action="store_true", help="Write under <root>/reports instead of stdout")
    return parser


def _cmd_inventory(args, settings) -> int:
    kinds = list(ItemType) if args.type.lower() == "all" else [ItemType.parse(args.type)]
    with Session.connect(settings) as session:
        orch = session.orchestrator()
        runs = orch.run_all(
            kinds,
            force=args.force,
            include_content=args.include_content,
            include_assignments=args.include_assignments,
        )
    rc = 0
    for run in runs:
        print(f"{run.run_type.value}: {run.status.value} - {run.items_processed} processed, {run.error_count} error(s)")
        for msg in run.error_messages:
            print(f"  ! {msg}")
        if run.status != RunStatus.COMPLETED:
            rc = 1
    return rc


def _cmd_store(args, store: InventoryStore) -> int:
    if args.command == "list":
        recs = store.list(args.type, name_contains=args.search, has_content=True if args.with_content else None)
        for r in recs:
            print(f"{r.id}  {r.display_name}{'  [content]' if r.has_content else ''}")
        print(f"{len(recs)} item(s)")
    elif args.command == "show":
        rec = store.get(args.type, args.id)
        data = rec.to_dict()
        data["assignments"] = [a.to_dict() for a in store.list_assignments(args.type, args.id)]
        print(json.dumps(data, indent=2, ensure_ascii=False))
    elif args.command == "add-content":
        text = args.file.read_text(encoding="utf-8")
        entry = store.add_content(
            args.type, args.id, text,
            added_by=args.added_by, comment=args.comment, version=args.version,
        )
        print(f"Added version {entry.version} to {args.type.value} {args.id}")
    elif args.command == "history":
        for h in store.get_content_history(args.type, args.id):
            print(f"v{h.version}  {h.added_at}  {h.added_by}  {h.comment}")
    elif args.command == "export-source":
        for p in store.export_source(args.type, args.id):
            print(p)
    elif args.command == "delete":
        store.delete(args.type, args.id)
        print(f"Deleted {args.type.value} {args.id}")
    elif args.command == "runs":
        for r in store.list_runs(args.type, limit=args.limit):
            print(f"{r.started_at}  {r.run_type.value:<12} {r.status.value:<20} "
                  f"processed={r.items_processed} errors={r.error_count}  {r.id}")
    elif args.command == "stats":
        print(json.dumps(store.statistics(), indent=2))
    elif args.command == "report":
        if args.save:
            print(save_report(store, args.format, args.type))
        else:
            print(render(store, args.format, args.type))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_level(logging.DEBUG)
    try:
        settings = load_settings(args.config)
        if args.storage_root:
            settings.storage_root = args.storage_root
        if args.command == "inventory":
            return _cmd_inventory(args, settings)
        return _cmd_store(args, InventoryStore(settings.storage_root))
    except AuthError as ex:
        print(f"Authentication failed [{ex.error_code}]: {ex.error_description} ({ex.hint})", file=sys.stderr)
        return 2
    except NotFoundError as ex:
        print(str(ex), file=sys.stderr)
        return 3
    except (HttpError, InventoryError, ValueError) as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
