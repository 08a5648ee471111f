#!/usr/bin/env python3
"""
Operator CLI for the supply ledger.

Usage:
    python3 scripts/ledger_cli.py --snapshot data.json show ITEM_ID
    python3 scripts/ledger_cli.py --snapshot data.json show ITEM_ID --view consignment \\
        --facility F1 --start 2024-01-06 --end 2024-01-31
    python3 scripts/ledger_cli.py --snapshot data.json show ITEM_ID --csv
    python3 scripts/ledger_cli.py --db-url sqlite:///ledger.db check LOG_ID
    python3 scripts/ledger_cli.py --snapshot data.json purge LOG_ID \\
        --actor-role "System Administrator" --actor-email admin@example.org --yes

A ``--snapshot`` file is read into an in-memory store and written back
after a successful purge.  ``--db-url`` opens the relational store.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 80


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect and purge supply ledger transactions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--snapshot", type=Path, help="JSON export of the store")
    source.add_argument("--db-url", help="SQLAlchemy database URL")
    parser.add_argument("--config", default="default", help="configuration set name")
    parser.add_argument("--config-dir", type=Path, default=None)
    parser.add_argument("--verbose", action="store_true", help="emit JSON logs to stderr")

    commands = parser.add_subparsers(dest="command", required=True)

    show = commands.add_parser("show", help="print an item's ledger")
    show.add_argument("item_id")
    show.add_argument("--view", choices=("standard", "consignment"), default="standard")
    show.add_argument("--facility", default=None)
    show.add_argument("--start", type=_parse_day, default=None)
    show.add_argument("--end", type=_parse_day, default=None)
    show.add_argument("--csv", action="store_true", help="print CSV instead of a stock card")

    check = commands.add_parser("check", help="show what purging a log would do")
    check.add_argument("log_id")
    check.add_argument("--view", choices=("standard", "consignment"), default="standard")

    purge = commands.add_parser("purge", help="purge a log")
    purge.add_argument("log_id")
    purge.add_argument("--view", choices=("standard", "consignment"), default="standard")
    purge.add_argument("--actor-role", required=True)
    purge.add_argument("--actor-email", required=True)
    purge.add_argument("--actor-uid", default=None)
    purge.add_argument("--yes", action="store_true", help="skip the confirmation prompt")

    return parser


def open_store(args, config):
    from supply_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from supply_kernel.store.memory import InMemoryStore
    from supply_kernel.store.sql import SqlAlchemyStore

    retries = config.store.transaction_max_retries
    if args.snapshot:
        return InMemoryStore.from_json_file(args.snapshot, max_retries=retries)
    url = args.db_url or config.store.database_url
    if not url:
        raise SystemExit("  ERROR: pass --snapshot or --db-url (or set store.database_url)")
    init_engine_from_url(url, echo=config.store.echo)
    create_tables()
    return SqlAlchemyStore(get_session_factory(), max_retries=retries)


def cmd_show(args, store, config) -> int:
    from supply_kernel.domain.ledger import LedgerView, LedgerWindow
    from supply_kernel.reporting.stock_card import export_csv, render_stock_card
    from supply_kernel.services.ledger_service import LedgerService

    service = LedgerService(store, config)
    snapshot = service.snapshot()
    window = LedgerWindow(facility_id=args.facility, start_date=args.start, end_date=args.end)
    report = service.report(args.item_id, LedgerView(args.view), window, snapshot=snapshot)

    if args.csv:
        sys.stdout.write(export_csv(report.entries))
        return 0

    facility = snapshot.facilities.get(args.facility) if args.facility else None
    print(render_stock_card(report, facility.name if facility else None))
    return 0


def _print_plan(plan) -> None:
    print()
    print("=" * W)
    print(f"PURGE PLAN  {plan.log_table.value}/{plan.log_id}".center(W))
    print("=" * W)
    print("  Deletes:")
    for path in plan.delete_paths:
        print(f"    {path}")
    if plan.cascaded:
        print("  Downstream logs (cascade-deleted):")
        for ref in plan.cascaded:
            print(f"    {ref.type:<10} {ref.reference:<20} {ref.table.value}/{ref.id}")
    if plan.reversals:
        print("  Quantity reversals:")
        for batch_id, delta in plan.reversals:
            print(f"    {batch_id:<30} {delta:+d}")
    if plan.skipped_batch_ids:
        print(f"  Missing batches (not adjusted): {', '.join(plan.skipped_batch_ids)}")
    print()


def _locate(store, config, log_id):
    from zoneinfo import ZoneInfo

    from supply_kernel.services.snapshot_loader import SnapshotLoader

    snapshot = SnapshotLoader(store, ZoneInfo(config.timezone)).load()
    record = snapshot.locate_log(log_id)
    if record is None:
        print(f"  ERROR: no log with id {log_id}", file=sys.stderr)
    return snapshot, record


def cmd_check(args, store, config) -> int:
    from supply_kernel.domain.ledger import LedgerView
    from supply_kernel.exceptions import PurgeBlockedError
    from supply_kernel.services.purge_service import PurgeService

    snapshot, record = _locate(store, config, args.log_id)
    if record is None:
        return 1
    try:
        plan = PurgeService(store, config).plan(
            record.log_table, record.id, LedgerView(args.view), snapshot=snapshot
        )
    except PurgeBlockedError as exc:
        print(f"  BLOCKED: {exc.reason}")
        print(f"  Acknowledged transfers: {', '.join(exc.blocking_log_ids)}")
        return 2
    _print_plan(plan)
    return 0


def cmd_purge(args, store, config) -> int:
    from supply_kernel.domain.authorization import Actor, authorize_purge
    from supply_kernel.domain.ledger import LedgerView
    from supply_kernel.services.purge_service import PurgeService
    from supply_kernel.store.memory import InMemoryStore

    actor = Actor(
        uid=args.actor_uid or args.actor_email,
        email=args.actor_email,
        role=args.actor_role,
    )
    authorization = authorize_purge(actor, config.purge.privileged_role)

    snapshot, record = _locate(store, config, args.log_id)
    if record is None:
        return 1
    service = PurgeService(store, config)
    view = LedgerView(args.view)
    plan = service.plan(record.log_table, record.id, view, snapshot=snapshot)
    _print_plan(plan)

    if not args.yes:
        answer = input("  Type PURGE to confirm: ").strip()
        if answer != "PURGE":
            print("  Aborted.")
            return 1

    result = service.purge_log(record.log_table, record.id, authorization, view)
    if isinstance(store, InMemoryStore) and args.snapshot:
        store.to_json_file(args.snapshot)
    print(f"  Purged {result.log_table.value}/{result.log_id} ({result.mode}).")
    return 0


COMMANDS = {"show": cmd_show, "check": cmd_check, "purge": cmd_purge}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    from supply_config import get_active_config
    from supply_kernel.exceptions import SupplyKernelError
    from supply_kernel.logging_config import configure_logging

    if args.verbose:
        configure_logging(level=logging.INFO, stream=sys.stderr)
    else:
        logging.disable(logging.CRITICAL)

    try:
        config = get_active_config(args.config, args.config_dir)
        store = open_store(args, config)
        return COMMANDS[args.command](args, store, config)
    except SupplyKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        logging.disable(logging.NOTSET)


if __name__ == "__main__":
    sys.exit(main())
