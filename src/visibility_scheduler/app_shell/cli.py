import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from types import FrameType

from visibility_scheduler.adapters.sqlite.migrator import SQLiteMigrator
from visibility_scheduler.adapters.sqlite_db import SQLiteContentRepo
from visibility_scheduler.app_shell.config import Settings, validate_ops_rules
from visibility_scheduler.domain.entities import ContentItem, ScheduleAction, to_utc
from visibility_scheduler.rules.loader import load_rules
from visibility_scheduler.rules.models import Rules
from visibility_scheduler.services.scheduling import (
    SchedulingService,
    create_scheduling_service,
)

logger = logging.getLogger("cli")


def parse_when(value: str) -> datetime:
    """ISO 8601 date/time; naive values are taken as UTC."""
    try:
        return to_utc(datetime.fromisoformat(value))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date/time {value!r}: {e}") from e


def get_rules(settings: Settings) -> Rules:
    if not settings.rules_path.exists():
        logger.error("Rules file %s not found.", settings.rules_path)
        sys.exit(1)
    rules = load_rules(settings.rules_path)
    validate_ops_rules(rules)
    return rules


def get_service(settings: Settings, rules: Rules) -> SchedulingService:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    SQLiteMigrator(settings.db_path).run_migrations()
    return create_scheduling_service(rules, settings.db_path)


def handle_migrate(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    applied = SQLiteMigrator(settings.db_path).run_migrations()
    print(f"Applied {len(applied)} migrations to {settings.db_path}.")


def handle_add_item(settings: Settings, args: argparse.Namespace) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    SQLiteMigrator(settings.db_path).run_migrations()
    item = SQLiteContentRepo(settings.db_path).save(
        ContentItem(id=args.item_id, type=args.type, title=args.title, status=args.status)
    )
    print(f"Saved {item.type} {item.id} ({item.status}).")


def handle_worker(service: SchedulingService) -> None:
    stop = threading.Event()

    def _request_stop(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal %d, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    service.start()
    stop.wait()


def handle_run_due(service: SchedulingService) -> None:
    results = [r for r in service.run_pending() if not r.stale]
    for r in results:
        transition = r.transition
        outcome = transition.outcome if transition else "failed"
        message = transition.message if transition else ""
        print(f"{r.action.value:<10} {r.item_id:<20} {outcome:<8} {message}")
    print(f"Fired {len(results)} entries.")


def handle_schedule(service: SchedulingService, args: argparse.Namespace) -> None:
    if not (args.allow_past or service.rules.allow_past_dates):
        if args.when <= service.now_utc():
            logger.error("Date %s is in the past (use --allow-past).", args.when.isoformat())
            sys.exit(1)

    entry, errors = service.schedule(args.item_id, ScheduleAction(args.action), args.when)
    if errors or entry is None:
        for e in errors:
            logger.error("%s: %s", e.code, e.message)
        sys.exit(1)
    print(f"Scheduled {entry.action.value} of {entry.item_id} at {entry.due_at.isoformat()}.")


def handle_cancel(service: SchedulingService, args: argparse.Namespace) -> None:
    if args.action:
        removed = 1 if service.cancel(args.item_id, ScheduleAction(args.action)) else 0
    else:
        removed = service.cancel_all(args.item_id)
    print(f"Cancelled {removed} entries for {args.item_id}.")


def handle_list(service: SchedulingService, args: argparse.Namespace) -> None:
    scheduled = service.list_scheduled(args.type)
    if not scheduled:
        print("Nothing scheduled.")
        return
    now = service.now_utc()
    for s in scheduled:
        view = s.schedule
        unpublish = view.unpublish_due_at.isoformat() if view.unpublish_due_at else "-"
        republish = view.republish_due_at.isoformat() if view.republish_due_at else "-"
        overdue = ", ".join(a.value for a in view.overdue_actions(now))
        suffix = f"  overdue: {overdue}" if overdue else ""
        print(f"{s.item.id:<20} {s.item.type:<8} unpublish={unpublish} republish={republish}{suffix}")


def handle_log(service: SchedulingService, args: argparse.Namespace) -> None:
    for e in service.list_recent_log(args.limit):
        flag = "ok  " if e.success else "FAIL"
        print(
            f"{e.executed_at.isoformat()} {flag} {e.action.value:<10} {e.item_id:<20} "
            f"{e.old_status or '-'} -> {e.new_status or '-'}  {e.message or ''}"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visibility-scheduler", description="Visibility Scheduler CLI"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply database migrations")
    subparsers.add_parser("worker", help="Run the dispatcher until interrupted")
    subparsers.add_parser("run-due", help="Fire every entry that is due now")

    add_item = subparsers.add_parser("add-item", help="Create or update a content item")
    add_item.add_argument("item_id")
    add_item.add_argument("--type", default="post")
    add_item.add_argument("--title", default="")
    add_item.add_argument(
        "--status", default="published", choices=["published", "draft", "pending", "private"]
    )

    schedule = subparsers.add_parser("schedule", help="Schedule an unpublish or republish")
    schedule.add_argument("item_id")
    schedule.add_argument("action", choices=[a.value for a in ScheduleAction])
    schedule.add_argument("when", type=parse_when, help="ISO 8601 date/time (UTC if naive)")
    schedule.add_argument("--allow-past", action="store_true", help="Accept a past date")

    cancel = subparsers.add_parser("cancel", help="Cancel scheduled actions of an item")
    cancel.add_argument("item_id")
    cancel.add_argument("action", nargs="?", choices=[a.value for a in ScheduleAction])

    list_parser = subparsers.add_parser("list", help="List scheduled items")
    list_parser.add_argument("--type", help="Only items of this type")

    log_parser = subparsers.add_parser("log", help="Show recent firings")
    log_parser.add_argument("--limit", type=int, default=20)

    return parser


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)
    settings = Settings()

    if args.command == "migrate":
        handle_migrate(settings)
        return
    if args.command == "add-item":
        handle_add_item(settings, args)
        return

    service = get_service(settings, get_rules(settings))

    try:
        if args.command == "worker":
            handle_worker(service)
        elif args.command == "run-due":
            handle_run_due(service)
        elif args.command == "schedule":
            handle_schedule(service, args)
        elif args.command == "cancel":
            handle_cancel(service, args)
        elif args.command == "list":
            handle_list(service, args)
        elif args.command == "log":
            handle_log(service, args)
    finally:
        # Lets queued notifications go out before the process exits
        service.stop()


if __name__ == "__main__":
    main()
