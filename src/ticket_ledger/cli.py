"""
Command-line interface for the ticket ledger.

Provides CLI commands for operating the service:
- init-db: Initialize the database schema
- create-event: Create an event with its admission inventory
- add-user: Add or update a recipient directory entry
- run: Start the API server
- reconcile: Rebuild per-user summaries (one event, or the scheduled sweep)
- backfill-tokens: Repair the token index for one event

Usage:
    ticket-ledger init-db
    ticket-ledger create-event "Spring Show" --quantity 500 [--starts-at ISO] [--event-id ID]
    ticket-ledger add-user USER_ID [--username NAME] [--email EMAIL] [--display-name NAME]
    ticket-ledger run [--port PORT] [--host HOST]
    ticket-ledger reconcile (--event-id ID | --all) [--dry-run] [--limit N]
    ticket-ledger backfill-tokens --event-id ID [--dry-run]

Scheduling:
    Reconciliation is meant to run from cron, for example hourly:
    ``0 * * * * ticket-ledger reconcile --all``.

Every command exits 0 on success and 1 on error; errors go to stderr.
"""

import argparse
import sys

from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.ledger.errors import LedgerError


def _print_reconcile(result) -> None:
    verb = "would update" if result.dry_run else "updated"
    print(f"Event {result.event_id}: {result.processed} processed, {result.updated} {verb}")
    for sample in result.samples:
        print(f"  {sample['user_id']}: {sample['before']} -> {sample['after']}")


def cmd_init_db(args: argparse.Namespace) -> int:
    """
    Initialize the database schema.

    Safe to run repeatedly: tables and indexes are created only when missing.

    Returns:
        0 on success, 1 on error
    """
    from ticket_ledger.db.schema import init_database

    try:
        init_database()
    except DatabaseError as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1
    print("Database initialized successfully.")
    return 0


def cmd_create_event(args: argparse.Namespace) -> int:
    """Create an event and print its id."""
    from ticket_ledger.clock import parse_timestamp, to_timestamp, utc_now
    from ticket_ledger.db import events_repo

    if args.quantity < 0:
        print("Error: --quantity must not be negative", file=sys.stderr)
        return 1
    try:
        starts_at = to_timestamp(parse_timestamp(args.starts_at)) if args.starts_at else None
    except ValueError:
        print(f"Error: invalid --starts-at timestamp: {args.starts_at}", file=sys.stderr)
        return 1

    try:
        event = events_repo.create_event(
            args.name,
            remaining_quantity=args.quantity,
            created_at=to_timestamp(utc_now()),
            starts_at=starts_at,
            event_id=args.event_id,
        )
    except DatabaseError as e:
        print(f"Error creating event: {e}", file=sys.stderr)
        return 1
    print(f"Created event {event.id} ({event.name}) with {event.remaining_quantity} admissions.")
    return 0


def cmd_add_user(args: argparse.Namespace) -> int:
    """Add or update a user in the recipient directory."""
    from ticket_ledger.clock import to_timestamp, utc_now
    from ticket_ledger.db import users_repo

    try:
        user = users_repo.upsert_user(
            args.user_id,
            created_at=to_timestamp(utc_now()),
            username=args.username,
            email=args.email,
            display_name=args.display_name,
        )
    except DatabaseError as e:
        print(f"Error saving user: {e}", file=sys.stderr)
        return 1
    print(f"Saved user {user.id} (username={user.username}, email={user.email}).")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """
    Start the API server with uvicorn.

    Host and port default to ``config.server``; the CLI flags win.

    Returns:
        0 on clean shutdown, 1 on error
    """
    import uvicorn

    from ticket_ledger.config import config, print_config_summary
    from ticket_ledger.db.schema import init_database

    host = args.host or config.server.host
    port = args.port or config.server.port
    print_config_summary()
    try:
        init_database()
        uvicorn.run("ticket_ledger.api.server:app", host=host, port=port)
    except DatabaseError as e:
        print(f"Error preparing database: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    """
    Reconcile per-user summaries.

    ``--all`` is the scheduled entry point: it walks up to
    ``ledger.reconcile_event_limit`` events (or ``--limit``) and records each
    run as automated. Failures on one event are logged and skipped.
    """
    from ticket_ledger.ledger import reconcile_all, reconcile_event

    try:
        if args.all:
            results = reconcile_all(limit=args.limit, dry_run=args.dry_run)
        else:
            results = [reconcile_event(args.event_id, dry_run=args.dry_run)]
    except (LedgerError, DatabaseError) as e:
        print(f"Error reconciling: {e}", file=sys.stderr)
        return 1

    for result in results:
        _print_reconcile(result)
    if args.all:
        print(f"Reconciled {len(results)} event(s).")
    return 0


def cmd_backfill_tokens(args: argparse.Namespace) -> int:
    """Give live tickets tokens and index entries; drop stale entries."""
    from ticket_ledger.ledger import repair_token_index

    try:
        result = repair_token_index(args.event_id, dry_run=args.dry_run)
    except (LedgerError, DatabaseError) as e:
        print(f"Error repairing tokens: {e}", file=sys.stderr)
        return 1

    suffix = " (dry run)" if result.dry_run else ""
    print(
        f"Event {result.event_id}{suffix}: {result.scanned} scanned, "
        f"{result.tokens_assigned} tokens assigned, {result.entries_created} entries created, "
        f"{result.stale_entries_removed} stale entries removed"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    from ticket_ledger.logging_config import configure_logging

    parser = argparse.ArgumentParser(
        prog="ticket-ledger",
        description="Ticket ledger - issuance, scanning, and transfers for event tickets",
    )
    parser.add_argument(
        "--log-level",
        help="Override the configured log level (DEBUG, INFO, WARNING, ...)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db command
    init_parser = subparsers.add_parser(
        "init-db",
        help="Initialize the database schema",
        description="Create the ledger tables and indexes if they do not exist.",
    )
    init_parser.set_defaults(func=cmd_init_db)

    # create-event command
    event_parser = subparsers.add_parser(
        "create-event",
        help="Create an event",
        description="Create an event with an admission inventory.",
    )
    event_parser.add_argument("name", help="Event display name")
    event_parser.add_argument(
        "--quantity", "-q", type=int, required=True, help="Admissions available for sale"
    )
    event_parser.add_argument(
        "--starts-at", help="ISO-8601 start time; transfers close once it passes"
    )
    event_parser.add_argument("--event-id", help="Explicit event id (default: random)")
    event_parser.set_defaults(func=cmd_create_event)

    # add-user command
    user_parser = subparsers.add_parser(
        "add-user",
        help="Add or update a recipient directory entry",
        description="Users in the directory can receive transfers by username.",
    )
    user_parser.add_argument("user_id", help="Account id")
    user_parser.add_argument("--username", help="Username (stored lower-case)")
    user_parser.add_argument("--email", help="Email on file (stored lower-case)")
    user_parser.add_argument("--display-name", help="Name shown to transfer senders")
    user_parser.set_defaults(func=cmd_add_user)

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the API server",
        description="Initialize the schema if needed and serve the HTTP API with uvicorn.",
    )
    run_parser.add_argument(
        "--port", "-p", type=int, help="API server port (default: config server.port)"
    )
    run_parser.add_argument("--host", type=str, help="Host to bind (default: config server.host)")
    run_parser.set_defaults(func=cmd_run)

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Rebuild per-user summaries from tickets",
        description="Fold tickets into event_user_summaries and write only differing rows.",
    )
    target = reconcile_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--event-id", help="Reconcile a single event")
    target.add_argument("--all", action="store_true", help="Reconcile recent events (cron)")
    reconcile_parser.add_argument(
        "--dry-run", action="store_true", help="Report changes without writing"
    )
    reconcile_parser.add_argument(
        "--limit", type=int, help="Maximum events for --all (default: config)"
    )
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # backfill-tokens command
    backfill_parser = subparsers.add_parser(
        "backfill-tokens",
        help="Repair the token index for an event",
        description="Assign missing tokens, recreate missing index entries, drop stale ones.",
    )
    backfill_parser.add_argument("--event-id", required=True, help="Event to repair")
    backfill_parser.add_argument(
        "--dry-run", action="store_true", help="Report changes without writing"
    )
    backfill_parser.set_defaults(func=cmd_backfill_tokens)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
