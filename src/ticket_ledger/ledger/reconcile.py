"""Batch maintenance jobs: summary reconciliation and token index repair.

Both jobs walk one event in chunks of ``config.ledger.batch_size`` rows. Each
chunk is its own ``BEGIN IMMEDIATE`` transaction that re-reads the rows it is
about to fix, so the jobs can run next to live scans and transfers, can be
stopped at any point, and converge when re-run. Nothing is applied blindly:
every write is decided by comparing stored state with freshly derived state.

Reconciliation
--------------
``event_user_summaries`` rows are folded from the tickets table::

    total_tickets = SUM(quantity)
    used_count    = SUM(used_count)
    last_scan_at  = MAX(last_scan_at)

grouped by owner. Every ticket the owner ever held counts, including ones
given away later, matching how the live counters are maintained. Owners with
a summary row but no tickets fold to zero. Only rows that differ are written,
so a second run with no traffic in between writes nothing.

Token repair
------------
Each ticket that has not been given away must own exactly one token and one
matching index entry. Given-away tickets must own none.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

from ticket_ledger.clock import to_timestamp, utc_now
from ticket_ledger.db import (
    events_repo,
    reconciliation_runs_repo,
    summaries_repo,
    tickets_repo,
    tokens_repo,
)
from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import DatabaseError
from ticket_ledger.db.types import TicketRecord
from ticket_ledger.ledger.errors import LedgerError, NotFoundError
from ticket_ledger.ledger.storage import atomic
from ticket_ledger.ledger.tokens import generate_ticket_token
from ticket_ledger.ledger.types import ReconcileResult, TokenRepairResult

logger = logging.getLogger(__name__)

#: Diffs kept in a reconcile result for operators to eyeball.
MAX_SAMPLES = 5


def _batch_size() -> int:
    from ticket_ledger.config import config

    return max(1, config.ledger.batch_size)


def _chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _require_event(event_id: str) -> None:
    if events_repo.get_event(event_id) is None:
        raise NotFoundError(f"Event {event_id} not found", event_id=event_id)


# =============================================================================
# SUMMARY RECONCILIATION
# =============================================================================


def _reconcile_chunk(
    conn: sqlite3.Connection,
    event_id: str,
    owner_ids: list[str],
    *,
    dry_run: bool,
    updated_at: str,
) -> list[dict[str, Any]]:
    """Fold ``owner_ids`` and write the rows that differ; return the diffs."""
    folded = tickets_repo.fold_owner_totals(conn, event_id, owner_ids)
    stored = summaries_repo.fetch_summaries(conn, event_id, owner_ids)

    diffs: list[dict[str, Any]] = []
    for user_id in owner_ids:
        total, used, last_scan_at = folded.get(user_id, (0, 0, None))
        current = stored.get(user_id)
        if current is None and total == 0 and used == 0:
            continue
        if current is not None and (
            current.total_tickets,
            current.used_count,
            current.last_scan_at,
        ) == (total, used, last_scan_at):
            continue

        diffs.append(
            {
                "user_id": user_id,
                "before": (
                    {
                        "total_tickets": current.total_tickets,
                        "used_count": current.used_count,
                        "last_scan_at": current.last_scan_at,
                    }
                    if current is not None
                    else None
                ),
                "after": {
                    "total_tickets": total,
                    "used_count": used,
                    "last_scan_at": last_scan_at,
                },
            }
        )
        if not dry_run:
            summaries_repo.write_summary(
                conn,
                event_id,
                user_id,
                total_tickets=total,
                used_count=used,
                last_scan_at=last_scan_at,
                updated_at=updated_at,
            )
    return diffs


def reconcile_event(
    event_id: str,
    *,
    dry_run: bool = False,
    automated: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> ReconcileResult:
    """Rebuild an event's per-user summaries from its tickets.

    Args:
        event_id: Event to reconcile.
        dry_run: Report planned changes without writing anything.
        automated: Marks the audit row as written by the scheduled job.
        clock: Returns the current aware UTC time.

    Returns:
        Owners processed, rows updated (or that would be), and a few sample
        diffs.

    Raises:
        NotFoundError: Unknown event.
    """
    _require_event(event_id)

    owner_ids = sorted(
        set(tickets_repo.list_event_owner_ids(event_id))
        | set(summaries_repo.list_summary_user_ids(event_id))
    )
    result = ReconcileResult(event_id=event_id, dry_run=dry_run)
    updated_at = to_timestamp(clock())

    for chunk in _chunks(owner_ids, _batch_size()):
        if dry_run:
            with connection_scope() as conn:
                diffs = _reconcile_chunk(
                    conn, event_id, chunk, dry_run=True, updated_at=updated_at
                )
        else:
            diffs = atomic(
                "reconcile.chunk",
                lambda conn, chunk=chunk: _reconcile_chunk(
                    conn, event_id, chunk, dry_run=False, updated_at=updated_at
                ),
                details=f"event_id={event_id!r}",
            )
        result.processed += len(chunk)
        result.updated += len(diffs)
        room = MAX_SAMPLES - len(result.samples)
        if room > 0:
            result.samples.extend(diffs[:room])

    if not dry_run:
        reconciliation_runs_repo.insert_run(
            event_id,
            processed=result.processed,
            updated=result.updated,
            samples=result.samples,
            automated=automated,
            ran_at=to_timestamp(clock()),
        )

    logger.info(
        "Reconciled event %s: %d processed, %d %s",
        event_id,
        result.processed,
        result.updated,
        "would update" if dry_run else "updated",
    )
    return result


def reconcile_all(
    *,
    limit: int | None = None,
    dry_run: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> list[ReconcileResult]:
    """Reconcile up to ``limit`` events; the scheduled entry point.

    A failure on one event is logged and the run moves on to the next.
    """
    from ticket_ledger.config import config

    event_limit = limit if limit is not None else config.ledger.reconcile_event_limit
    results: list[ReconcileResult] = []
    for event_id in events_repo.list_event_ids(limit=event_limit):
        try:
            results.append(
                reconcile_event(event_id, dry_run=dry_run, automated=True, clock=clock)
            )
        except (LedgerError, DatabaseError):
            logger.exception("Reconciliation failed for event %s", event_id)
    logger.info("Scheduled reconciliation finished: %d event(s)", len(results))
    return results


# =============================================================================
# TOKEN INDEX REPAIR
# =============================================================================


def _repair_ticket(
    conn: sqlite3.Connection,
    ticket: TicketRecord,
    result: TokenRepairResult,
    *,
    created_at: str,
) -> None:
    """Bring one ticket's token and index entry back in line."""
    entry = tokens_repo.fetch_ticket_entry(conn, ticket.id)

    if ticket.transferred_to is not None:
        if entry is not None:
            result.stale_entries_removed += 1
            if not result.dry_run:
                tokens_repo.delete_ticket_entries(conn, ticket.id)
        return

    token = ticket.token
    if not token:
        token = generate_ticket_token()
        result.tokens_assigned += 1
        if not result.dry_run:
            tickets_repo.assign_token(conn, ticket.id, token)

    if entry is not None and entry.token == token and entry.event_id == ticket.event_id:
        return
    if entry is not None:
        result.stale_entries_removed += 1
        if not result.dry_run:
            tokens_repo.delete_ticket_entries(conn, ticket.id)
    result.entries_created += 1
    if not result.dry_run:
        tokens_repo.insert_token(
            conn,
            token,
            event_id=ticket.event_id,
            ticket_id=ticket.id,
            created_at=created_at,
        )


def repair_token_index(
    event_id: str,
    *,
    dry_run: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> TokenRepairResult:
    """Give every live ticket a token and an index entry; drop stale entries.

    Raises:
        NotFoundError: Unknown event.
    """
    _require_event(event_id)

    result = TokenRepairResult(event_id=event_id, dry_run=dry_run)
    created_at = to_timestamp(clock())
    batch_size = _batch_size()
    after_id = ""

    def page(conn: sqlite3.Connection) -> tuple[str, TokenRepairResult]:
        # Counts are collected per page so a retried transaction starts clean.
        page_result = TokenRepairResult(event_id=event_id, dry_run=dry_run)
        tickets = tickets_repo.fetch_event_tickets(
            conn, event_id, after_id=after_id, limit=batch_size
        )
        for ticket in tickets:
            _repair_ticket(conn, ticket, page_result, created_at=created_at)
        page_result.scanned = len(tickets)
        return (tickets[-1].id if tickets else after_id), page_result

    while True:
        if dry_run:
            with connection_scope() as conn:
                after_id, page_result = page(conn)
        else:
            after_id, page_result = atomic(
                "tokens.repair_page", page, details=f"event_id={event_id!r}"
            )
        result.scanned += page_result.scanned
        result.tokens_assigned += page_result.tokens_assigned
        result.entries_created += page_result.entries_created
        result.stale_entries_removed += page_result.stale_entries_removed
        if page_result.scanned < batch_size:
            break

    logger.info(
        "Token repair for event %s%s: %d scanned, %d tokens assigned, "
        "%d entries created, %d stale removed",
        event_id,
        " (dry run)" if dry_run else "",
        result.scanned,
        result.tokens_assigned,
        result.entries_created,
        result.stale_entries_removed,
    )
    return result
