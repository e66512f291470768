"""Per-(event, user) ticket summaries.

Summaries are derived data: live writes bump them with atomic ``x = x + ?``
updates in the same transaction as the ticket write, and reconciliation can
rebuild them from the tickets table at any time.
"""

from __future__ import annotations

import sqlite3

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error
from ticket_ledger.db.types import SUMMARY_COLUMNS, SummaryRecord

_SELECT_SUMMARY = f"SELECT {', '.join(SUMMARY_COLUMNS)} FROM event_user_summaries"


def add_tickets(
    conn: sqlite3.Connection,
    event_id: str,
    user_id: str,
    quantity: int,
    *,
    updated_at: str,
) -> None:
    """Increment ``total_tickets``, creating the summary row if needed."""
    conn.execute(
        """
        INSERT INTO event_user_summaries (event_id, user_id, total_tickets, used_count, last_updated)
        VALUES (?, ?, ?, 0, ?)
        ON CONFLICT (event_id, user_id) DO UPDATE SET
            total_tickets = total_tickets + excluded.total_tickets,
            last_updated = excluded.last_updated
        """,
        (event_id, user_id, quantity, updated_at),
    )


def add_use(
    conn: sqlite3.Connection,
    event_id: str,
    user_id: str,
    *,
    scanned_at: str,
) -> None:
    """Increment ``used_count`` and stamp ``last_scan_at``."""
    conn.execute(
        """
        INSERT INTO event_user_summaries
            (event_id, user_id, total_tickets, used_count, last_scan_at, last_updated)
        VALUES (?, ?, 0, 1, ?, ?)
        ON CONFLICT (event_id, user_id) DO UPDATE SET
            used_count = used_count + 1,
            last_scan_at = excluded.last_scan_at,
            last_updated = excluded.last_updated
        """,
        (event_id, user_id, scanned_at, scanned_at),
    )


def fetch_summaries(
    conn: sqlite3.Connection, event_id: str, user_ids: list[str]
) -> dict[str, SummaryRecord]:
    """Return stored summaries for ``user_ids`` keyed by user id."""
    if not user_ids:
        return {}
    placeholders = ", ".join("?" for _ in user_ids)
    rows = conn.execute(
        f"{_SELECT_SUMMARY} WHERE event_id = ? AND user_id IN ({placeholders})",
        (event_id, *user_ids),
    ).fetchall()
    return {row[1]: SummaryRecord(*row) for row in rows}


def write_summary(
    conn: sqlite3.Connection,
    event_id: str,
    user_id: str,
    *,
    total_tickets: int,
    used_count: int,
    last_scan_at: str | None,
    updated_at: str,
) -> None:
    """Overwrite a summary row with folded values."""
    conn.execute(
        """
        INSERT INTO event_user_summaries
            (event_id, user_id, total_tickets, used_count, last_scan_at, last_updated)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (event_id, user_id) DO UPDATE SET
            total_tickets = excluded.total_tickets,
            used_count = excluded.used_count,
            last_scan_at = excluded.last_scan_at,
            last_updated = excluded.last_updated
        """,
        (event_id, user_id, total_tickets, used_count, last_scan_at, updated_at),
    )


def list_summary_user_ids(event_id: str) -> list[str]:
    """Return every user holding a summary row at the event, sorted."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                "SELECT user_id FROM event_user_summaries WHERE event_id = ? ORDER BY user_id",
                (event_id,),
            ).fetchall()
    except Exception as exc:
        raise_read_error("summaries.list_summary_user_ids", exc, details=f"event_id={event_id!r}")
    return [row[0] for row in rows]


def get_summary(event_id: str, user_id: str) -> SummaryRecord | None:
    try:
        with connection_scope() as conn:
            return fetch_summaries(conn, event_id, [user_id]).get(user_id)
    except Exception as exc:
        raise_read_error(
            "summaries.get_summary",
            exc,
            details=f"event_id={event_id!r}, user_id={user_id!r}",
        )
