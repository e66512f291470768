"""Ticket row persistence.

Every mutation here is a single statement meant to run inside
:func:`ticket_ledger.db.connection.transaction`; the ticket CHECK
constraints reject any write that would break the ``active`` invariant.
"""

from __future__ import annotations

import sqlite3

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error
from ticket_ledger.db.types import TICKET_COLUMNS, TicketRecord

_SELECT_TICKET = f"SELECT {', '.join(TICKET_COLUMNS)} FROM tickets"

# Owner-scan selection order: most admissions left, then oldest, then id.
# Deactivated tickets count as zero remaining regardless of used_count.
_OWNER_SCAN_ORDER = """
    ORDER BY
        CASE WHEN active = 1 THEN quantity - used_count ELSE 0 END DESC,
        issued_at ASC,
        id ASC
"""


def insert_ticket(conn: sqlite3.Connection, ticket: TicketRecord) -> None:
    """Insert a fully populated ticket row."""
    placeholders = ", ".join("?" for _ in TICKET_COLUMNS)
    conn.execute(
        f"INSERT INTO tickets ({', '.join(TICKET_COLUMNS)}) VALUES ({placeholders})",
        (
            ticket.id,
            ticket.event_id,
            ticket.owner_id,
            ticket.owner_email,
            ticket.owner_name,
            ticket.quantity,
            ticket.used_count,
            int(ticket.active),
            ticket.token,
            ticket.pending_transfer_id,
            ticket.previous_owner_id,
            ticket.transferred_to,
            ticket.transferred_at,
            ticket.claimed_from_transfer_id,
            ticket.order_ref,
            ticket.issued_at,
            ticket.last_scan_at,
            ticket.last_scanned_by,
        ),
    )


def fetch_ticket(conn: sqlite3.Connection, ticket_id: str) -> TicketRecord | None:
    """Read one ticket inside an open transaction."""
    row = conn.execute(f"{_SELECT_TICKET} WHERE id = ?", (ticket_id,)).fetchone()
    return TicketRecord.from_row(row) if row else None


def get_ticket(ticket_id: str) -> TicketRecord | None:
    """Read one ticket outside any transaction."""
    try:
        with connection_scope() as conn:
            return fetch_ticket(conn, ticket_id)
    except Exception as exc:
        raise_read_error("tickets.get_ticket", exc, details=f"ticket_id={ticket_id!r}")


def fetch_owner_tickets(
    conn: sqlite3.Connection, event_id: str, owner_id: str
) -> list[TicketRecord]:
    """Return an owner's tickets at an event in owner-scan selection order."""
    rows = conn.execute(
        f"{_SELECT_TICKET} WHERE event_id = ? AND owner_id = ? {_OWNER_SCAN_ORDER}",
        (event_id, owner_id),
    ).fetchall()
    return [TicketRecord.from_row(row) for row in rows]


def list_owner_tickets(event_id: str, owner_id: str) -> list[TicketRecord]:
    """Standalone variant of :func:`fetch_owner_tickets`."""
    try:
        with connection_scope() as conn:
            return fetch_owner_tickets(conn, event_id, owner_id)
    except Exception as exc:
        raise_read_error(
            "tickets.list_owner_tickets",
            exc,
            details=f"event_id={event_id!r}, owner_id={owner_id!r}",
        )


def record_use(
    conn: sqlite3.Connection,
    ticket_id: str,
    *,
    scanned_at: str,
    scanned_by: str | None,
) -> None:
    """Consume one admission and recompute ``active`` in the same statement."""
    conn.execute(
        """
        UPDATE tickets
        SET used_count = used_count + 1,
            active = CASE
                WHEN used_count + 1 < quantity AND transferred_to IS NULL THEN 1
                ELSE 0
            END,
            last_scan_at = ?,
            last_scanned_by = ?
        WHERE id = ?
        """,
        (scanned_at, scanned_by, ticket_id),
    )


def set_pending_transfer(
    conn: sqlite3.Connection, ticket_id: str, transfer_id: str | None
) -> None:
    """Point the ticket at its outstanding transfer, or clear it with ``None``."""
    conn.execute(
        "UPDATE tickets SET pending_transfer_id = ? WHERE id = ?",
        (transfer_id, ticket_id),
    )


def mark_transferred(
    conn: sqlite3.Connection,
    ticket_id: str,
    *,
    to_user_id: str,
    transferred_at: str,
) -> None:
    """Terminally deactivate a ticket that was given away and drop its token."""
    conn.execute(
        """
        UPDATE tickets
        SET active = 0,
            token = NULL,
            pending_transfer_id = NULL,
            transferred_to = ?,
            transferred_at = ?
        WHERE id = ?
        """,
        (to_user_id, transferred_at, ticket_id),
    )


def assign_token(conn: sqlite3.Connection, ticket_id: str, token: str) -> None:
    """Give a ticket a scan token."""
    conn.execute("UPDATE tickets SET token = ? WHERE id = ?", (token, ticket_id))


def fetch_event_tickets(
    conn: sqlite3.Connection,
    event_id: str,
    *,
    after_id: str = "",
    limit: int,
) -> list[TicketRecord]:
    """Page through an event's tickets by id (keyset pagination)."""
    rows = conn.execute(
        f"{_SELECT_TICKET} WHERE event_id = ? AND id > ? ORDER BY id LIMIT ?",
        (event_id, after_id, limit),
    ).fetchall()
    return [TicketRecord.from_row(row) for row in rows]


def list_event_owner_ids(event_id: str) -> list[str]:
    """Return every distinct owner holding a ticket at the event, sorted."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                "SELECT DISTINCT owner_id FROM tickets WHERE event_id = ? ORDER BY owner_id",
                (event_id,),
            ).fetchall()
    except Exception as exc:
        raise_read_error("tickets.list_event_owner_ids", exc, details=f"event_id={event_id!r}")
    return [row[0] for row in rows]


def fold_owner_totals(
    conn: sqlite3.Connection, event_id: str, owner_ids: list[str]
) -> dict[str, tuple[int, int, str | None]]:
    """Fold tickets per owner into ``(sum(quantity), sum(used_count), max(last_scan_at))``.

    Owners with no tickets are absent from the result.
    """
    if not owner_ids:
        return {}
    placeholders = ", ".join("?" for _ in owner_ids)
    rows = conn.execute(
        f"""
        SELECT owner_id, SUM(quantity), SUM(used_count), MAX(last_scan_at)
        FROM tickets
        WHERE event_id = ? AND owner_id IN ({placeholders})
        GROUP BY owner_id
        """,
        (event_id, *owner_ids),
    ).fetchall()
    return {row[0]: (int(row[1]), int(row[2]), row[3]) for row in rows}
