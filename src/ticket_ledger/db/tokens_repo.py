"""Token index: scan token -> (event_id, ticket_id)."""

from __future__ import annotations

import sqlite3

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error
from ticket_ledger.db.types import TOKEN_COLUMNS, TokenEntry

_SELECT_TOKEN = f"SELECT {', '.join(TOKEN_COLUMNS)} FROM ticket_tokens"


def insert_token(
    conn: sqlite3.Connection,
    token: str,
    *,
    event_id: str,
    ticket_id: str,
    created_at: str,
) -> None:
    conn.execute(
        "INSERT INTO ticket_tokens (token, event_id, ticket_id, created_at) VALUES (?, ?, ?, ?)",
        (token, event_id, ticket_id, created_at),
    )


def delete_token(conn: sqlite3.Connection, token: str) -> None:
    conn.execute("DELETE FROM ticket_tokens WHERE token = ?", (token,))


def delete_ticket_entries(conn: sqlite3.Connection, ticket_id: str) -> int:
    """Remove every index entry pointing at ``ticket_id``; returns rows removed."""
    cursor = conn.execute("DELETE FROM ticket_tokens WHERE ticket_id = ?", (ticket_id,))
    return cursor.rowcount


def lookup_token(token: str) -> TokenEntry | None:
    """Point read used to route a scan before its transaction opens."""
    try:
        with connection_scope() as conn:
            row = conn.execute(f"{_SELECT_TOKEN} WHERE token = ?", (token,)).fetchone()
    except Exception as exc:
        raise_read_error("tokens.lookup_token", exc)
    return TokenEntry(*row) if row else None


def fetch_ticket_entry(conn: sqlite3.Connection, ticket_id: str) -> TokenEntry | None:
    row = conn.execute(f"{_SELECT_TOKEN} WHERE ticket_id = ?", (ticket_id,)).fetchone()
    return TokenEntry(*row) if row else None


def fetch_event_entries(
    conn: sqlite3.Connection,
    event_id: str,
    *,
    after_token: str = "",
    limit: int,
) -> list[TokenEntry]:
    """Page through an event's index entries by token."""
    rows = conn.execute(
        f"{_SELECT_TOKEN} WHERE event_id = ? AND token > ? ORDER BY token LIMIT ?",
        (event_id, after_token, limit),
    ).fetchall()
    return [TokenEntry(*row) for row in rows]
