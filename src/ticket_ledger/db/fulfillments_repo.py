"""Fulfillment idempotency records.

The ``key`` primary key is the only thing standing between a retried payment
webhook and a second set of tickets, so :func:`insert_processing` is always
called after :func:`fetch_fulfillment` inside the same ``BEGIN IMMEDIATE``.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error
from ticket_ledger.db.types import FULFILLMENT_COLUMNS, FulfillmentRecord

_SELECT_FULFILLMENT = f"SELECT {', '.join(FULFILLMENT_COLUMNS)} FROM fulfillments"


def _from_row(row: tuple[Any, ...]) -> FulfillmentRecord:
    key, status, refs_json, errors_json, created_at, completed_at = row
    return FulfillmentRecord(
        key=key,
        status=status,
        created_ticket_refs=json.loads(refs_json) if refs_json else [],
        errors=json.loads(errors_json) if errors_json else None,
        created_at=created_at,
        completed_at=completed_at,
    )


def fetch_fulfillment(conn: sqlite3.Connection, key: str) -> FulfillmentRecord | None:
    row = conn.execute(f"{_SELECT_FULFILLMENT} WHERE key = ?", (key,)).fetchone()
    return _from_row(row) if row else None


def get_fulfillment(key: str) -> FulfillmentRecord | None:
    """Read one fulfillment outside any transaction."""
    try:
        with connection_scope() as conn:
            return fetch_fulfillment(conn, key)
    except Exception as exc:
        raise_read_error("fulfillments.get_fulfillment", exc, details=f"key={key!r}")


def insert_processing(conn: sqlite3.Connection, key: str, *, created_at: str) -> FulfillmentRecord:
    """Claim ``key`` by inserting a ``processing`` row."""
    conn.execute(
        "INSERT INTO fulfillments (key, status, created_ticket_refs, created_at) "
        "VALUES (?, 'processing', '[]', ?)",
        (key, created_at),
    )
    return FulfillmentRecord(
        key=key,
        status="processing",
        created_ticket_refs=[],
        errors=None,
        created_at=created_at,
        completed_at=None,
    )


def _append_json_item(conn: sqlite3.Connection, key: str, column: str, item: dict[str, Any]) -> None:
    row = conn.execute(f"SELECT {column} FROM fulfillments WHERE key = ?", (key,)).fetchone()
    if row is None:
        raise sqlite3.IntegrityError(f"fulfillment {key!r} does not exist")
    items = json.loads(row[0]) if row[0] else []
    items.append(item)
    conn.execute(f"UPDATE fulfillments SET {column} = ? WHERE key = ?", (json.dumps(items), key))


def append_ticket_ref(conn: sqlite3.Connection, key: str, ref: dict[str, Any]) -> None:
    """Record one issued ticket against ``key``.

    Runs in the transaction that issued the ticket, so a committed ticket is
    always listed in ``created_ticket_refs``.
    """
    _append_json_item(conn, key, "created_ticket_refs", ref)


def append_error(conn: sqlite3.Connection, key: str, error: dict[str, Any]) -> None:
    """Record one failed item against ``key``."""
    _append_json_item(conn, key, "errors", error)


def finish_fulfillment(
    conn: sqlite3.Connection,
    key: str,
    *,
    status: str,
    completed_at: str,
) -> FulfillmentRecord | None:
    """Stamp the terminal status of ``key`` and return the stored row."""
    conn.execute(
        "UPDATE fulfillments SET status = ?, completed_at = ? WHERE key = ?",
        (status, completed_at, key),
    )
    return fetch_fulfillment(conn, key)
