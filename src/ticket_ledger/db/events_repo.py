"""Event and inventory repository operations.

Functions taking a ``conn`` argument run inside a caller-owned transaction
(see :func:`ticket_ledger.db.connection.transaction`). The others open their
own connection scope.
"""

from __future__ import annotations

import sqlite3
import uuid

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error, raise_write_error
from ticket_ledger.db.types import EVENT_COLUMNS, EventRecord

_SELECT_EVENT = f"SELECT {', '.join(EVENT_COLUMNS)} FROM events"


def create_event(
    name: str,
    *,
    remaining_quantity: int,
    created_at: str,
    starts_at: str | None = None,
    event_id: str | None = None,
) -> EventRecord:
    """Insert an event row and return it.

    Args:
        name: Display name.
        remaining_quantity: Initial admission inventory (non-negative).
        created_at: ISO-8601 UTC creation timestamp.
        starts_at: Optional ISO-8601 UTC start time. Transfers are refused
            once it has passed.
        event_id: Explicit id; a random hex id is generated when omitted.

    Raises:
        DatabaseWriteError: On SQLite failure, including duplicate ids.
    """
    record = EventRecord(
        id=event_id or uuid.uuid4().hex,
        name=name,
        starts_at=starts_at,
        remaining_quantity=remaining_quantity,
        created_at=created_at,
    )
    try:
        with connection_scope(write=True) as conn:
            conn.execute(
                f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}) VALUES (?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.name,
                    record.starts_at,
                    record.remaining_quantity,
                    record.created_at,
                ),
            )
    except Exception as exc:
        raise_write_error("events.create_event", exc, details=f"event_id={record.id!r}")
    return record


def fetch_event(conn: sqlite3.Connection, event_id: str) -> EventRecord | None:
    """Read one event inside an open transaction."""
    row = conn.execute(f"{_SELECT_EVENT} WHERE id = ?", (event_id,)).fetchone()
    return EventRecord(*row) if row else None


def get_event(event_id: str) -> EventRecord | None:
    """Read one event outside any transaction."""
    try:
        with connection_scope() as conn:
            return fetch_event(conn, event_id)
    except Exception as exc:
        raise_read_error("events.get_event", exc, details=f"event_id={event_id!r}")


def decrement_inventory(conn: sqlite3.Connection, event_id: str, quantity: int) -> int:
    """Lower ``remaining_quantity`` by ``quantity``, clamping at zero.

    Issuance is never refused for lack of inventory; the counter only
    records how much is left.

    Returns:
        The new remaining quantity.
    """
    conn.execute(
        "UPDATE events SET remaining_quantity = MAX(0, remaining_quantity - ?) WHERE id = ?",
        (quantity, event_id),
    )
    row = conn.execute(
        "SELECT remaining_quantity FROM events WHERE id = ?", (event_id,)
    ).fetchone()
    return int(row[0])


def list_event_ids(*, limit: int | None = None) -> list[str]:
    """Return event ids, oldest first, optionally capped at ``limit``."""
    sql = "SELECT id FROM events ORDER BY created_at, id"
    params: tuple[int, ...] = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (limit,)
    try:
        with connection_scope() as conn:
            return [row[0] for row in conn.execute(sql, params).fetchall()]
    except Exception as exc:
        raise_read_error("events.list_event_ids", exc)
