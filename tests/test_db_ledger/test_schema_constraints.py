"""Schema tests: tables exist and ticket invariants are enforced by SQLite itself."""

import sqlite3

import pytest

from ticket_ledger.db import schema
from ticket_ledger.db.connection import get_connection
from ticket_ledger.db.errors import DatabaseWriteError

EXPECTED_TABLES = {
    "events",
    "users",
    "tickets",
    "ticket_tokens",
    "transfers",
    "fulfillments",
    "event_user_summaries",
    "event_metrics",
    "rate_limits",
    "notifications",
    "reconciliation_runs",
}


def _insert_ticket(conn, *, quantity=2, used_count=0, active=1, transferred_to=None):
    conn.execute(
        """
        INSERT INTO tickets
            (id, event_id, owner_id, quantity, used_count, active, transferred_to, issued_at)
        VALUES ('t1', 'E1', 'user_a', ?, ?, ?, ?, '2026-03-01T12:00:00.000000+00:00')
        """,
        (quantity, used_count, active, transferred_to),
    )


@pytest.mark.db
def test_init_database_creates_all_tables(test_db):
    conn = get_connection()
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    finally:
        conn.close()
    assert EXPECTED_TABLES <= {row[0] for row in rows}


@pytest.mark.db
def test_init_database_is_idempotent(test_db):
    schema.init_database()
    schema.init_database()


@pytest.mark.db
def test_init_database_wraps_sqlite_failures(test_db):
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(schema, "SCHEMA_STATEMENTS", ("CREATE TABLE broken (",))
        with pytest.raises(DatabaseWriteError):
            schema.init_database()


@pytest.mark.db
@pytest.mark.parametrize(
    "kwargs",
    [
        {"quantity": 0, "active": 0},
        {"quantity": 2, "used_count": 3, "active": 0},
        {"quantity": 2, "used_count": 2, "active": 1},
        {"quantity": 2, "used_count": 0, "active": 0},
        {"quantity": 2, "used_count": 0, "active": 1, "transferred_to": "user_b"},
    ],
)
def test_ticket_invariants_are_check_constraints(make_event, kwargs):
    make_event("E1")
    conn = get_connection()
    try:
        with pytest.raises(sqlite3.IntegrityError):
            _insert_ticket(conn, **kwargs)
    finally:
        conn.close()


@pytest.mark.db
def test_consistent_ticket_row_is_accepted(make_event):
    make_event("E1")
    conn = get_connection()
    try:
        _insert_ticket(conn, quantity=2, used_count=2, active=0)
        conn.commit()
        row = conn.execute("SELECT active FROM tickets WHERE id = 't1'").fetchone()
    finally:
        conn.close()
    assert row == (0,)
