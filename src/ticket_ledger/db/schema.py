"""Schema creation for the SQLite ledger backend.

The schema layer is isolated from ledger/query code so schema changes are
reviewable without wading through unrelated repository logic.

Ticket invariants live in the table definition itself:

- ``0 <= used_count <= quantity`` and ``quantity >= 1``.
- ``active`` always equals ``used_count < quantity AND transferred_to IS NULL``.

Because they are CHECK constraints, a buggy write path fails loudly with
``sqlite3.IntegrityError`` instead of silently persisting a diverged row.
"""

from __future__ import annotations

import logging
import sqlite3

from ticket_ledger.db.connection import get_connection
from ticket_ledger.db.errors import raise_write_error

logger = logging.getLogger(__name__)

# Hot-path index rationale:
# 1. owner scans and reconciliation fold tickets per (event, owner).
# 2. transfer claim/preview resolve by claim token hash.
# 3. token repair walks an event's index entries.
# 4. the rate limiter prunes attempts per key by time.
HOT_PATH_INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_tickets_event_owner ON tickets(event_id, owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_transfers_claim_hash ON transfers(claim_token_hash)",
    "CREATE INDEX IF NOT EXISTS idx_transfers_ticket ON transfers(ticket_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_ticket_tokens_event ON ticket_tokens(event_id)",
    "CREATE INDEX IF NOT EXISTS idx_rate_limits_key_time ON rate_limits(key, attempted_at)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)",
)


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        starts_at TEXT,
        remaining_quantity INTEGER NOT NULL DEFAULT 0 CHECK (remaining_quantity >= 0),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT UNIQUE,
        email TEXT,
        display_name TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL REFERENCES events(id),
        owner_id TEXT NOT NULL,
        owner_email TEXT,
        owner_name TEXT,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        used_count INTEGER NOT NULL DEFAULT 0
            CHECK (used_count >= 0 AND used_count <= quantity),
        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
        token TEXT UNIQUE,
        pending_transfer_id TEXT,
        previous_owner_id TEXT,
        transferred_to TEXT,
        transferred_at TEXT,
        claimed_from_transfer_id TEXT,
        order_ref TEXT,
        issued_at TEXT NOT NULL,
        last_scan_at TEXT,
        last_scanned_by TEXT,
        CHECK (
            active = CASE
                WHEN used_count < quantity AND transferred_to IS NULL THEN 1
                ELSE 0
            END
        )
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_tokens (
        token TEXT PRIMARY KEY,
        event_id TEXT NOT NULL,
        ticket_id TEXT NOT NULL UNIQUE REFERENCES tickets(id),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transfers (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        from_owner_id TEXT NOT NULL,
        from_email TEXT,
        from_name TEXT,
        to_user_id TEXT,
        to_email TEXT NOT NULL,
        to_username TEXT,
        to_display_name TEXT,
        claim_token_hash TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL CHECK (status IN ('pending', 'claimed', 'cancelled')),
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        claimed_by_user_id TEXT,
        claimed_at TEXT,
        new_ticket_id TEXT,
        cancelled_at TEXT,
        cancelled_by_admin INTEGER NOT NULL DEFAULT 0 CHECK (cancelled_by_admin IN (0, 1))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fulfillments (
        key TEXT PRIMARY KEY,
        status TEXT NOT NULL CHECK (status IN ('processing', 'completed', 'failed')),
        created_ticket_refs TEXT NOT NULL DEFAULT '[]',
        errors TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_user_summaries (
        event_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        total_tickets INTEGER NOT NULL DEFAULT 0 CHECK (total_tickets >= 0),
        used_count INTEGER NOT NULL DEFAULT 0 CHECK (used_count >= 0),
        last_scan_at TEXT,
        last_updated TEXT NOT NULL,
        PRIMARY KEY (event_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_metrics (
        event_id TEXT PRIMARY KEY,
        scans_accepted INTEGER NOT NULL DEFAULT 0,
        scan_denials INTEGER NOT NULL DEFAULT 0,
        preview_count INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT NOT NULL,
        attempted_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        payload TEXT,
        read INTEGER NOT NULL DEFAULT 0 CHECK (read IN (0, 1)),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reconciliation_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL,
        processed INTEGER NOT NULL,
        updated INTEGER NOT NULL,
        samples TEXT NOT NULL DEFAULT '[]',
        automated INTEGER NOT NULL DEFAULT 0 CHECK (automated IN (0, 1)),
        ran_at TEXT NOT NULL
    )
    """,
)


def init_database() -> None:
    """Create all ledger tables and indexes if they do not already exist.

    Safe to call repeatedly; every statement is ``IF NOT EXISTS``.

    Raises:
        DatabaseWriteError: The file cannot be opened or a statement fails.
    """
    try:
        conn = get_connection()
    except sqlite3.Error as exc:
        raise_write_error("schema.init_database", exc)
    try:
        cursor = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
        for statement in HOT_PATH_INDEX_STATEMENTS:
            cursor.execute(statement)
        conn.commit()
    except sqlite3.Error as exc:
        raise_write_error("schema.init_database", exc)
    finally:
        conn.close()
    logger.info("Database schema ready")
