"""Transfer row persistence."""

from __future__ import annotations

import sqlite3

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error
from ticket_ledger.db.types import TRANSFER_COLUMNS, TransferRecord

_SELECT_TRANSFER = f"SELECT {', '.join(TRANSFER_COLUMNS)} FROM transfers"


def insert_transfer(conn: sqlite3.Connection, transfer: TransferRecord) -> None:
    placeholders = ", ".join("?" for _ in TRANSFER_COLUMNS)
    conn.execute(
        f"INSERT INTO transfers ({', '.join(TRANSFER_COLUMNS)}) VALUES ({placeholders})",
        (
            transfer.id,
            transfer.event_id,
            transfer.ticket_id,
            transfer.from_owner_id,
            transfer.from_email,
            transfer.from_name,
            transfer.to_user_id,
            transfer.to_email,
            transfer.to_username,
            transfer.to_display_name,
            transfer.claim_token_hash,
            transfer.status,
            transfer.quantity,
            transfer.created_at,
            transfer.expires_at,
            transfer.claimed_by_user_id,
            transfer.claimed_at,
            transfer.new_ticket_id,
            transfer.cancelled_at,
            int(transfer.cancelled_by_admin),
        ),
    )


def fetch_transfer(conn: sqlite3.Connection, transfer_id: str) -> TransferRecord | None:
    row = conn.execute(f"{_SELECT_TRANSFER} WHERE id = ?", (transfer_id,)).fetchone()
    return TransferRecord.from_row(row) if row else None


def get_transfer(transfer_id: str) -> TransferRecord | None:
    """Read one transfer by id outside any transaction."""
    try:
        with connection_scope() as conn:
            return fetch_transfer(conn, transfer_id)
    except Exception as exc:
        raise_read_error("transfers.get_transfer", exc, details=f"transfer_id={transfer_id!r}")


def get_transfer_by_hash(claim_token_hash: str) -> TransferRecord | None:
    """Resolve a claim token hash to its transfer (any status)."""
    try:
        with connection_scope() as conn:
            row = conn.execute(
                f"{_SELECT_TRANSFER} WHERE claim_token_hash = ?", (claim_token_hash,)
            ).fetchone()
    except Exception as exc:
        raise_read_error("transfers.get_transfer_by_hash", exc)
    return TransferRecord.from_row(row) if row else None


def mark_claimed(
    conn: sqlite3.Connection,
    transfer_id: str,
    *,
    claimed_by_user_id: str,
    claimed_at: str,
    new_ticket_id: str,
) -> None:
    conn.execute(
        """
        UPDATE transfers
        SET status = 'claimed', claimed_by_user_id = ?, claimed_at = ?, new_ticket_id = ?
        WHERE id = ?
        """,
        (claimed_by_user_id, claimed_at, new_ticket_id, transfer_id),
    )


def mark_cancelled(
    conn: sqlite3.Connection,
    transfer_id: str,
    *,
    cancelled_at: str,
    by_admin: bool,
) -> None:
    conn.execute(
        """
        UPDATE transfers
        SET status = 'cancelled', cancelled_at = ?, cancelled_by_admin = ?
        WHERE id = ?
        """,
        (cancelled_at, int(by_admin), transfer_id),
    )
