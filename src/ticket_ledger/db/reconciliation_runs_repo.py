"""Audit trail of reconciliation runs."""

from __future__ import annotations

import json
from typing import Any

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error, raise_write_error
from ticket_ledger.db.types import ReconciliationRunRecord


def insert_run(
    event_id: str,
    *,
    processed: int,
    updated: int,
    samples: list[dict[str, Any]],
    automated: bool,
    ran_at: str,
) -> int:
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO reconciliation_runs
                    (event_id, processed, updated, samples, automated, ran_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (event_id, processed, updated, json.dumps(samples), int(automated), ran_at),
            )
            run_id = cursor.lastrowid
    except Exception as exc:
        raise_write_error("reconciliation.insert_run", exc, details=f"event_id={event_id!r}")
    return int(run_id or 0)


def list_runs(event_id: str) -> list[ReconciliationRunRecord]:
    """Return audit rows for an event, oldest first."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                """
                SELECT id, event_id, processed, updated, samples, automated, ran_at
                FROM reconciliation_runs WHERE event_id = ? ORDER BY id
                """,
                (event_id,),
            ).fetchall()
    except Exception as exc:
        raise_read_error("reconciliation.list_runs", exc, details=f"event_id={event_id!r}")
    return [
        ReconciliationRunRecord(
            id=row[0],
            event_id=row[1],
            processed=row[2],
            updated=row[3],
            samples=json.loads(row[4]),
            automated=bool(row[5]),
            ran_at=row[6],
        )
        for row in rows
    ]
