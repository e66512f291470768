"""Per-event scan counters."""

from __future__ import annotations

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error, raise_write_error
from ticket_ledger.db.types import EventMetricsRecord

METRIC_FIELDS = ("scans_accepted", "scan_denials", "preview_count")


def increment_metric(event_id: str, field: str, *, updated_at: str, amount: int = 1) -> None:
    """Atomically bump one counter for ``event_id``.

    Raises:
        ValueError: ``field`` is not one of :data:`METRIC_FIELDS`.
    """
    if field not in METRIC_FIELDS:
        raise ValueError(f"Unknown metric field: {field}")
    try:
        with connection_scope(write=True) as conn:
            conn.execute(
                f"""
                INSERT INTO event_metrics (event_id, {field}, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (event_id) DO UPDATE SET
                    {field} = {field} + excluded.{field},
                    updated_at = excluded.updated_at
                """,
                (event_id, amount, updated_at),
            )
    except Exception as exc:
        raise_write_error("metrics.increment_metric", exc, details=f"event_id={event_id!r}")


def get_metrics(event_id: str) -> EventMetricsRecord | None:
    try:
        with connection_scope() as conn:
            row = conn.execute(
                """
                SELECT event_id, scans_accepted, scan_denials, preview_count, updated_at
                FROM event_metrics WHERE event_id = ?
                """,
                (event_id,),
            ).fetchone()
    except Exception as exc:
        raise_read_error("metrics.get_metrics", exc, details=f"event_id={event_id!r}")
    return EventMetricsRecord(*row) if row else None
