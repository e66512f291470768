"""In-app notification rows."""

from __future__ import annotations

import json
from typing import Any

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error, raise_write_error
from ticket_ledger.db.types import NotificationRecord


def insert_notification(
    user_id: str,
    *,
    kind: str,
    title: str,
    body: str,
    created_at: str,
    payload: dict[str, Any] | None = None,
) -> int:
    """Insert an unread notification and return its id."""
    try:
        with connection_scope(write=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications (user_id, kind, title, body, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    kind,
                    title,
                    body,
                    json.dumps(payload) if payload is not None else None,
                    created_at,
                ),
            )
            notification_id = cursor.lastrowid
    except Exception as exc:
        raise_write_error("notifications.insert_notification", exc, details=f"user_id={user_id!r}")
    return int(notification_id or 0)


def list_notifications(user_id: str) -> list[NotificationRecord]:
    """Return a user's notifications, newest first."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, kind, title, body, payload, read, created_at
                FROM notifications WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
    except Exception as exc:
        raise_read_error("notifications.list_notifications", exc, details=f"user_id={user_id!r}")
    return [
        NotificationRecord(
            id=row[0],
            user_id=row[1],
            kind=row[2],
            title=row[3],
            body=row[4],
            payload=json.loads(row[5]) if row[5] else None,
            read=bool(row[6]),
            created_at=row[7],
        )
        for row in rows
    ]
