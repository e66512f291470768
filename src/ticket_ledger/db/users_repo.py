"""Recipient directory used to resolve transfer recipients.

Account management lives elsewhere; this table only mirrors the identity
fields the ledger needs (username, email, display name).
"""

from __future__ import annotations

from ticket_ledger.db.connection import connection_scope
from ticket_ledger.db.errors import raise_read_error, raise_write_error
from ticket_ledger.db.types import USER_COLUMNS, UserRecord

_SELECT_USER = f"SELECT {', '.join(USER_COLUMNS)} FROM users"


def upsert_user(
    user_id: str,
    *,
    created_at: str,
    username: str | None = None,
    email: str | None = None,
    display_name: str | None = None,
) -> UserRecord:
    """Insert or refresh a directory entry.

    Emails and usernames are stored lower-cased so lookups are case-insensitive.
    """
    normalized_email = email.strip().lower() if email else None
    normalized_username = username.strip().lstrip("@").lower() if username else None
    try:
        with connection_scope(write=True) as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, email, display_name, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    username = excluded.username,
                    email = excluded.email,
                    display_name = excluded.display_name
                """,
                (user_id, normalized_username, normalized_email, display_name, created_at),
            )
            row = conn.execute(f"{_SELECT_USER} WHERE id = ?", (user_id,)).fetchone()
    except Exception as exc:
        raise_write_error("users.upsert_user", exc, details=f"user_id={user_id!r}")
    return UserRecord(*row)


def _get_one(operation: str, where: str, value: str) -> UserRecord | None:
    try:
        with connection_scope() as conn:
            row = conn.execute(f"{_SELECT_USER} WHERE {where} LIMIT 1", (value,)).fetchone()
    except Exception as exc:
        raise_read_error(operation, exc)
    return UserRecord(*row) if row else None


def get_user(user_id: str) -> UserRecord | None:
    return _get_one("users.get_user", "id = ?", user_id)


def get_user_by_username(username: str) -> UserRecord | None:
    return _get_one("users.get_user_by_username", "username = ?", username.strip())


def get_user_by_email(email: str) -> UserRecord | None:
    return _get_one("users.get_user_by_email", "email = ?", email.strip().lower())
