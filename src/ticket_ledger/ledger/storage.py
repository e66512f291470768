"""Bridge between ledger services and the DB transaction runner."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from ticket_ledger.db.connection import transaction
from ticket_ledger.db.errors import DatabaseBusyError
from ticket_ledger.ledger.errors import TransientStorageError

T = TypeVar("T")


def atomic(
    operation: str,
    work: Callable[[sqlite3.Connection], T],
    *,
    details: str | None = None,
) -> T:
    """Run ``work`` in one ``BEGIN IMMEDIATE`` transaction.

    Lock exhaustion surfaces as :class:`TransientStorageError`; nothing was
    committed, so the caller may re-query or retry. Domain errors raised by
    ``work`` propagate unchanged after rollback.
    """
    try:
        return transaction(operation, work, details=details)
    except DatabaseBusyError as exc:
        raise TransientStorageError(
            "Storage is busy, retry shortly", operation=operation
        ) from exc
