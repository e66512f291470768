"""SQLite connection primitives for the ticket ledger DB layer.

This module owns connection creation, low-level SQLite runtime pragmas, and the
transaction runner every ledger mutation goes through, so repository code can
stay focused on queries.

Transactions
------------
:func:`transaction` opens ``BEGIN IMMEDIATE``, which takes SQLite's single
write lock up front. Two ledger mutations therefore never interleave: the
second one waits (``busy_timeout``) and then reads the first one's committed
rows. When the lock cannot be obtained the whole unit of work is re-run from
scratch, up to ``config.ledger.max_transaction_attempts`` times.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from ticket_ledger.db.errors import (
    DatabaseBusyError,
    DatabaseOperationContext,
    raise_write_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_db_path() -> Path:
    """Resolve the absolute SQLite database path from runtime configuration."""
    from ticket_ledger.config import config

    return config.database.absolute_path


def configure_connection(connection: sqlite3.Connection) -> sqlite3.Connection:
    """Apply connection-level SQLite pragmas required by the application.

    Notes:
        - ``foreign_keys=ON`` is required because SQLite does not enforce
          foreign-key constraints by default.
        - ``busy_timeout`` lets concurrent writers queue on the write lock
          instead of failing immediately.
    """
    connection.execute("PRAGMA foreign_keys = ON")
    connection.execute("PRAGMA busy_timeout = 5000")
    return connection


def get_connection() -> sqlite3.Connection:
    """Create and configure a new SQLite connection."""
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path))
    return configure_connection(connection)


@contextmanager
def connection_scope(*, write: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a configured connection with guaranteed cleanup semantics.

    Args:
        write: When True, commit on success and rollback on exceptions.

    Behavior:
        - Always closes the connection in ``finally``.
        - For write scopes, commits at the end of a successful block.
        - For write scopes, attempts rollback before re-raising failures.
    """
    connection = get_connection()
    try:
        yield connection
        if write:
            connection.commit()
    except Exception:
        if write:
            try:
                connection.rollback()
            except sqlite3.Error:
                pass
        raise
    finally:
        connection.close()


def is_busy_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is SQLite lock contention rather than a real failure."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def transaction(
    operation: str,
    work: Callable[[sqlite3.Connection], T],
    *,
    details: str | None = None,
) -> T:
    """Run ``work`` inside one serializable write transaction.

    ``work`` receives an open connection already inside ``BEGIN IMMEDIATE``.
    It must not commit; it may raise any exception to abort. The return value
    of ``work`` is returned after a successful ``COMMIT``.

    Args:
        operation: Stable operation identifier used in errors and logs.
        work: The unit of work. It may be invoked more than once, so it must
            not perform side effects outside the connection.
        details: Optional context attached to raised DB errors.

    Raises:
        DatabaseBusyError: The write lock stayed unavailable for every attempt.
        DatabaseWriteError: Any other SQLite failure.
        Exception: Anything raised by ``work`` itself, after rollback.
    """
    from ticket_ledger.config import config

    attempts = max(1, config.ledger.max_transaction_attempts)
    backoff = max(0.0, config.ledger.retry_backoff_seconds)
    last_busy: sqlite3.OperationalError | None = None

    for attempt in range(1, attempts + 1):
        try:
            connection = get_connection()
        except sqlite3.Error as exc:
            raise_write_error(operation, exc, details=details)
        # Autocommit mode so BEGIN/COMMIT are issued explicitly below.
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE")
            result = work(connection)
            connection.execute("COMMIT")
            return result
        except sqlite3.OperationalError as exc:
            _rollback_quietly(connection)
            if not is_busy_error(exc):
                raise_write_error(operation, exc, details=details)
            last_busy = exc
            logger.debug(
                "%s: write lock busy (attempt %d/%d)", operation, attempt, attempts
            )
            if attempt < attempts:
                time.sleep(backoff * attempt)
        except sqlite3.Error as exc:
            _rollback_quietly(connection)
            raise_write_error(operation, exc, details=details)
        except BaseException:
            _rollback_quietly(connection)
            raise
        finally:
            connection.close()

    logger.warning("%s: gave up after %d busy attempts", operation, attempts)
    raise DatabaseBusyError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=last_busy,
    ) from last_busy


def _rollback_quietly(connection: sqlite3.Connection) -> None:
    """Roll back if a transaction is open, preserving the original exception."""
    try:
        if connection.in_transaction:
            connection.execute("ROLLBACK")
    except sqlite3.Error:
        pass
