"""Rate limiting for abuse-prone ledger operations.

The ledger only depends on the :class:`RateLimiter` protocol. The default
:class:`SqliteRateLimiter` keeps a sliding window of attempt timestamps per
key in the ``rate_limits`` table, pruned and counted inside one
``BEGIN IMMEDIATE`` transaction so two processes cannot both squeeze in the
last slot.

Failure policy
--------------
The limiter **fails open**: when storage is unavailable the attempt is allowed
and a warning is logged. Blocking legitimate transfers because the throttle's
own bookkeeping failed would be worse than briefly not throttling.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ticket_ledger.db import rate_limits_repo
from ticket_ledger.db.connection import transaction
from ticket_ledger.db.errors import DatabaseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Answer to one :meth:`RateLimiter.allow` call.

    Attributes:
        allowed: True when the attempt may proceed (and was recorded).
        retry_after: Whole seconds until a slot frees up; 0 when allowed.
    """

    allowed: bool
    retry_after: int = 0


class RateLimiter(Protocol):
    def allow(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitDecision: ...


class SqliteRateLimiter:
    """Sliding-window limiter persisted in SQLite.

    Args:
        clock: Returns epoch seconds. Injected by tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def allow(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitDecision:
        now_ts = self._clock()

        def work(conn: sqlite3.Connection) -> float | None:
            return rate_limits_repo.check_and_record(
                conn,
                key,
                max_attempts=max_attempts,
                window_seconds=window_seconds,
                now_ts=now_ts,
            )

        try:
            retry_after = transaction("rate_limit.allow", work, details=f"key={key!r}")
        except DatabaseError as exc:
            logger.warning("Rate limiter unavailable for %s, allowing: %s", key, exc)
            return RateLimitDecision(allowed=True)

        if retry_after is None:
            return RateLimitDecision(allowed=True)
        logger.info("Rate limit hit for %s; retry in %ds", key, int(retry_after))
        return RateLimitDecision(allowed=False, retry_after=int(retry_after))
