"""Sliding-window attempt log backing the default rate limiter."""

from __future__ import annotations

import math
import sqlite3


def check_and_record(
    conn: sqlite3.Connection,
    key: str,
    *,
    max_attempts: int,
    window_seconds: int,
    now_ts: float,
) -> float | None:
    """Admit or refuse one attempt for ``key`` inside an open transaction.

    Attempts older than the window are pruned first. When fewer than
    ``max_attempts`` remain, the attempt is recorded and ``None`` is returned.
    Otherwise nothing is written and the number of seconds until the oldest
    attempt leaves the window is returned.
    """
    window_start = now_ts - window_seconds
    conn.execute(
        "DELETE FROM rate_limits WHERE key = ? AND attempted_at <= ?",
        (key, window_start),
    )
    count, oldest = conn.execute(
        "SELECT COUNT(*), MIN(attempted_at) FROM rate_limits WHERE key = ?",
        (key,),
    ).fetchone()
    if int(count) >= max_attempts:
        return max(1.0, math.ceil(float(oldest) + window_seconds - now_ts))
    conn.execute(
        "INSERT INTO rate_limits (key, attempted_at) VALUES (?, ?)",
        (key, now_ts),
    )
    return None
