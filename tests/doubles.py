"""
Test doubles shared across the suite.

Kept outside ``conftest.py`` so test modules can import them directly.
"""

from datetime import UTC, datetime, timedelta

from ticket_ledger.db.types import TransferRecord
from ticket_ledger.integrations.rate_limiter import RateLimitDecision

# Frozen "now" every test starts from.
START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubRateLimiter:
    """Rate limiter that answers from a preset decision and records keys."""

    def __init__(self, decision: RateLimitDecision | None = None):
        self.decision = decision or RateLimitDecision(allowed=True)
        self.calls: list[tuple[str, int, int]] = []

    def allow(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitDecision:
        self.calls.append((key, max_attempts, window_seconds))
        return self.decision


class RecordingNotifier:
    """Notifier that remembers every callback instead of sending anything."""

    def __init__(self):
        self.events: list[tuple[str, TransferRecord, dict]] = []

    def transfer_created(self, transfer, *, event_name, raw_claim_token):
        self.events.append(
            ("created", transfer, {"event_name": event_name, "raw_claim_token": raw_claim_token})
        )

    def transfer_claimed(self, transfer, *, event_name, claimer_name):
        self.events.append(("claimed", transfer, {"event_name": event_name}))

    def transfer_cancelled(self, transfer, *, event_name):
        self.events.append(("cancelled", transfer, {"event_name": event_name}))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.events]
