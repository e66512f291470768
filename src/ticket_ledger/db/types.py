"""Shared DB-layer dataclasses for repository contracts.

Each record mirrors one table row. Column tuples next to each record keep the
``SELECT`` lists and the dataclass field order in lockstep, so repositories
can build records with ``Record(*row)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class EventRecord:
    """An event and its remaining admission inventory."""

    id: str
    name: str
    starts_at: str | None
    remaining_quantity: int
    created_at: str


EVENT_COLUMNS = ("id", "name", "starts_at", "remaining_quantity", "created_at")


@dataclass(slots=True)
class TicketRecord:
    """
    One ticket row: a bundle of ``quantity`` admissions owned by one user.

    Attributes:
        id: Ticket identifier.
        event_id: Owning event, immutable.
        owner_id: Current owner user id.
        quantity: Admissions granted, immutable, at least 1.
        used_count: Admissions consumed so far (``0..quantity``).
        active: Persisted ``used_count < quantity and not transferred``.
        token: Current scan token, ``None`` once superseded by a claim.
        pending_transfer_id: The one outstanding transfer, if any.
        previous_owner_id: Sender when this ticket was created by a claim.
        transferred_to: Claimer when this ticket was given away.
    """

    id: str
    event_id: str
    owner_id: str
    owner_email: str | None
    owner_name: str | None
    quantity: int
    used_count: int
    active: bool
    token: str | None
    pending_transfer_id: str | None
    previous_owner_id: str | None
    transferred_to: str | None
    transferred_at: str | None
    claimed_from_transfer_id: str | None
    order_ref: str | None
    issued_at: str
    last_scan_at: str | None
    last_scanned_by: str | None

    @property
    def remaining(self) -> int:
        """Admissions still scannable; zero for deactivated tickets."""
        if not self.active:
            return 0
        return self.quantity - self.used_count

    @classmethod
    def from_row(cls, row: tuple[Any, ...]) -> TicketRecord:
        values = list(row)
        values[7] = bool(values[7])
        return cls(*values)


TICKET_COLUMNS = (
    "id",
    "event_id",
    "owner_id",
    "owner_email",
    "owner_name",
    "quantity",
    "used_count",
    "active",
    "token",
    "pending_transfer_id",
    "previous_owner_id",
    "transferred_to",
    "transferred_at",
    "claimed_from_transfer_id",
    "order_ref",
    "issued_at",
    "last_scan_at",
    "last_scanned_by",
)


@dataclass(slots=True)
class TokenEntry:
    """Reverse index entry from scan token to its ticket."""

    token: str
    event_id: str
    ticket_id: str
    created_at: str


TOKEN_COLUMNS = ("token", "event_id", "ticket_id", "created_at")


@dataclass(slots=True)
class TransferRecord:
    """
    A pending, claimed, or cancelled ownership transfer.

    Only the SHA-256 hash of the claim token is stored; the raw token exists
    solely in the response to the sender and in the recipient's claim link.
    """

    id: str
    event_id: str
    ticket_id: str
    from_owner_id: str
    from_email: str | None
    from_name: str | None
    to_user_id: str | None
    to_email: str
    to_username: str | None
    to_display_name: str | None
    claim_token_hash: str
    status: str
    quantity: int
    created_at: str
    expires_at: str
    claimed_by_user_id: str | None
    claimed_at: str | None
    new_ticket_id: str | None
    cancelled_at: str | None
    cancelled_by_admin: bool

    @classmethod
    def from_row(cls, row: tuple[Any, ...]) -> TransferRecord:
        values = list(row)
        values[19] = bool(values[19])
        return cls(*values)


TRANSFER_COLUMNS = (
    "id",
    "event_id",
    "ticket_id",
    "from_owner_id",
    "from_email",
    "from_name",
    "to_user_id",
    "to_email",
    "to_username",
    "to_display_name",
    "claim_token_hash",
    "status",
    "quantity",
    "created_at",
    "expires_at",
    "claimed_by_user_id",
    "claimed_at",
    "new_ticket_id",
    "cancelled_at",
    "cancelled_by_admin",
)


@dataclass(slots=True)
class FulfillmentRecord:
    """Idempotency record tying one order settlement to the tickets it produced."""

    key: str
    status: str
    created_ticket_refs: list[dict[str, Any]]
    errors: list[dict[str, Any]] | None
    created_at: str
    completed_at: str | None


FULFILLMENT_COLUMNS = (
    "key",
    "status",
    "created_ticket_refs",
    "errors",
    "created_at",
    "completed_at",
)


@dataclass(slots=True)
class SummaryRecord:
    """Denormalized per-(event, user) ticket totals."""

    event_id: str
    user_id: str
    total_tickets: int
    used_count: int
    last_scan_at: str | None
    last_updated: str


SUMMARY_COLUMNS = (
    "event_id",
    "user_id",
    "total_tickets",
    "used_count",
    "last_scan_at",
    "last_updated",
)


@dataclass(slots=True)
class UserRecord:
    """Recipient directory entry used to resolve usernames and emails."""

    id: str
    username: str | None
    email: str | None
    display_name: str | None
    created_at: str


USER_COLUMNS = ("id", "username", "email", "display_name", "created_at")


@dataclass(slots=True)
class EventMetricsRecord:
    """Best-effort scan counters for one event."""

    event_id: str
    scans_accepted: int
    scan_denials: int
    preview_count: int
    updated_at: str


@dataclass(slots=True)
class NotificationRecord:
    """In-app notification row."""

    id: int
    user_id: str
    kind: str
    title: str
    body: str
    payload: dict[str, Any] | None
    read: bool
    created_at: str


@dataclass(slots=True)
class ReconciliationRunRecord:
    """Audit row for one non-dry reconciliation run."""

    id: int
    event_id: str
    processed: int
    updated: int
    samples: list[dict[str, Any]]
    automated: bool
    ran_at: str
