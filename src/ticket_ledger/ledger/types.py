"""Result and request types returned by ledger services.

These dataclasses are the service-layer contract: the API layer converts them
to pydantic response models, the CLI prints them, and tests assert on them.
Row-level records live in :mod:`ticket_ledger.db.types`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ticket_ledger.db.types import FulfillmentRecord, TicketRecord, TransferRecord


@dataclass(frozen=True)
class IssueRequest:
    """One line of an order settlement: ``quantity`` admissions for one owner."""

    event_id: str
    owner_id: str
    quantity: int
    owner_email: str | None = None
    owner_name: str | None = None


@dataclass(frozen=True)
class FulfillmentResult:
    """Outcome of :meth:`FulfillmentGuard.settle`.

    Attributes:
        fulfillment: The stored fulfillment row (unchanged on replay).
        replayed: True when ``key`` had already been settled or was in flight.
        partial_success: True when some items were issued and some failed.
    """

    fulfillment: FulfillmentRecord
    replayed: bool

    @property
    def partial_success(self) -> bool:
        return bool(self.fulfillment.created_ticket_refs) and bool(self.fulfillment.errors)


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of a successful scan.

    ``remaining_total`` is only filled for owner scans, where it is the sum of
    admissions left across all of the owner's tickets after this scan.
    """

    event_id: str
    ticket_id: str
    owner_id: str
    quantity: int
    used_count: int
    remaining: int
    active: bool
    remaining_total: int | None = None


@dataclass(frozen=True)
class OwnerPreview:
    """Read-only view of what an owner scan would do next."""

    event_id: str
    owner_id: str
    tickets: list[TicketRecord]
    remaining_total: int
    next_ticket_id: str | None


@dataclass(frozen=True)
class ClaimerIdentity:
    """Who is claiming a transfer: an account id and the email on file."""

    user_id: str
    email: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class CreatedTransfer:
    """Returned to the sender once a transfer is pending.

    ``raw_claim_token`` is the only copy of the secret; it is not persisted.
    """

    transfer: TransferRecord
    raw_claim_token: str
    event_name: str

    @property
    def recipient_has_account(self) -> bool:
        return self.transfer.to_user_id is not None


@dataclass(frozen=True)
class TransferPreview:
    """Public details shown on a claim link before the recipient signs in."""

    transfer_id: str
    event_id: str
    event_name: str
    event_starts_at: str | None
    quantity: int
    from_name: str | None
    to_email: str
    expires_at: str


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass over an event.

    Attributes:
        processed: Owners examined.
        updated: Summary rows written (or that would be written on a dry run).
        samples: Up to a handful of ``{user_id, before, after}`` diffs.
    """

    event_id: str
    processed: int = 0
    updated: int = 0
    dry_run: bool = False
    samples: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TokenRepairResult:
    """Outcome of :func:`repair_token_index` for one event."""

    event_id: str
    scanned: int = 0
    tokens_assigned: int = 0
    entries_created: int = 0
    stale_entries_removed: int = 0
    dry_run: bool = False
