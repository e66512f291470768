"""
Pydantic models for API requests and responses.

This module defines the data models used between the ticket ledger API and
its callers (the order/payment service, door scanners, and the web app).
Pydantic models provide:
- Automatic request/response validation
- Clear API documentation via FastAPI's automatic OpenAPI schema generation
- Serialization/deserialization to/from JSON

Models are organized into two categories:
1. Request models: Data sent FROM the client TO the server
2. Response models: Data sent FROM the server TO the client

Business validation (quantities, email format, ownership) is left to the
ledger so that failures carry the ledger's typed error codes.
"""

from typing import Any

from pydantic import BaseModel

from ticket_ledger.db.types import FulfillmentRecord, TicketRecord, TransferRecord
from ticket_ledger.ledger.types import ConsumeResult, ReconcileResult, TokenRepairResult

# ============================================================================
# REQUEST MODELS (Client → Server)
# ============================================================================


class IssueItem(BaseModel):
    """
    One line of an order settlement.

    Attributes:
        event_id: Event the admissions are for
        owner_id: Account that will own the ticket
        quantity: Number of admissions on the ticket
        owner_email: (Optional) Owner email copied onto the ticket
        owner_name: (Optional) Owner display name copied onto the ticket
    """

    event_id: str
    owner_id: str
    quantity: int = 1
    owner_email: str | None = None
    owner_name: str | None = None


class SettleRequest(BaseModel):
    """
    Settle an order into tickets.

    Attributes:
        key: Idempotency key, normally the payment intent id
        items: Tickets to issue
    """

    key: str
    items: list[IssueItem]


class ManualTicketRequest(IssueItem):
    """
    Admin request to issue one ticket outside the checkout flow.

    Attributes:
        key: (Optional) Idempotency key; a ``manual_<hex>`` key is generated
            when omitted, so a caller that wants safe retries must supply one
    """

    key: str | None = None


class ScanRequest(BaseModel):
    """
    Scan at the door, by ticket token or by owner.

    Either ``token`` is set (``event_id`` then names the event the scanner is
    working, and a token for another event is refused), or both
    ``event_id`` and ``owner_id`` are set.
    """

    token: str | None = None
    event_id: str | None = None
    owner_id: str | None = None
    scanner_id: str | None = None


class ScanPreviewRequest(BaseModel):
    """Ask which ticket an owner scan would use, without consuming it."""

    event_id: str
    owner_id: str


class CreateTransferRequest(BaseModel):
    """
    Offer a ticket to someone else.

    Attributes:
        ticket_id: Ticket being given away
        sender_id: Current owner
        recipient_email: Recipient email (either this or recipient_username)
        recipient_username: Recipient username, with or without leading ``@``
        sender_email: (Optional) Used for the self-transfer check and receipts
        sender_name: (Optional) Shown to the recipient
    """

    ticket_id: str
    sender_id: str
    recipient_email: str | None = None
    recipient_username: str | None = None
    sender_email: str | None = None
    sender_name: str | None = None


class ClaimTransferRequest(BaseModel):
    """Claim a transfer with the raw token from the claim link."""

    claim_token: str
    claimer_id: str
    claimer_email: str | None = None
    claimer_name: str | None = None


class CancelTransferRequest(BaseModel):
    """
    Withdraw a pending transfer as its sender.

    Support cancellations go through ``POST /admin/transfers/{transfer_id}/cancel``.

    Attributes:
        transfer_id: Transfer to cancel
        requested_by: Sender's account id
    """

    transfer_id: str
    requested_by: str


class ReconcileRequest(BaseModel):
    """Run summary reconciliation for one event or for every event."""

    event_id: str | None = None
    all: bool = False
    dry_run: bool = False
    limit: int | None = None


class BackfillTokensRequest(BaseModel):
    """Repair the token index for one event."""

    event_id: str
    dry_run: bool = False


# ============================================================================
# RESPONSE MODELS (Server → Client)
# ============================================================================


class FulfillmentResponse(BaseModel):
    """
    Stored fulfillment plus how this call related to it.

    Attributes:
        replayed: True when the key had already been settled (or was in
            flight); nothing was issued by this call
        partial_success: True when some items were issued and some failed
    """

    key: str
    status: str
    created_ticket_refs: list[dict[str, Any]]
    errors: list[dict[str, Any]] | None = None
    created_at: str
    completed_at: str | None = None
    replayed: bool = False
    partial_success: bool = False

    @classmethod
    def from_record(
        cls, record: FulfillmentRecord, *, replayed: bool = False
    ) -> "FulfillmentResponse":
        return cls(
            key=record.key,
            status=record.status,
            created_ticket_refs=record.created_ticket_refs,
            errors=record.errors,
            created_at=record.created_at,
            completed_at=record.completed_at,
            replayed=replayed,
            partial_success=bool(record.created_ticket_refs) and bool(record.errors),
        )


class ScanResponse(BaseModel):
    """Accepted scan with the remaining-count hint shown at the door."""

    ok: bool = True
    event_id: str
    ticket_id: str
    owner_id: str
    quantity: int
    used_count: int
    remaining: int
    active: bool
    remaining_total: int | None = None

    @classmethod
    def from_result(cls, result: ConsumeResult) -> "ScanResponse":
        return cls(
            event_id=result.event_id,
            ticket_id=result.ticket_id,
            owner_id=result.owner_id,
            quantity=result.quantity,
            used_count=result.used_count,
            remaining=result.remaining,
            active=result.active,
            remaining_total=result.remaining_total,
        )


class TicketView(BaseModel):
    """Ticket fields safe to show to scanners and owners (no token)."""

    ticket_id: str
    event_id: str
    owner_id: str
    quantity: int
    used_count: int
    remaining: int
    active: bool
    issued_at: str
    pending_transfer_id: str | None = None

    @classmethod
    def from_record(cls, ticket: TicketRecord) -> "TicketView":
        return cls(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            owner_id=ticket.owner_id,
            quantity=ticket.quantity,
            used_count=ticket.used_count,
            remaining=ticket.remaining,
            active=ticket.active,
            issued_at=ticket.issued_at,
            pending_transfer_id=ticket.pending_transfer_id,
        )


class ScanPreviewResponse(BaseModel):
    event_id: str
    owner_id: str
    remaining_total: int
    items: list[TicketView]
    next_ticket_id: str | None = None


class CreateTransferResponse(BaseModel):
    """
    Pending transfer as seen by its sender.

    Attributes:
        claim_token: Raw claim secret; returned only here and never stored
    """

    ok: bool = True
    transfer_id: str
    claim_token: str
    expires_at: str
    recipient_email: str
    recipient_username: str | None = None
    recipient_display_name: str | None = None
    recipient_has_account: bool


class ClaimTransferResponse(BaseModel):
    """The claimer's new ticket, including its fresh scan token."""

    ok: bool = True
    ticket_id: str
    event_id: str
    quantity: int
    token: str | None


class TransferResponse(BaseModel):
    transfer_id: str
    ticket_id: str
    event_id: str
    status: str
    expires_at: str
    cancelled_at: str | None = None
    cancelled_by_admin: bool = False

    @classmethod
    def from_record(cls, transfer: TransferRecord) -> "TransferResponse":
        return cls(
            transfer_id=transfer.id,
            ticket_id=transfer.ticket_id,
            event_id=transfer.event_id,
            status=transfer.status,
            expires_at=transfer.expires_at,
            cancelled_at=transfer.cancelled_at,
            cancelled_by_admin=transfer.cancelled_by_admin,
        )


class TransferPreviewResponse(BaseModel):
    event_id: str
    event_name: str
    event_starts_at: str | None = None
    quantity: int
    from_name: str | None = None
    to_email: str
    expires_at: str


class ReconcileResultModel(BaseModel):
    event_id: str
    processed: int
    updated: int
    dry_run: bool
    samples: list[dict[str, Any]]

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "ReconcileResultModel":
        return cls(
            event_id=result.event_id,
            processed=result.processed,
            updated=result.updated,
            dry_run=result.dry_run,
            samples=result.samples,
        )


class ReconcileResponse(BaseModel):
    results: list[ReconcileResultModel]


class TokenRepairResponse(BaseModel):
    event_id: str
    scanned: int
    tokens_assigned: int
    entries_created: int
    stale_entries_removed: int
    dry_run: bool

    @classmethod
    def from_result(cls, result: TokenRepairResult) -> "TokenRepairResponse":
        return cls(
            event_id=result.event_id,
            scanned=result.scanned,
            tokens_assigned=result.tokens_assigned,
            entries_created=result.entries_created,
            stale_entries_removed=result.stale_entries_removed,
            dry_run=result.dry_run,
        )


class EventMetricsResponse(BaseModel):
    event_id: str
    scans_accepted: int = 0
    scan_denials: int = 0
    preview_count: int = 0


class ErrorResponse(BaseModel):
    """Body of every ledger error response."""

    error: str
    detail: str
