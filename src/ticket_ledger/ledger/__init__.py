"""Ledger package: tickets, fulfillments, transfers, and reconciliation.

Public surface
--------------
- :class:`TicketLedger`      issue tickets and consume admissions.
- :class:`FulfillmentGuard`  settle an order into tickets exactly once.
- :class:`TransferWorkflow`  create / claim / cancel / preview transfers.
- :func:`reconcile_event`    rebuild per-user summaries for one event.
- :func:`reconcile_all`      scheduled reconciliation across events.
- :func:`repair_token_index` restore the token index for one event.
- :exc:`LedgerError` and its subclasses, the expected-outcome taxonomy.

Usage example
-------------
::

    from ticket_ledger.ledger import FulfillmentGuard, IssueRequest, TicketLedger

    guard = FulfillmentGuard()
    result = guard.settle("pi_123", [IssueRequest("evt_1", "user_a", 2)])
    ticket_id = result.fulfillment.created_ticket_refs[0]["ticket_id"]

    TicketLedger().consume_by_owner("evt_1", "user_a")
"""

from ticket_ledger.ledger.errors import (
    AlreadyUsedError,
    ConflictError,
    ExhaustedError,
    ExpiredError,
    ForbiddenError,
    InvalidRequestError,
    LedgerError,
    NotFoundError,
    RateLimitedError,
    TransientStorageError,
    WrongEventError,
)
from ticket_ledger.ledger.fulfillment import FulfillmentGuard
from ticket_ledger.ledger.reconcile import reconcile_all, reconcile_event, repair_token_index
from ticket_ledger.ledger.tickets import TicketLedger
from ticket_ledger.ledger.transfers import TransferWorkflow
from ticket_ledger.ledger.types import (
    ClaimerIdentity,
    ConsumeResult,
    CreatedTransfer,
    FulfillmentResult,
    IssueRequest,
    OwnerPreview,
    ReconcileResult,
    TokenRepairResult,
    TransferPreview,
)

__all__ = [
    "AlreadyUsedError",
    "ClaimerIdentity",
    "ConflictError",
    "ConsumeResult",
    "CreatedTransfer",
    "ExhaustedError",
    "ExpiredError",
    "ForbiddenError",
    "FulfillmentGuard",
    "FulfillmentResult",
    "InvalidRequestError",
    "IssueRequest",
    "LedgerError",
    "NotFoundError",
    "OwnerPreview",
    "RateLimitedError",
    "ReconcileResult",
    "TicketLedger",
    "TokenRepairResult",
    "TransferPreview",
    "TransferWorkflow",
    "TransientStorageError",
    "WrongEventError",
    "reconcile_all",
    "reconcile_event",
    "repair_token_index",
]
