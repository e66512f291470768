"""Service objects shared by the route handlers."""

from __future__ import annotations

from dataclasses import dataclass, field

from ticket_ledger.ledger import FulfillmentGuard, TicketLedger, TransferWorkflow


@dataclass
class LedgerServices:
    """
    Bundle of the ledger services one app instance works with.

    Route factories receive this instead of constructing services themselves,
    so tests can hand in services built with a fixed clock, a stub rate
    limiter, or a recording notifier.
    """

    ledger: TicketLedger = field(default_factory=TicketLedger)
    guard: FulfillmentGuard | None = None
    transfers: TransferWorkflow = field(default_factory=TransferWorkflow)

    def __post_init__(self) -> None:
        if self.guard is None:
            self.guard = FulfillmentGuard(self.ledger)
