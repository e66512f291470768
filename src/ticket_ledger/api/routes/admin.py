"""Operator endpoints: reconciliation, token repair, issuance, cancels, metrics."""

import logging
import uuid

from fastapi import APIRouter

from ticket_ledger.api.models import (
    BackfillTokensRequest,
    EventMetricsResponse,
    FulfillmentResponse,
    ManualTicketRequest,
    ReconcileRequest,
    ReconcileResponse,
    ReconcileResultModel,
    TokenRepairResponse,
    TransferResponse,
)
from ticket_ledger.api.services import LedgerServices
from ticket_ledger.db import events_repo, metrics_repo
from ticket_ledger.ledger import (
    InvalidRequestError,
    IssueRequest,
    NotFoundError,
    reconcile_all,
    reconcile_event,
    repair_token_index,
)

logger = logging.getLogger(__name__)


def router(services: LedgerServices) -> APIRouter:
    api = APIRouter()

    @api.post("/admin/reconcile", response_model=ReconcileResponse)
    def reconcile(request: ReconcileRequest):
        """
        Rebuild per-user summaries from tickets.

        Pass ``event_id`` for one event or ``all`` for the scheduled sweep.
        ``dry_run`` reports what would change without writing.
        """
        if request.all:
            results = reconcile_all(limit=request.limit, dry_run=request.dry_run)
        elif request.event_id:
            results = [reconcile_event(request.event_id, dry_run=request.dry_run)]
        else:
            raise InvalidRequestError("Provide event_id or set all")
        return ReconcileResponse(
            results=[ReconcileResultModel.from_result(result) for result in results]
        )

    @api.post("/admin/backfill-tokens", response_model=TokenRepairResponse)
    def backfill_tokens(request: BackfillTokensRequest):
        result = repair_token_index(request.event_id, dry_run=request.dry_run)
        return TokenRepairResponse.from_result(result)

    @api.post("/admin/tickets", response_model=FulfillmentResponse)
    def issue_manual_ticket(request: ManualTicketRequest):
        """Comp or support issuance, routed through the fulfillment guard."""
        key = request.key or f"manual_{uuid.uuid4().hex}"
        logger.info("Manual issuance %s for event %s to %s", key, request.event_id, request.owner_id)
        result = services.guard.settle(
            key,
            [
                IssueRequest(
                    event_id=request.event_id,
                    owner_id=request.owner_id,
                    quantity=request.quantity,
                    owner_email=request.owner_email,
                    owner_name=request.owner_name,
                )
            ],
        )
        return FulfillmentResponse.from_record(result.fulfillment, replayed=result.replayed)

    @api.post("/admin/transfers/{transfer_id}/cancel", response_model=TransferResponse)
    def cancel_transfer(transfer_id: str):
        """Support override: cancel any pending transfer regardless of sender."""
        logger.info("Admin cancellation requested for transfer %s", transfer_id)
        transfer = services.transfers.cancel(transfer_id, None, is_admin=True)
        return TransferResponse.from_record(transfer)

    @api.get("/admin/events/{event_id}/metrics", response_model=EventMetricsResponse)
    def event_metrics(event_id: str):
        if events_repo.get_event(event_id) is None:
            raise NotFoundError(f"Event {event_id} not found", event_id=event_id)
        metrics = metrics_repo.get_metrics(event_id)
        if metrics is None:
            return EventMetricsResponse(event_id=event_id)
        return EventMetricsResponse(
            event_id=event_id,
            scans_accepted=metrics.scans_accepted,
            scan_denials=metrics.scan_denials,
            preview_count=metrics.preview_count,
        )

    return api
