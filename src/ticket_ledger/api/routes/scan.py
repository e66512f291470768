"""Door scanning endpoints."""

from fastapi import APIRouter

from ticket_ledger.api.models import (
    ScanPreviewRequest,
    ScanPreviewResponse,
    ScanRequest,
    ScanResponse,
    TicketView,
)
from ticket_ledger.api.services import LedgerServices
from ticket_ledger.ledger import InvalidRequestError


def router(services: LedgerServices) -> APIRouter:
    api = APIRouter()

    @api.post("/scan", response_model=ScanResponse)
    def scan(request: ScanRequest):
        """
        Admit one person.

        With ``token`` the scanned ticket is used directly. Otherwise the
        owner's best ticket at ``event_id`` is chosen and ``remaining_total``
        tells the door staff how many admissions the owner has left.
        """
        if request.token:
            result = services.ledger.consume_by_token(
                request.token,
                expected_event_id=request.event_id,
                scanner_id=request.scanner_id,
            )
        elif request.event_id and request.owner_id:
            result = services.ledger.consume_by_owner(
                request.event_id, request.owner_id, scanner_id=request.scanner_id
            )
        else:
            raise InvalidRequestError("Provide a token, or both event_id and owner_id")
        return ScanResponse.from_result(result)

    @api.post("/scan/preview", response_model=ScanPreviewResponse)
    def preview(request: ScanPreviewRequest):
        preview = services.ledger.preview_owner(request.event_id, request.owner_id)
        return ScanPreviewResponse(
            event_id=preview.event_id,
            owner_id=preview.owner_id,
            remaining_total=preview.remaining_total,
            items=[TicketView.from_record(ticket) for ticket in preview.tickets],
            next_ticket_id=preview.next_ticket_id,
        )

    return api
