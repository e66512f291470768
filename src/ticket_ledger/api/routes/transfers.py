"""Ticket transfer endpoints: create, claim, cancel, and claim-link preview."""

from fastapi import APIRouter, Query

from ticket_ledger.api.models import (
    CancelTransferRequest,
    ClaimTransferRequest,
    ClaimTransferResponse,
    CreateTransferRequest,
    CreateTransferResponse,
    TransferPreviewResponse,
    TransferResponse,
)
from ticket_ledger.api.services import LedgerServices
from ticket_ledger.ledger import ClaimerIdentity, InvalidRequestError


def router(services: LedgerServices) -> APIRouter:
    api = APIRouter()

    @api.post("/transfers", response_model=CreateTransferResponse)
    def create_transfer(request: CreateTransferRequest):
        """
        Offer a ticket to a recipient by email or username.

        The raw claim token is returned once, here, and emailed to the
        recipient. Only its hash is stored.
        """
        if request.recipient_email:
            recipient = request.recipient_email
        elif request.recipient_username:
            recipient = "@" + request.recipient_username.strip().lstrip("@")
        else:
            raise InvalidRequestError("recipient_email or recipient_username is required")

        created = services.transfers.create(
            request.ticket_id,
            request.sender_id,
            recipient,
            sender_email=request.sender_email,
            sender_name=request.sender_name,
        )
        transfer = created.transfer
        return CreateTransferResponse(
            transfer_id=transfer.id,
            claim_token=created.raw_claim_token,
            expires_at=transfer.expires_at,
            recipient_email=transfer.to_email,
            recipient_username=transfer.to_username,
            recipient_display_name=transfer.to_display_name,
            recipient_has_account=created.recipient_has_account,
        )

    @api.post("/transfers/claim", response_model=ClaimTransferResponse)
    def claim_transfer(request: ClaimTransferRequest):
        ticket = services.transfers.claim(
            request.claim_token,
            ClaimerIdentity(
                user_id=request.claimer_id,
                email=request.claimer_email,
                display_name=request.claimer_name,
            ),
        )
        return ClaimTransferResponse(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            quantity=ticket.quantity,
            token=ticket.token,
        )

    @api.post("/transfers/cancel", response_model=TransferResponse)
    def cancel_transfer(request: CancelTransferRequest):
        transfer = services.transfers.cancel(request.transfer_id, request.requested_by)
        return TransferResponse.from_record(transfer)

    @api.get("/transfers/preview", response_model=TransferPreviewResponse)
    def preview_transfer(t: str = Query(default="")):
        """Public claim-link details; the claim token is the only credential."""
        preview = services.transfers.preview(t)
        return TransferPreviewResponse(
            event_id=preview.event_id,
            event_name=preview.event_name,
            event_starts_at=preview.event_starts_at,
            quantity=preview.quantity,
            from_name=preview.from_name,
            to_email=preview.to_email,
            expires_at=preview.expires_at,
        )

    return api
