"""Order settlement endpoints used by the payment service."""

from fastapi import APIRouter

from ticket_ledger.api.models import FulfillmentResponse, SettleRequest
from ticket_ledger.api.services import LedgerServices
from ticket_ledger.ledger import IssueRequest


def router(services: LedgerServices) -> APIRouter:
    api = APIRouter()

    @api.post("/fulfillments/settle", response_model=FulfillmentResponse)
    def settle(request: SettleRequest):
        """
        Turn a paid order into tickets exactly once.

        Safe to retry with the same key: a replay returns the stored outcome
        with ``replayed`` set and issues nothing.
        """
        result = services.guard.settle(
            request.key,
            [
                IssueRequest(
                    event_id=item.event_id,
                    owner_id=item.owner_id,
                    quantity=item.quantity,
                    owner_email=item.owner_email,
                    owner_name=item.owner_name,
                )
                for item in request.items
            ],
        )
        return FulfillmentResponse.from_record(result.fulfillment, replayed=result.replayed)

    @api.get("/fulfillments/{key}", response_model=FulfillmentResponse)
    def get_fulfillment(key: str):
        return FulfillmentResponse.from_record(services.guard.get(key))

    return api
