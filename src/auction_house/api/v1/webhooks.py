"""Payment gateway callback endpoint."""

from fastapi import APIRouter

from auction_house.api.deps import SettlementServiceDep
from auction_house.schemas.payment import PaymentCallbackRequest, PaymentOutcomeResponse
from auction_house.services.settlement_service import PaymentCallback

router = APIRouter()


@router.post("/payment", response_model=PaymentOutcomeResponse)
async def payment_callback(data: PaymentCallbackRequest, settlement_service: SettlementServiceDep):
    """Apply a deposit payment outcome. Repeated deliveries return the stored result."""
    outcome = await settlement_service.handle_payment_callback(
        PaymentCallback(
            idempotency_key=data.idempotency_key,
            payment_id=data.payment_id,
            status=data.status,
            amount=data.amount,
            payload=data.model_dump(mode="json"),
        )
    )
    return PaymentOutcomeResponse.model_validate(outcome)
