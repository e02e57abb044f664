"""API endpoints for payment signals and settlement."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.database import get_db
from dispatch.dependencies import require_admin
from dispatch.logging_config import get_logger
from dispatch.schemas.payments import (
    PaymentConfirmedRequest,
    SettlementResponse,
    SettlementRetryRequest,
)
from dispatch.services.bookings import confirm_payment
from dispatch.services.settlement import settle_job_earnings

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/confirmed", response_model=SettlementResponse)
async def payment_confirmed(
    request: PaymentConfirmedRequest,
    session: AsyncSession = Depends(get_db),
) -> SettlementResponse:
    """Payment-verified signal; settles the job when it is already completed."""
    outcome = await confirm_payment(
        session, request.job_id, request.paid_amount, request.provider_payment_id
    )
    return SettlementResponse(job_id=request.job_id, **outcome.to_dict())


@router.post(
    "/settlements/retry",
    response_model=SettlementResponse,
    dependencies=[Depends(require_admin)],
)
async def retry_settlement(
    request: SettlementRetryRequest,
    session: AsyncSession = Depends(get_db),
) -> SettlementResponse:
    """Force a settlement attempt. Safe to repeat; a job is credited at most once."""
    outcome = await settle_job_earnings(session, request.job_id)
    logger.info("settlement_retried", job_id=str(request.job_id), **outcome.to_dict())
    return SettlementResponse(job_id=request.job_id, **outcome.to_dict())
