"""Booking intake and the payment-verified signal.

Both are thin hooks owned by collaborators (booking creation, payment
verification); they exist so the dispatch core can be driven end to end.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.exceptions import ConflictError, ValidationError
from dispatch.logging_config import get_logger, metrics
from dispatch.models import Job, JobStatus, PaymentStatus
from dispatch.schemas.jobs import JobCreate
from dispatch.services.broadcast import JobBroadcastResult, broadcast_new_job
from dispatch.services.geo import GeoPoint
from dispatch.services.lifecycle import get_job
from dispatch.services.matching import AddressHint
from dispatch.services.notifications import Notifier
from dispatch.services.settlement import SettlementOutcome, settle_job_earnings
from dispatch.validation import parse_money, parse_uuid

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def split_amount(base_amount: Decimal, commission_percentage: Decimal) -> tuple[Decimal, Decimal]:
    """Return (commission_amount, technician_amount) rounded to cents."""
    commission = (base_amount * commission_percentage / Decimal(100)).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )
    return commission, (base_amount - commission).quantize(CENTS, rounding=ROUND_HALF_UP)


def _resolve_location(payload: JobCreate) -> tuple[Optional[GeoPoint], AddressHint]:
    point = None
    if payload.latitude is not None or payload.longitude is not None:
        point = GeoPoint.parse(payload.latitude, payload.longitude)
        if point is None:
            raise ValidationError(
                "Both latitude and longitude are required", code="invalid_coordinates"
            )

    snapshot = payload.address.model_dump() if payload.address is not None else {}
    hint = AddressHint.from_snapshot(snapshot)
    if point is None and hint.is_empty:
        raise ValidationError(
            "Coordinates or an address with pincode, city or state are required",
            code="location_required",
        )
    return point, hint


async def create_job(
    session: AsyncSession, customer_id: Any, payload: JobCreate, notifier: Notifier
) -> tuple[Job, JobBroadcastResult]:
    """Persist a requested job and run its first broadcast."""
    cust_id = parse_uuid(customer_id, "customer_id")
    base_amount = parse_money(payload.base_amount, "base_amount")
    percentage = parse_money(payload.commission_percentage, "commission_percentage")
    if percentage > 100:
        raise ValidationError(
            "commission_percentage cannot exceed 100", code="invalid_commission_percentage"
        )
    point, _ = _resolve_location(payload)
    commission, technician_amount = split_amount(base_amount, percentage)

    job = Job(
        customer_id=cust_id,
        service_id=payload.service_id,
        base_amount=base_amount,
        commission_percentage=percentage,
        commission_amount=commission,
        technician_amount=technician_amount,
        latitude=point.latitude if point else None,
        longitude=point.longitude if point else None,
        address_snapshot=payload.address.model_dump() if payload.address else {},
        search_radius_m=payload.search_radius_m,
        scheduled_at=payload.scheduled_at,
        fault_problem=(payload.fault_problem or "").strip() or None,
        status=JobStatus.REQUESTED.value,
    )
    session.add(job)
    await session.commit()
    metrics.increment("jobs_created")
    logger.info("job_created", job_id=str(job.id), service_id=str(job.service_id))

    result = await broadcast_new_job(session, job.id, notifier)
    return job, result


async def confirm_payment(
    session: AsyncSession,
    job_id: Any,
    paid_amount: Any,
    provider_payment_id: Optional[str] = None,
) -> SettlementOutcome:
    """Mark a job paid and attempt settlement."""
    amount = parse_money(paid_amount, "paid_amount")
    job = await get_job(session, job_id)
    if job.payment_status == PaymentStatus.REFUNDED.value:
        raise ConflictError("Payment was refunded", code="payment_refunded")

    values: dict[str, Any] = {"payment_status": PaymentStatus.PAID.value, "paid_amount": amount}
    if provider_payment_id:
        values["provider_payment_id"] = provider_payment_id

    result = await session.execute(
        update(Job)
        .where(Job.id == job.id, Job.payment_status != PaymentStatus.REFUNDED.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Payment was refunded", code="payment_refunded")
    await session.commit()
    logger.info("payment_confirmed", job_id=str(job.id), paid_amount=str(amount))

    return await settle_job_earnings(session, job.id)
