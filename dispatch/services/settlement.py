"""Settlement engine: credit a technician's wallet for a job at most once.

Settlement can be triggered from the completion path, the payment-verified
path and manual retries, possibly at the same time. The credit ledger entry
keyed by (job, credit, job) is the idempotency backstop: whoever inserts it
owns the balance increment, everyone else only advances the job to settled.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import utcnow
from dispatch.config import get_settings
from dispatch.exceptions import NotFoundError
from dispatch.logging_config import get_logger, log_execution_time, metrics
from dispatch.models import (
    EntrySource,
    EntryType,
    Job,
    JobStatus,
    PaymentStatus,
    SettlementStatus,
    Technician,
    WalletLedgerEntry,
)
from dispatch.services.store import insert_ignoring_duplicates
from dispatch.validation import parse_uuid

settings = get_settings()
logger = get_logger(__name__)

EARNING_NOTE = "Job earning credited after verified payment"


@dataclass(frozen=True)
class SettlementOutcome:
    settled: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"settled": self.settled, "reason": self.reason}


def is_settleable(job: Job) -> bool:
    """Paid, completed and assigned."""
    return (
        job.payment_status == PaymentStatus.PAID.value
        and job.status == JobStatus.COMPLETED.value
        and job.technician_id is not None
    )


async def _mark_eligible(session: AsyncSession, job_id: uuid.UUID, from_pending_only: bool) -> None:
    condition = (
        Job.settlement_status == SettlementStatus.PENDING.value
        if from_pending_only
        else Job.settlement_status != SettlementStatus.SETTLED.value
    )
    await session.execute(
        update(Job)
        .where(Job.id == job_id, condition)
        .values(settlement_status=SettlementStatus.ELIGIBLE.value)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def _insert_credit(session: AsyncSession, job: Job, amount: Decimal) -> bool:
    return await insert_ignoring_duplicates(
        session,
        WalletLedgerEntry.__table__,
        {
            "id": uuid.uuid4(),
            "technician_id": job.technician_id,
            "job_id": job.id,
            "provider_payment_id": job.provider_payment_id,
            "amount": amount,
            "entry_type": EntryType.CREDIT.value,
            "source": EntrySource.JOB.value,
            "note": EARNING_NOTE,
        },
    )


async def _credit_balance(session: AsyncSession, technician_id: uuid.UUID, amount: Decimal) -> None:
    await session.execute(
        update(Technician)
        .where(Technician.id == technician_id)
        .values(wallet_balance=Technician.wallet_balance + amount)
        .execution_options(synchronize_session=False)
    )


async def _mark_settled(session: AsyncSession, job_id: uuid.UUID) -> None:
    await session.execute(
        update(Job)
        .where(Job.id == job_id, Job.settlement_status != SettlementStatus.SETTLED.value)
        .values(settlement_status=SettlementStatus.SETTLED.value, settled_at=utcnow())
        .execution_options(synchronize_session=False)
    )


async def _settle_transactional(session: AsyncSession, job: Job, amount: Decimal) -> bool:
    """Ledger insert, balance increment and job update in one commit.

    Returns False when another caller had already inserted the credit.
    """
    try:
        inserted = await _insert_credit(session, job, amount)
        if inserted:
            await _credit_balance(session, job.technician_id, amount)
        await _mark_settled(session, job.id)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return inserted


async def _settle_non_transactional(session: AsyncSession, job: Job, amount: Decimal) -> bool:
    """One commit per step, in the order ledger, balance, job.

    A crash between steps leaves a ledger entry without its increment, which
    the wallet audit reports as drift; a replay never credits twice.
    """
    inserted = await _insert_credit(session, job, amount)
    await session.commit()
    if inserted:
        await _credit_balance(session, job.technician_id, amount)
        await session.commit()
    await _mark_settled(session, job.id)
    await session.commit()
    return inserted


@log_execution_time("settlement")
async def settle_job_earnings(session: AsyncSession, job_id: Any) -> SettlementOutcome:
    """Settle a job's technician earnings if it is eligible; safe to call repeatedly."""
    job_uuid = parse_uuid(job_id, "job_id")
    job: Optional[Job] = await session.get(Job, job_uuid, populate_existing=True)
    if job is None:
        raise NotFoundError("Job not found", code="job_not_found")

    if job.settlement_status == SettlementStatus.SETTLED.value:
        return SettlementOutcome(True, "already_settled")

    if not is_settleable(job):
        if job.payment_status == PaymentStatus.PAID.value:
            await _mark_eligible(session, job.id, from_pending_only=True)
        return SettlementOutcome(False, "not_eligible")

    amount = Decimal(job.technician_amount or 0)
    if amount <= 0:
        await _mark_eligible(session, job.id, from_pending_only=False)
        logger.warning("settlement_invalid_amount", job_id=str(job.id), amount=str(amount))
        return SettlementOutcome(False, "invalid_technician_amount")

    if settings.settlement_transactions:
        credited = await _settle_transactional(session, job, amount)
        reason = "settled_transactional"
    else:
        credited = await _settle_non_transactional(session, job, amount)
        reason = "settled_non_transactional"

    await session.refresh(job)
    if credited:
        metrics.increment("settlements_credited")
        logger.info(
            "job_settled",
            job_id=str(job.id),
            technician_id=str(job.technician_id),
            amount=str(amount),
            mode=reason,
        )
    else:
        metrics.increment("settlements_deduplicated")
        logger.info("job_settlement_deduplicated", job_id=str(job.id))
    return SettlementOutcome(True, reason)
