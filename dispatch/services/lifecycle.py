"""Booking state machine.

Every transition is one conditional UPDATE guarded by the expected current
status. If no row matches, someone else moved the job first, and the caller
gets a :class:`ConflictError` instead of a silent overwrite. The accept race
rests on the same mechanism (see ``dispatch.services.accept``).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import utcnow
from dispatch.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from dispatch.logging_config import get_logger
from dispatch.models import BroadcastStatus, Job, JobBroadcast, JobStatus
from dispatch.services.eligibility import require_can_work
from dispatch.services.notifications import Notifier
from dispatch.services.settlement import settle_job_earnings
from dispatch.validation import parse_uuid

logger = get_logger(__name__)

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.REQUESTED: frozenset(
        {JobStatus.BROADCASTED, JobStatus.ACCEPTED, JobStatus.CANCELLED}
    ),
    JobStatus.BROADCASTED: frozenset(
        {JobStatus.BROADCASTED, JobStatus.ACCEPTED, JobStatus.CANCELLED}
    ),
    JobStatus.ACCEPTED: frozenset({JobStatus.ON_THE_WAY, JobStatus.CANCELLED}),
    JobStatus.ON_THE_WAY: frozenset({JobStatus.REACHED}),
    JobStatus.REACHED: frozenset({JobStatus.IN_PROGRESS}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.REJECTED: frozenset(),
}

# Technician-driven steps and the status each must come from
TECHNICIAN_STEPS: dict[JobStatus, JobStatus] = {
    JobStatus.ON_THE_WAY: JobStatus.ACCEPTED,
    JobStatus.REACHED: JobStatus.ON_THE_WAY,
    JobStatus.IN_PROGRESS: JobStatus.REACHED,
    JobStatus.COMPLETED: JobStatus.IN_PROGRESS,
}

CANCELLABLE_STATUSES = tuple(
    status.value for status, targets in TRANSITIONS.items() if JobStatus.CANCELLED in targets
)


def can_transition(current: str | JobStatus, target: str | JobStatus) -> bool:
    """Whether the state machine allows ``current -> target``."""
    try:
        return JobStatus(target) in TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


def parse_status(value: Any) -> JobStatus:
    try:
        return JobStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid status: {value}", code="invalid_status") from None


async def get_job(session: AsyncSession, job_id: Any) -> Job:
    """Load a job or raise NotFoundError."""
    job_uuid = parse_uuid(job_id, "job_id")
    job = await session.get(Job, job_uuid, populate_existing=True)
    if job is None:
        raise NotFoundError("Job not found", code="job_not_found")
    return job


async def _reload(session: AsyncSession, job: Job) -> Job:
    await session.refresh(job)
    return job


async def advance_status(
    session: AsyncSession,
    job_id: Any,
    technician_id: Any,
    next_status: Any,
) -> Job:
    """Move an assigned job one step along the technician-driven path."""
    target = parse_status(next_status)
    if target not in TECHNICIAN_STEPS:
        raise ValidationError(f"Technicians cannot set status {target.value}", code="invalid_status")
    tech_id = parse_uuid(technician_id, "technician_id")

    job = await get_job(session, job_id)
    if job.technician_id != tech_id:
        raise PermissionDeniedError("Access denied for this job", code="not_assigned_technician")

    await require_can_work(session, tech_id)

    expected = TECHNICIAN_STEPS[target]
    if job.status != expected.value:
        raise ConflictError(
            f"Cannot move job from {job.status} to {target.value}",
            code="invalid_transition",
        )
    if target == JobStatus.COMPLETED and not job.has_work_images:
        raise ValidationError(
            "Before and after work images are required before completion",
            code="work_images_required",
        )

    now = utcnow()
    values: dict[str, Any] = {"status": target.value}
    if target == JobStatus.COMPLETED:
        values["completed_at"] = now

    result = await session.execute(
        update(Job)
        .where(
            Job.id == job.id,
            Job.technician_id == tech_id,
            Job.status == expected.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError(
            f"Job is no longer {expected.value}", code="invalid_transition"
        )
    await session.commit()
    job = await _reload(session, job)
    logger.info(
        "job_status_advanced",
        job_id=str(job.id),
        technician_id=str(tech_id),
        status=job.status,
    )

    if target == JobStatus.COMPLETED:
        completed_id = job.id
        try:
            outcome = await settle_job_earnings(session, completed_id)
            logger.info("completion_settlement", job_id=str(completed_id), **outcome.to_dict())
        except SQLAlchemyError:
            # Completion is committed; settlement stays retryable
            await session.rollback()
            logger.exception("completion_settlement_deferred", job_id=str(completed_id))
        job = await get_job(session, completed_id)

    return job


async def record_work_images(
    session: AsyncSession,
    job_id: Any,
    technician_id: Any,
    before_image_url: Optional[str] = None,
    after_image_url: Optional[str] = None,
) -> Job:
    """Attach before/after work image references to an assigned job."""
    before = (before_image_url or "").strip() or None
    after = (after_image_url or "").strip() or None
    if before is None and after is None:
        raise ValidationError("Work images are required", code="work_images_required")
    tech_id = parse_uuid(technician_id, "technician_id")

    job = await get_job(session, job_id)
    if job.technician_id != tech_id:
        raise PermissionDeniedError("Access denied for this job", code="not_assigned_technician")
    if job.status in (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value):
        raise ConflictError(f"A {job.status} job cannot be updated", code="job_closed")

    values: dict[str, Any] = {}
    if before:
        values["before_image_url"] = before
    if after:
        values["after_image_url"] = after

    result = await session.execute(
        update(Job)
        .where(
            Job.id == job.id,
            Job.technician_id == tech_id,
            Job.status.not_in((JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Job was closed meanwhile", code="job_closed")
    await session.commit()
    return await _reload(session, job)


async def expire_open_offers(
    session: AsyncSession,
    job_id: uuid.UUID,
    now: datetime,
    keep_technician_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """Expire every still-sent broadcast of a job; returns the affected technicians.

    The caller owns the transaction.
    """
    conditions = [
        JobBroadcast.job_id == job_id,
        JobBroadcast.status == BroadcastStatus.SENT.value,
    ]
    if keep_technician_id is not None:
        conditions.append(JobBroadcast.technician_id != keep_technician_id)

    technician_ids = list(
        (await session.execute(select(JobBroadcast.technician_id).where(*conditions))).scalars()
    )
    await session.execute(
        update(JobBroadcast)
        .where(*conditions)
        .values(status=BroadcastStatus.EXPIRED.value, responded_at=now)
        .execution_options(synchronize_session=False)
    )
    return technician_ids


async def cancel_job(
    session: AsyncSession,
    job_id: Any,
    customer_id: Any,
    notifier: Optional[Notifier] = None,
) -> Job:
    """Customer cancellation; blocked once the technician is on the way."""
    cust_id = parse_uuid(customer_id, "customer_id")
    job = await get_job(session, job_id)
    if job.customer_id != cust_id:
        raise PermissionDeniedError("Only the customer who created the job can cancel it")

    if job.status == JobStatus.CANCELLED.value:
        raise ConflictError("Job already cancelled", code="already_cancelled")
    if job.status not in CANCELLABLE_STATUSES:
        raise ConflictError(
            f"Job cannot be cancelled once {job.status}", code="cancellation_blocked"
        )

    now = utcnow()
    result = await session.execute(
        update(Job)
        .where(Job.id == job.id, Job.status.in_(CANCELLABLE_STATUSES))
        .values(status=JobStatus.CANCELLED.value, cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Job changed state before it could be cancelled", code="cancellation_blocked")

    offered_to = await expire_open_offers(session, job.id, now)
    await session.commit()
    job = await _reload(session, job)
    logger.info("job_cancelled", job_id=str(job.id), open_offers_expired=len(offered_to))

    if notifier is not None:
        recipients = offered_to + ([job.technician_id] if job.technician_id else [])
        await notifier.notify_job_cancelled(recipients, job.id)
    return job
