"""Accept resolver: exactly one technician wins a job.

The claim is a single conditional UPDATE on the job row. Under concurrent
accepts the store serializes the updates, the first one matches and every
later one sees ``technician_id`` already set and affects zero rows.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import utcnow
from dispatch.exceptions import ConflictError
from dispatch.logging_config import get_logger, log_execution_time, metrics
from dispatch.models import BroadcastStatus, Job, JobBroadcast, JobStatus
from dispatch.models.job import OPEN_STATUSES
from dispatch.services.lifecycle import expire_open_offers, get_job
from dispatch.services.notifications import Notifier
from dispatch.validation import parse_uuid

logger = get_logger(__name__)


@log_execution_time("job_accept")
async def accept_job(
    session: AsyncSession, job_id: Any, technician_id: Any, notifier: Notifier
) -> Job:
    """Claim an offered job for the technician or raise ConflictError."""
    tech_id = parse_uuid(technician_id, "technician_id")
    job = await get_job(session, job_id)
    job_id = job.id

    offer = await session.execute(
        select(JobBroadcast.id).where(
            JobBroadcast.job_id == job_id,
            JobBroadcast.technician_id == tech_id,
            JobBroadcast.status == BroadcastStatus.SENT.value,
        )
    )
    if offer.scalar_one_or_none() is None:
        raise ConflictError("Job not offered to you or already closed", code="job_not_offered")

    now = utcnow()
    claim = await session.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.technician_id.is_(None),
            Job.status.in_(OPEN_STATUSES),
        )
        .values(technician_id=tech_id, status=JobStatus.ACCEPTED.value, assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        await session.rollback()
        metrics.increment("accept_conflicts")
        logger.info("job_accept_lost", job_id=str(job_id), technician_id=str(tech_id))
        raise ConflictError("Too late! Job already taken", code="job_already_taken")

    await session.execute(
        update(JobBroadcast)
        .where(JobBroadcast.job_id == job.id, JobBroadcast.technician_id == tech_id)
        .values(status=BroadcastStatus.ACCEPTED.value, responded_at=now)
        .execution_options(synchronize_session=False)
    )
    losers = await expire_open_offers(session, job.id, now, keep_technician_id=tech_id)
    await session.commit()
    await session.refresh(job)

    metrics.increment("jobs_accepted")
    logger.info(
        "job_accepted",
        job_id=str(job.id),
        technician_id=str(tech_id),
        offers_expired=len(losers),
    )

    await notifier.notify_customer_job_accepted(job)
    await notifier.notify_job_taken(losers, job.id)
    return job
