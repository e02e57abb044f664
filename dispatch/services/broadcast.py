"""Broadcast fan-out: offering jobs to technicians.

Two entry points share :func:`fan_out`:

* a new job is matched once against its own location;
* a technician coming online or moving is matched against every open job
  near it.

The (job, technician) unique key makes fan-out idempotent. Concurrent fan-outs
of the same pair race on that key, and the loser's insert is simply dropped.
Notifications go out only after commit and only to newly offered technicians.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import DateTime, String, Uuid, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import utcnow
from dispatch.config import get_settings
from dispatch.exceptions import NotFoundError
from dispatch.logging_config import get_logger, log_execution_time, metrics
from dispatch.models import BroadcastStatus, Job, JobBroadcast, JobStatus
from dispatch.models.job import OPEN_STATUSES
from dispatch.services.eligibility import evaluate_readiness, load_technician_with_kyc
from dispatch.services.geo import GeoPoint, bounding_box, haversine_m
from dispatch.services.matching import AddressHint, find_candidate_technicians
from dispatch.services.notifications import Notifier
from dispatch.services.store import insert_from_select_ignoring_duplicates
from dispatch.validation import parse_uuid

settings = get_settings()
logger = get_logger(__name__)

_OFFER_COLUMNS = (
    "id",
    "job_id",
    "technician_id",
    "status",
    "sent_at",
    "expires_at",
    "created_at",
    "updated_at",
)


@dataclass
class JobBroadcastResult:
    """Outcome of broadcasting one new job."""

    job_id: uuid.UUID
    status: str
    matched: int = 0
    offered_to: list[uuid.UUID] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.offered_to)


@dataclass
class PendingBroadcastResult:
    """Outcome of matching open jobs to one technician."""

    technician_id: uuid.UUID
    job_ids: list[uuid.UUID] = field(default_factory=list)
    reason: Optional[str] = None
    reasons: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.job_ids)


async def fan_out(
    session: AsyncSession,
    job: Job,
    technician_ids: Iterable[uuid.UUID],
    now: Optional[datetime] = None,
) -> list[uuid.UUID]:
    """Create missing broadcast rows for ``job`` and mark it broadcasted.

    Returns the technicians for whom a row was created by this call. A row is
    only written while the job row is still open and unassigned, so a fan-out
    that read the job just before an accept committed creates nothing. The
    caller owns the transaction.
    """
    now = now or utcnow()
    expires_at = now + timedelta(seconds=settings.broadcast_validity_seconds)
    job_id = job.id

    created: list[uuid.UUID] = []
    for technician_id in dict.fromkeys(technician_ids):
        offer = select(
            literal(uuid.uuid4(), Uuid()),
            Job.id,
            literal(technician_id, Uuid()),
            literal(BroadcastStatus.SENT.value, String()),
            literal(now, DateTime(timezone=True)),
            literal(expires_at, DateTime(timezone=True)),
            literal(now, DateTime(timezone=True)),
            literal(now, DateTime(timezone=True)),
        ).where(
            Job.id == job_id,
            Job.technician_id.is_(None),
            Job.status.in_(OPEN_STATUSES),
        )
        inserted = await insert_from_select_ignoring_duplicates(
            session, JobBroadcast.__table__, _OFFER_COLUMNS, offer
        )
        if inserted:
            created.append(technician_id)

    if created:
        # No-op for a job that is already broadcasted or was taken meanwhile
        await session.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.REQUESTED.value,
                Job.technician_id.is_(None),
            )
            .values(status=JobStatus.BROADCASTED.value, broadcasted_at=now)
            .execution_options(synchronize_session=False)
        )
    return created


@log_execution_time("new_job_broadcast")
async def broadcast_new_job(
    session: AsyncSession, job_id: Any, notifier: Notifier
) -> JobBroadcastResult:
    """Match a freshly created job and offer it to every candidate."""
    job_uuid = parse_uuid(job_id, "job_id")
    job = await session.get(Job, job_uuid, populate_existing=True)
    if job is None:
        raise NotFoundError("Job not found", code="job_not_found")

    if job.status != JobStatus.REQUESTED.value:
        return JobBroadcastResult(job.id, job.status, reason=f"job_status_{job.status}")

    technician_ids = await find_candidate_technicians(
        session,
        job.service_id,
        location=GeoPoint.parse(job.latitude, job.longitude),
        address=AddressHint.from_snapshot(job.address_snapshot),
        radius_m=job.search_radius_m,
        limit=settings.candidate_limit,
    )

    if not technician_ids:
        logger.info("no_technicians_matched", job_id=str(job.id), service_id=str(job.service_id))
        metrics.increment("jobs_unmatched")
        return JobBroadcastResult(job.id, job.status, reason="no_technicians_found")

    created = await fan_out(session, job, technician_ids)
    await session.commit()
    await session.refresh(job)

    metrics.increment("broadcasts_created", len(created))
    logger.info(
        "job_broadcasted",
        job_id=str(job.id),
        matched=len(technician_ids),
        offered=len(created),
    )
    await notifier.notify_new_job(created, job)

    return JobBroadcastResult(job.id, job.status, matched=len(technician_ids), offered_to=created)


async def _open_jobs_near(
    session: AsyncSession,
    center: GeoPoint,
    service_ids: list[uuid.UUID],
    radius_m: float,
    limit: int,
) -> list[Job]:
    box = bounding_box(center, radius_m)
    query = (
        select(Job)
        .where(
            Job.service_id.in_(service_ids),
            Job.technician_id.is_(None),
            Job.status.in_(OPEN_STATUSES),
            Job.latitude.between(box.min_lat, box.max_lat),
            Job.longitude.between(box.min_lng, box.max_lng),
        )
        .execution_options(populate_existing=True)
    )
    jobs = (await session.execute(query)).scalars().all()

    ranked: list[tuple[float, Job]] = []
    for job in jobs:
        point = GeoPoint.parse(job.latitude, job.longitude)
        if point is None:
            continue
        distance = haversine_m(center, point)
        if distance <= radius_m:
            ranked.append((distance, job))
    ranked.sort(key=lambda item: (item[0], item[1].created_at))
    return [job for _, job in ranked[:limit]]


@log_execution_time("pending_job_broadcast")
async def broadcast_pending_jobs_to_technician(
    session: AsyncSession, technician_id: Any, notifier: Notifier
) -> PendingBroadcastResult:
    """Offer every nearby open job the technician has not seen yet."""
    tech_id = parse_uuid(technician_id, "technician_id")
    technician, kyc = await load_technician_with_kyc(session, tech_id)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")

    report = evaluate_readiness(technician, kyc)
    if not report.eligible:
        logger.info(
            "pending_broadcast_skipped",
            technician_id=str(tech_id),
            readiness=report.state.value,
        )
        return PendingBroadcastResult(
            tech_id, reason="technician_not_eligible", reasons=report.reasons
        )

    center = GeoPoint.parse(technician.latitude, technician.longitude)
    if center is None:
        return PendingBroadcastResult(tech_id, reason="technician_has_no_location")

    service_ids = technician.service_ids
    if not service_ids:
        return PendingBroadcastResult(tech_id, reason="technician_has_no_skills")

    jobs = await _open_jobs_near(
        session,
        center,
        service_ids,
        settings.pending_job_radius_m,
        settings.pending_job_limit,
    )
    if not jobs:
        return PendingBroadcastResult(tech_id, reason="no_matching_jobs_nearby")

    offered: list[Job] = []
    for job in jobs:
        if await fan_out(session, job, [tech_id]):
            offered.append(job)
    await session.commit()

    for job in offered:
        await session.refresh(job)
        await notifier.notify_new_job([tech_id], job)

    metrics.increment("broadcasts_created", len(offered))
    logger.info("pending_jobs_broadcasted", technician_id=str(tech_id), offered=len(offered))
    return PendingBroadcastResult(tech_id, job_ids=[job.id for job in offered])
