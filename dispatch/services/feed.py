"""The "my live jobs" feed shown to a technician.

Expired offers are filtered at read time; there is no sweeper that flips
``sent`` rows to ``expired`` when their validity window passes.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import as_utc, utcnow
from dispatch.config import get_settings
from dispatch.exceptions import NotFoundError
from dispatch.logging_config import get_logger
from dispatch.models import BroadcastStatus, Job, JobBroadcast
from dispatch.models.job import ACTIVE_STATUSES, OPEN_STATUSES
from dispatch.schemas.jobs import LiveJob
from dispatch.services.eligibility import evaluate_readiness, load_technician_with_kyc
from dispatch.services.geo import GeoPoint, format_distance_km, haversine_m
from dispatch.validation import parse_uuid

settings = get_settings()
logger = get_logger(__name__)


def _live_job(job: Job, broadcast: JobBroadcast, origin: Optional[GeoPoint]) -> LiveJob:
    snapshot = job.address_snapshot or {}
    target = GeoPoint.parse(job.latitude, job.longitude)
    distance_km = None
    if origin is not None and target is not None:
        distance_km = format_distance_km(haversine_m(origin, target))

    return LiveJob(
        job_id=job.id,
        service_id=job.service_id,
        customer_name=snapshot.get("name") or "Customer",
        address=snapshot.get("address_line") or "Location unavailable",
        city=snapshot.get("city") or "",
        pincode=snapshot.get("pincode") or "",
        latitude=job.latitude,
        longitude=job.longitude,
        distance_km=distance_km,
        earnings=job.technician_amount,
        base_amount=job.base_amount,
        fault_problem=job.fault_problem,
        scheduled_at=as_utc(job.scheduled_at),
        created_at=as_utc(job.created_at),
        broadcasted_at=as_utc(job.broadcasted_at),
        expires_at=as_utc(broadcast.expires_at),
    )


async def has_active_job(session: AsyncSession, technician_id: Any) -> bool:
    result = await session.execute(
        select(Job.id)
        .where(Job.technician_id == technician_id, Job.status.in_(ACTIVE_STATUSES))
        .limit(1)
    )
    return result.first() is not None


async def get_live_jobs(
    session: AsyncSession, technician_id: Any, now: Optional[datetime] = None
) -> list[LiveJob]:
    """Unexpired open offers for the technician, newest job first.

    Empty while the technician is busy with an active job or is not cleared
    to work.
    """
    tech_id = parse_uuid(technician_id, "technician_id")
    now = now or utcnow()

    technician, kyc = await load_technician_with_kyc(session, tech_id)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")

    report = evaluate_readiness(technician, kyc)
    if not report.can_work:
        logger.debug("live_feed_blocked", technician_id=str(tech_id), reasons=report.reasons)
        return []
    if await has_active_job(session, tech_id):
        return []

    fallback_cutoff = now - timedelta(seconds=settings.feed_fallback_age_seconds)
    query = (
        select(JobBroadcast, Job)
        .join(Job, Job.id == JobBroadcast.job_id)
        .where(
            JobBroadcast.technician_id == tech_id,
            JobBroadcast.status == BroadcastStatus.SENT.value,
            or_(
                JobBroadcast.expires_at > now,
                and_(JobBroadcast.expires_at.is_(None), JobBroadcast.sent_at > fallback_cutoff),
            ),
            Job.technician_id.is_(None),
            Job.status.in_(OPEN_STATUSES),
        )
        .order_by(Job.created_at.desc(), Job.id)
        .execution_options(populate_existing=True)
    )
    rows = (await session.execute(query)).all()

    origin = GeoPoint.parse(technician.latitude, technician.longitude)
    return [_live_job(job, broadcast, origin) for broadcast, job in rows]
