"""Technician position reports and the rematch throttle.

Position writes are gated on distance so a stationary device does not churn
the location index. Rematching is rate-limited per technician: the watermark
``last_matching_at`` is claimed with a conditional UPDATE before matching
runs, so of two near-simultaneous reports only one triggers a rematch.
Going online rematches unconditionally and restarts the window.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import utcnow
from dispatch.config import get_settings
from dispatch.exceptions import EligibilityDeniedError, NotFoundError, ValidationError
from dispatch.logging_config import get_logger, metrics
from dispatch.models import Technician, WorkStatus
from dispatch.services.broadcast import PendingBroadcastResult, broadcast_pending_jobs_to_technician
from dispatch.services.eligibility import get_readiness
from dispatch.services.geo import GeoPoint, haversine_m
from dispatch.services.notifications import Notifier
from dispatch.validation import parse_uuid

settings = get_settings()
logger = get_logger(__name__)

BLOCKED_WORK_STATUSES = (WorkStatus.SUSPENDED.value, WorkStatus.DELETED.value)


@dataclass
class LocationUpdateResult:
    technician_id: uuid.UUID
    location_updated: bool
    moved_m: Optional[float] = None
    match_calculation: bool = False
    jobs_found: int = 0
    offered_job_ids: list[uuid.UUID] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "technician_id": str(self.technician_id),
            "location_updated": self.location_updated,
            "moved_m": None if self.moved_m is None else round(self.moved_m, 1),
            "match_calculation": self.match_calculation,
            "jobs_found": self.jobs_found,
            "offered_job_ids": [str(job_id) for job_id in self.offered_job_ids],
            "reason": self.reason,
        }


@dataclass
class AvailabilityResult:
    technician_id: uuid.UUID
    is_online: bool
    match_calculation: bool = False
    jobs_found: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "technician_id": str(self.technician_id),
            "is_online": self.is_online,
            "match_calculation": self.match_calculation,
            "jobs_found": self.jobs_found,
            "reason": self.reason,
        }


async def _load_technician(session: AsyncSession, technician_id: uuid.UUID) -> Technician:
    technician = await session.get(Technician, technician_id, populate_existing=True)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")
    return technician


async def claim_rematch_slot(
    session: AsyncSession, technician_id: uuid.UUID, now: datetime
) -> bool:
    """Stamp ``last_matching_at`` if the throttle window has elapsed.

    Returns True for the single caller that won the slot.
    """
    window_start = now - timedelta(seconds=settings.rematch_window_seconds)
    result = await session.execute(
        update(Technician)
        .where(
            Technician.id == technician_id,
            or_(
                Technician.last_matching_at.is_(None),
                Technician.last_matching_at <= window_start,
            ),
        )
        .values(last_matching_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def _throttled_rematch(
    session: AsyncSession, technician_id: uuid.UUID, notifier: Notifier, now: datetime
) -> Optional[PendingBroadcastResult]:
    if not await claim_rematch_slot(session, technician_id, now):
        metrics.increment("rematches_throttled")
        return None
    metrics.increment("rematches_triggered")
    return await broadcast_pending_jobs_to_technician(session, technician_id, notifier)


async def handle_location_update(
    session: AsyncSession,
    technician_id: Any,
    latitude: Any,
    longitude: Any,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> LocationUpdateResult:
    """Record a position report and rematch pending jobs when the throttle allows."""
    tech_id = parse_uuid(technician_id, "technician_id")
    point = GeoPoint.parse(latitude, longitude)
    if point is None:
        raise ValidationError("Invalid coordinates", code="invalid_coordinates")
    now = now or utcnow()

    technician = await _load_technician(session, tech_id)
    previous = GeoPoint.parse(technician.latitude, technician.longitude)
    moved_m = haversine_m(previous, point) if previous is not None else None

    location_updated = moved_m is None or moved_m > settings.location_min_move_m
    if location_updated:
        await session.execute(
            update(Technician)
            .where(Technician.id == tech_id)
            .values(latitude=point.latitude, longitude=point.longitude, location_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.debug("technician_location_updated", technician_id=str(tech_id), moved_m=moved_m)

    # Only a technician that could take work spends the rematch slot
    readiness = await get_readiness(session, tech_id)
    if not readiness.eligible:
        return LocationUpdateResult(
            tech_id,
            location_updated,
            moved_m=moved_m,
            reason="technician_not_eligible",
        )

    rematch = await _throttled_rematch(session, tech_id, notifier, now)
    if rematch is None:
        return LocationUpdateResult(
            tech_id,
            location_updated,
            moved_m=moved_m,
            reason="matching_rate_limited",
        )
    return LocationUpdateResult(
        tech_id,
        location_updated,
        moved_m=moved_m,
        match_calculation=True,
        jobs_found=rematch.count,
        offered_job_ids=rematch.job_ids,
        reason=rematch.reason,
    )


async def set_availability(
    session: AsyncSession,
    technician_id: Any,
    is_online: bool,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> AvailabilityResult:
    """Toggle the online flag.

    Going online always rematches pending jobs and restarts the throttle
    window, so a position report sent just before does not hold it back.
    """
    tech_id = parse_uuid(technician_id, "technician_id")
    now = now or utcnow()
    technician = await _load_technician(session, tech_id)

    if is_online and technician.work_status in BLOCKED_WORK_STATUSES:
        raise EligibilityDeniedError(
            f"A {technician.work_status} technician cannot go online",
            reasons=["workStatus_not_approved"],
        )

    values: dict[str, Any] = {"is_online": bool(is_online)}
    if is_online:
        values["last_matching_at"] = now
    await session.execute(
        update(Technician)
        .where(Technician.id == tech_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.info("technician_availability_changed", technician_id=str(tech_id), is_online=is_online)

    if not is_online:
        return AvailabilityResult(tech_id, False)

    metrics.increment("rematches_triggered")
    rematch = await broadcast_pending_jobs_to_technician(session, tech_id, notifier)
    return AvailabilityResult(
        tech_id, True, match_calculation=True, jobs_found=rematch.count, reason=rematch.reason
    )
