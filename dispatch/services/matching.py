"""Geo Matcher: which technicians may be offered a job.

Two tiers. When the job has usable coordinates, candidates are the eligible,
skilled technicians within the search radius, nearest first. Technician GPS
data is often missing, so when that yields nobody (or there are no
coordinates) matching falls back to pincode, then city, then state, and the
first tier that finds anyone wins.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.config import get_settings
from dispatch.logging_config import get_logger
from dispatch.models import KycStatus, Technician, TechnicianKyc, TechnicianSkill, WorkStatus
from dispatch.services.geo import GeoPoint, bounding_box, haversine_m
from dispatch.validation import parse_uuid

settings = get_settings()
logger = get_logger(__name__)


@dataclass(frozen=True)
class AddressHint:
    """Administrative-region fields used by the non-geo fallback."""

    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: Optional[dict[str, Any]]) -> AddressHint:
        snapshot = snapshot or {}

        def clean(key: str) -> Optional[str]:
            value = snapshot.get(key)
            if value is None:
                return None
            text = str(value).strip()
            return text or None

        return cls(pincode=clean("pincode"), city=clean("city"), state=clean("state"))

    @property
    def is_empty(self) -> bool:
        return not (self.pincode or self.city or self.state)


@dataclass(frozen=True)
class Candidate:
    technician_id: uuid.UUID
    distance_m: Optional[float] = None


def eligible_technicians_query(service_id: uuid.UUID) -> Select:
    """Technicians passing every readiness gate and holding the skill."""
    return (
        select(Technician.id, Technician.latitude, Technician.longitude)
        .join(TechnicianKyc, TechnicianKyc.technician_id == Technician.id)
        .join(
            TechnicianSkill,
            and_(
                TechnicianSkill.technician_id == Technician.id,
                TechnicianSkill.service_id == service_id,
            ),
        )
        .where(
            TechnicianKyc.verification_status == KycStatus.APPROVED.value,
            TechnicianKyc.bank_verified.is_(True),
            Technician.work_status == WorkStatus.APPROVED.value,
            Technician.profile_complete.is_(True),
            Technician.training_completed.is_(True),
            Technician.is_online.is_(True),
        )
    )


async def _match_by_distance(
    session: AsyncSession,
    base: Select,
    center: GeoPoint,
    radius_m: float,
    limit: int,
) -> list[Candidate]:
    box = bounding_box(center, radius_m)
    query = base.where(
        Technician.latitude.is_not(None),
        Technician.longitude.is_not(None),
        Technician.latitude.between(box.min_lat, box.max_lat),
        Technician.longitude.between(box.min_lng, box.max_lng),
    )
    rows = (await session.execute(query)).all()

    candidates: list[Candidate] = []
    for technician_id, latitude, longitude in rows:
        point = GeoPoint.parse(latitude, longitude)
        if point is None:
            continue
        distance = haversine_m(center, point)
        if distance <= radius_m:
            candidates.append(Candidate(technician_id, distance))

    candidates.sort(key=lambda c: (c.distance_m, str(c.technician_id)))
    return candidates[:limit]


async def _match_by_region(
    session: AsyncSession, base: Select, address: AddressHint, limit: int
) -> list[Candidate]:
    tiers = []
    if address.pincode:
        tiers.append(("pincode", func.trim(Technician.pincode) == address.pincode))
    if address.city:
        tiers.append(("city", func.lower(func.trim(Technician.city)) == address.city.lower()))
    if address.state:
        tiers.append(("state", func.lower(func.trim(Technician.state)) == address.state.lower()))

    for tier, condition in tiers:
        rows = (await session.execute(base.where(condition).order_by(Technician.id).limit(limit))).all()
        if rows:
            logger.debug("region_fallback_matched", tier=tier, count=len(rows))
            return [Candidate(row[0]) for row in rows]
    return []


async def find_candidates(
    session: AsyncSession,
    service_id: Any,
    location: Optional[GeoPoint] = None,
    address: Optional[AddressHint] = None,
    radius_m: Optional[float] = None,
    limit: int = 50,
) -> list[Candidate]:
    """Candidate technicians for a service at a location, best first."""
    service_uuid = parse_uuid(service_id, "service_id")
    radius = radius_m if radius_m and radius_m > 0 else settings.match_radius_m
    base = eligible_technicians_query(service_uuid)

    if location is not None:
        nearby = await _match_by_distance(session, base, location, radius, limit)
        if nearby:
            return nearby

    if address is None or address.is_empty:
        return []
    return await _match_by_region(session, base, address, limit)


async def find_candidate_technicians(
    session: AsyncSession,
    service_id: Any,
    location: Optional[GeoPoint] = None,
    address: Optional[AddressHint] = None,
    radius_m: Optional[float] = None,
    limit: int = 50,
) -> list[uuid.UUID]:
    """IDs of the technicians a job for ``service_id`` may be offered to."""
    candidates = await find_candidates(session, service_id, location, address, radius_m, limit)
    return [candidate.technician_id for candidate in candidates]
