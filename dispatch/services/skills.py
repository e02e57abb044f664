"""Skill reference normalization.

Historical technician records store a skill's service reference either as a
typed id or as its string form, sometimes wrapped in ``{"serviceId": ...}``.
Everything is normalized to a UUID at ingestion so matching only has one
representation to compare against.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.exceptions import NotFoundError, ValidationError
from dispatch.models import Technician, TechnicianSkill
from dispatch.validation import parse_uuid


def normalize_service_reference(value: Any) -> uuid.UUID:
    """Normalize one legacy or canonical service reference to a UUID."""
    if isinstance(value, dict):
        for key in ("service_id", "serviceId", "_id", "id"):
            if value.get(key):
                return normalize_service_reference(value[key])
        raise ValidationError("Skill entry has no service reference", code="invalid_service_id")
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return uuid.UUID(bytes=bytes(value))
    return parse_uuid(value, "service_id")


def normalize_service_references(values: Iterable[Any]) -> list[uuid.UUID]:
    """Normalize and de-duplicate, keeping first-seen order."""
    seen: dict[uuid.UUID, None] = {}
    for value in values:
        seen.setdefault(normalize_service_reference(value), None)
    return list(seen)


async def replace_skills(
    session: AsyncSession, technician_id: Any, references: Iterable[Any]
) -> Technician:
    """Replace a technician's skill set with the normalized references."""
    tech_id = parse_uuid(technician_id, "technician_id")
    service_ids = normalize_service_references(references)

    technician = await session.get(Technician, tech_id)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")

    current = {skill.service_id: skill for skill in technician.skills}
    technician.skills = [
        current.get(service_id) or TechnicianSkill(service_id=service_id)
        for service_id in service_ids
    ]
    await session.commit()
    await session.refresh(technician, attribute_names=["skills"])
    return technician
