"""Move legacy JSON skills into technician_skills.

Legacy entries are UUID strings or ``{"serviceId": ...}`` objects. Entries
that cannot be parsed are dropped and counted in the migration log.

Revision ID: 0002
Revises: 0001
Create Date: 2024-06-01 00:00:01
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op
from dispatch.exceptions import ValidationError
from dispatch.services.skills import normalize_service_reference

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

logger = logging.getLogger("alembic.runtime.migration")

technicians = sa.table(
    "technicians",
    sa.column("id", sa.UUID()),
    sa.column("legacy_skills", postgresql.JSONB()),
)
technician_skills = sa.table(
    "technician_skills",
    sa.column("id", sa.UUID()),
    sa.column("technician_id", sa.UUID()),
    sa.column("service_id", sa.UUID()),
    sa.column("experience_years", sa.Integer()),
)


def upgrade() -> None:
    bind = op.get_bind()
    rows = bind.execute(
        sa.select(technicians.c.id, technicians.c.legacy_skills).where(
            technicians.c.legacy_skills.is_not(None)
        )
    ).all()

    skipped = 0
    for technician_id, legacy in rows:
        seen: set[uuid.UUID] = set()
        for entry in legacy or []:
            try:
                service_id = normalize_service_reference(entry)
            except ValidationError:
                skipped += 1
                continue
            if service_id in seen:
                continue
            seen.add(service_id)
            experience = entry.get("experience", 0) if isinstance(entry, dict) else 0
            bind.execute(
                technician_skills.insert().values(
                    id=uuid.uuid4(),
                    technician_id=technician_id,
                    service_id=service_id,
                    experience_years=int(experience or 0),
                )
            )

    logger.info("Migrated skills for %d technicians, skipped %d entries", len(rows), skipped)
    op.drop_column("technicians", "legacy_skills")


def downgrade() -> None:
    op.add_column(
        "technicians",
        sa.Column("legacy_skills", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )
    bind = op.get_bind()
    rows = bind.execute(
        sa.select(technician_skills.c.technician_id, technician_skills.c.service_id)
    ).all()
    grouped: dict[uuid.UUID, list[dict[str, str]]] = {}
    for technician_id, service_id in rows:
        grouped.setdefault(technician_id, []).append({"serviceId": str(service_id)})
    for technician_id, skills in grouped.items():
        bind.execute(
            technicians.update()
            .where(technicians.c.id == technician_id)
            .values(legacy_skills=skills)
        )
    bind.execute(technician_skills.delete())
