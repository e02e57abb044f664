"""Broadcast model: one offer of a job to one technician."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.clock import utcnow
from dispatch.models.base import BaseModel


class BroadcastStatus(str, Enum):
    """Leaves SENT exactly once."""

    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class JobBroadcast(BaseModel):
    """Job X was offered to technician Y."""

    __tablename__ = "job_broadcasts"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("jobs.id"), index=True, nullable=False
    )
    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("technicians.id"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=BroadcastStatus.SENT.value
    )
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True, nullable=False, default=utcnow
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("job_id", "technician_id", name="uq_job_broadcasts_job_technician"),
    )

    def __repr__(self) -> str:
        return (
            f"<JobBroadcast(job_id={self.job_id}, technician_id={self.technician_id}, "
            f"status={self.status})>"
        )
