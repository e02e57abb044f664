"""Job (booking) model and its status enumerations."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import BaseModel, JSONType


class JobStatus(str, Enum):
    """Booking lifecycle states."""

    REQUESTED = "requested"
    BROADCASTED = "broadcasted"
    ACCEPTED = "accepted"
    ON_THE_WAY = "on_the_way"
    REACHED = "reached"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"  # legacy terminal, no inbound transitions


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class SettlementStatus(str, Enum):
    """Forward-only: pending -> eligible -> settled."""

    PENDING = "pending"
    ELIGIBLE = "eligible"
    SETTLED = "settled"


OPEN_STATUSES = (JobStatus.REQUESTED.value, JobStatus.BROADCASTED.value)
ACTIVE_STATUSES = (
    JobStatus.ACCEPTED.value,
    JobStatus.ON_THE_WAY.value,
    JobStatus.REACHED.value,
    JobStatus.IN_PROGRESS.value,
)


class Job(BaseModel):
    """One requested unit of service work."""

    __tablename__ = "jobs"

    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)

    # Price snapshot from the pricing collaborator, consumed verbatim
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    technician_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )

    # Location and address snapshot captured at creation
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    address_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True, default=dict)
    # Expected structure:
    # {
    #     "name": str,
    #     "phone": str,
    #     "address_line": str,
    #     "city": str,
    #     "state": str,
    #     "pincode": str,
    # }
    search_radius_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fault_problem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=JobStatus.REQUESTED.value
    )
    technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), index=True, nullable=True
    )

    payment_status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=PaymentStatus.PENDING.value
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    settlement_status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=SettlementStatus.PENDING.value
    )

    # Work evidence references from the upload collaborator
    before_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    after_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    broadcasted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_jobs_technician_status", "technician_id", "status"),
        Index("ix_jobs_lat_lng", "latitude", "longitude"),
    )

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_work_images(self) -> bool:
        return bool(self.before_image_url) and bool(self.after_image_url)

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, status={self.status}, technician_id={self.technician_id})>"
