"""Technician operational state, normalized skills and KYC outcome."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch.models.base import BaseModel


class WorkStatus(str, Enum):
    PENDING = "pending"
    TRAINED = "trained"
    APPROVED = "approved"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class KycStatus(str, Enum):
    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Technician(BaseModel):
    """Model representing a field technician's operational profile."""

    __tablename__ = "technicians"

    # Current position; both null until the first location report
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Administrative region, used by the non-geo matching fallback
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(20), index=True, nullable=True)

    work_status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=WorkStatus.PENDING.value
    )
    is_online: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False, default=False)
    training_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    profile_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Denormalized; only ever incremented by the settlement engine
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )

    # Rematch throttle watermark
    last_matching_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    skills: Mapped[list[TechnicianSkill]] = relationship(
        back_populates="technician",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_technicians_lat_lng", "latitude", "longitude"),)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def service_ids(self) -> list[uuid.UUID]:
        return [skill.service_id for skill in self.skills]

    def __repr__(self) -> str:
        return (
            f"<Technician(id={self.id}, work_status={self.work_status}, "
            f"is_online={self.is_online})>"
        )


class TechnicianSkill(BaseModel):
    """A service type a technician can perform, one row per (technician, service)."""

    __tablename__ = "technician_skills"

    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("technicians.id"), index=True, nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True, nullable=False)
    experience_years: Mapped[int] = mapped_column(default=0, nullable=False)

    technician: Mapped[Technician] = relationship(back_populates="skills")

    __table_args__ = (
        UniqueConstraint("technician_id", "service_id", name="uq_technician_skills_pair"),
    )


class TechnicianKyc(BaseModel):
    """KYC and bank verification outcome supplied by the onboarding collaborator."""

    __tablename__ = "technician_kyc"

    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("technicians.id"), unique=True, nullable=False
    )
    verification_status: Mapped[str] = mapped_column(
        String(20), index=True, nullable=False, default=KycStatus.NOT_SUBMITTED.value
    )
    bank_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<TechnicianKyc(technician_id={self.technician_id}, "
            f"verification_status={self.verification_status})>"
        )
