"""Pydantic schemas for technician endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    model_config = ConfigDict(json_schema_extra={"example": {"latitude": 12.9, "longitude": 77.58}})


class AvailabilityRequest(BaseModel):
    is_online: bool


class SkillsReplaceRequest(BaseModel):
    """Service references; legacy ``{"serviceId": ...}`` entries are accepted."""

    services: list[Any] = Field(default_factory=list)


class LocationUpdateResponse(BaseModel):
    technician_id: UUID
    location_updated: bool
    moved_m: Optional[float] = None
    match_calculation: bool
    jobs_found: int
    offered_job_ids: list[UUID] = Field(default_factory=list)
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    technician_id: UUID
    is_online: bool
    match_calculation: bool
    jobs_found: int
    reason: Optional[str] = None


class ReadinessResponse(BaseModel):
    """Composite readiness of a technician."""

    state: str
    eligible: bool
    can_work: bool
    reasons: list[str]
    kyc_status: str
    work_status: Optional[str] = None


class SkillsResponse(BaseModel):
    technician_id: UUID
    service_ids: list[UUID]


# Wallet
class WalletSummaryResponse(BaseModel):
    technician_id: UUID
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    entry_count: int


class LedgerEntryResponse(BaseModel):
    id: UUID
    job_id: Optional[UUID] = None
    provider_payment_id: Optional[str] = None
    amount: Decimal
    entry_type: str
    source: str
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerListResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int


class WalletAuditResponse(BaseModel):
    """Ledger sum against the denormalized balance."""

    technician_id: UUID
    balance: Decimal
    ledger_balance: Decimal
    drift: Decimal
    consistent: bool
