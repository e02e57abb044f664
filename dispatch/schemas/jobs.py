"""Pydantic schemas for job endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AddressSnapshot(BaseModel):
    """Address captured at booking time."""

    name: Optional[str] = None
    phone: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


# Request schemas
class JobCreate(BaseModel):
    """Booking intake; the price snapshot comes from the service catalog."""

    service_id: UUID
    base_amount: Decimal = Field(ge=0, description="Price quoted to the customer")
    commission_percentage: Decimal = Field(
        default=Decimal("0"), ge=0, le=100, description="Platform commission in percent"
    )
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[AddressSnapshot] = None
    search_radius_m: Optional[float] = Field(default=None, gt=0, le=100_000)
    scheduled_at: Optional[datetime] = None
    fault_problem: Optional[str] = Field(default=None, max_length=2000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "service_id": "2f1d7c4e-8a0b-4e53-9a51-6a3c0b9f1e21",
                "base_amount": "500.00",
                "commission_percentage": "10",
                "latitude": 12.90,
                "longitude": 77.58,
                "address": {"address_line": "12 MG Road", "city": "Bengaluru", "pincode": "560001"},
            }
        }
    )


class StatusUpdateRequest(BaseModel):
    status: str = Field(description="on_the_way, reached, in_progress or completed")


class WorkImagesRequest(BaseModel):
    """References produced by the upload collaborator."""

    before_image_url: Optional[str] = Field(default=None, max_length=500)
    after_image_url: Optional[str] = Field(default=None, max_length=500)


# Response schemas
class JobResponse(BaseModel):
    """Response for a job."""

    id: UUID
    customer_id: UUID
    service_id: UUID
    technician_id: Optional[UUID] = None
    status: str
    payment_status: str
    settlement_status: str
    base_amount: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal
    technician_amount: Decimal
    paid_amount: Decimal
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address_snapshot: Optional[dict] = None
    search_radius_m: Optional[float] = None
    scheduled_at: Optional[datetime] = None
    fault_problem: Optional[str] = None
    before_image_url: Optional[str] = None
    after_image_url: Optional[str] = None
    broadcasted_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobCreateResponse(BaseModel):
    """Created job plus the outcome of its first broadcast."""

    job: JobResponse
    broadcast_status: str = Field(description="broadcasted or awaiting_technicians")
    broadcast_count: int
    reason: Optional[str] = None


class LiveJob(BaseModel):
    """One entry of a technician's live offer feed."""

    job_id: UUID
    service_id: UUID
    customer_name: str
    address: str
    city: str
    pincode: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_km: Optional[float] = None
    earnings: Decimal
    base_amount: Decimal
    fault_problem: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: datetime
    broadcasted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class LiveJobListResponse(BaseModel):
    jobs: list[LiveJob]
    total: int
