"""Pydantic schemas."""

from dispatch.schemas.jobs import (
    AddressSnapshot,
    JobCreate,
    JobCreateResponse,
    JobResponse,
    LiveJob,
    LiveJobListResponse,
    StatusUpdateRequest,
    WorkImagesRequest,
)
from dispatch.schemas.payments import (
    PaymentConfirmedRequest,
    SettlementResponse,
    SettlementRetryRequest,
)
from dispatch.schemas.technicians import (
    AvailabilityRequest,
    AvailabilityResponse,
    LedgerEntryResponse,
    LedgerListResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    ReadinessResponse,
    SkillsReplaceRequest,
    SkillsResponse,
    WalletAuditResponse,
    WalletSummaryResponse,
)

__all__ = [
    "AddressSnapshot",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "JobCreate",
    "JobCreateResponse",
    "JobResponse",
    "LedgerEntryResponse",
    "LedgerListResponse",
    "LiveJob",
    "LiveJobListResponse",
    "LocationUpdateRequest",
    "LocationUpdateResponse",
    "PaymentConfirmedRequest",
    "ReadinessResponse",
    "SettlementResponse",
    "SettlementRetryRequest",
    "SkillsReplaceRequest",
    "SkillsResponse",
    "StatusUpdateRequest",
    "WalletAuditResponse",
    "WalletSummaryResponse",
    "WorkImagesRequest",
]
