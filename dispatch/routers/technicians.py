"""API endpoints for technicians: position, availability, feed and wallet."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.database import get_db
from dispatch.dependencies import get_notifier, get_technician_id, require_admin
from dispatch.schemas.jobs import LiveJobListResponse
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
from dispatch.services.eligibility import get_readiness
from dispatch.services.feed import get_live_jobs
from dispatch.services.location import handle_location_update, set_availability
from dispatch.services.notifications import Notifier
from dispatch.services.skills import replace_skills
from dispatch.services.wallet import audit_wallet_balance, get_wallet_summary, list_ledger_entries

router = APIRouter(prefix="/api/v1/technicians", tags=["Technicians"])


@router.post("/me/location", response_model=LocationUpdateResponse)
async def update_location(
    request: LocationUpdateRequest,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> LocationUpdateResponse:
    """Report the current position.

    The position is stored only when it moved more than a few meters, and
    open jobs nearby are rematched at most once per throttle window.
    """
    result = await handle_location_update(
        session, technician_id, request.latitude, request.longitude, notifier
    )
    return LocationUpdateResponse(**result.to_dict())


@router.post("/me/availability", response_model=AvailabilityResponse)
async def update_availability(
    request: AvailabilityRequest,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> AvailabilityResponse:
    result = await set_availability(session, technician_id, request.is_online, notifier)
    return AvailabilityResponse(**result.to_dict())


@router.put("/me/skills", response_model=SkillsResponse)
async def update_skills(
    request: SkillsReplaceRequest,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> SkillsResponse:
    technician = await replace_skills(session, technician_id, request.services)
    return SkillsResponse(technician_id=technician.id, service_ids=technician.service_ids)


@router.get("/me/readiness", response_model=ReadinessResponse)
async def read_readiness(
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> ReadinessResponse:
    report = await get_readiness(session, technician_id)
    return ReadinessResponse(**report.to_dict())


@router.get("/me/jobs", response_model=LiveJobListResponse)
async def list_live_jobs(
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> LiveJobListResponse:
    """Open offers for the calling technician, newest first."""
    jobs = await get_live_jobs(session, technician_id)
    return LiveJobListResponse(jobs=jobs, total=len(jobs))


@router.get("/me/wallet", response_model=WalletSummaryResponse)
async def read_wallet(
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> WalletSummaryResponse:
    summary = await get_wallet_summary(session, technician_id)
    return WalletSummaryResponse(
        technician_id=summary.technician_id,
        balance=summary.balance,
        total_credits=summary.total_credits,
        total_debits=summary.total_debits,
        entry_count=summary.entry_count,
    )


@router.get("/me/wallet/ledger", response_model=LedgerListResponse)
async def read_wallet_ledger(
    start: Optional[date] = Query(default=None, description="First day included"),
    end: Optional[date] = Query(default=None, description="Last day included"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> LedgerListResponse:
    entries = await list_ledger_entries(
        session, technician_id, start=start, end=end, limit=limit, offset=offset
    )
    return LedgerListResponse(
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries],
        total=len(entries),
    )


@router.get(
    "/{technician_id}/wallet/audit",
    response_model=WalletAuditResponse,
    dependencies=[Depends(require_admin)],
)
async def audit_wallet(
    technician_id: str,
    session: AsyncSession = Depends(get_db),
) -> WalletAuditResponse:
    """Compare a technician's balance with its ledger. Admin only."""
    audit = await audit_wallet_balance(session, technician_id)
    return WalletAuditResponse(
        technician_id=audit.technician_id,
        balance=audit.balance,
        ledger_balance=audit.ledger_balance,
        drift=audit.drift,
        consistent=audit.consistent,
    )
