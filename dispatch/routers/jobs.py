"""API endpoints for the job lifecycle."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.database import get_db
from dispatch.dependencies import ADMIN_ROLES, get_customer_id, get_notifier, get_technician_id
from dispatch.exceptions import PermissionDeniedError
from dispatch.schemas.jobs import (
    JobCreate,
    JobCreateResponse,
    JobResponse,
    StatusUpdateRequest,
    WorkImagesRequest,
)
from dispatch.services.accept import accept_job
from dispatch.services.bookings import create_job
from dispatch.services.lifecycle import advance_status, cancel_job, get_job, record_work_images
from dispatch.services.notifications import Notifier

router = APIRouter(prefix="/api/v1/jobs", tags=["Jobs"])


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_job_endpoint(
    request: JobCreate,
    customer_id: uuid.UUID = Depends(get_customer_id),
    session: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> JobCreateResponse:
    """Create a job and broadcast it to matching technicians.

    Zero matches is not an error: the job stays requested and is offered
    as technicians come online or move into range.
    """
    job, result = await create_job(session, customer_id, request, notifier)
    return JobCreateResponse(
        job=JobResponse.model_validate(job),
        broadcast_status="broadcasted" if result.count else "awaiting_technicians",
        broadcast_count=result.count,
        reason=result.reason,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def read_job(
    job_id: str,
    x_customer_id: Optional[str] = Header(default=None),
    x_technician_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Get a job; visible to its customer, its assigned technician and admins."""
    job = await get_job(session, job_id)
    viewers = {str(job.customer_id)}
    if job.technician_id is not None:
        viewers.add(str(job.technician_id))

    is_admin = (x_actor_role or "").strip().lower() in ADMIN_ROLES
    callers = {value.strip().lower() for value in (x_customer_id, x_technician_id) if value}
    if not is_admin and not callers & viewers:
        raise PermissionDeniedError("Access denied for this job")
    return JobResponse.model_validate(job)


@router.post("/{job_id}/accept", response_model=JobResponse)
async def accept_job_endpoint(
    job_id: str,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> JobResponse:
    """Accept an offered job. Only the first accept wins; later ones get 409."""
    job = await accept_job(session, job_id, technician_id, notifier)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/status", response_model=JobResponse)
async def update_job_status(
    job_id: str,
    request: StatusUpdateRequest,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await advance_status(session, job_id, technician_id, request.status)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/work-images", response_model=JobResponse)
async def upload_work_images(
    job_id: str,
    request: WorkImagesRequest,
    technician_id: uuid.UUID = Depends(get_technician_id),
    session: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await record_work_images(
        session,
        job_id,
        technician_id,
        before_image_url=request.before_image_url,
        after_image_url=request.after_image_url,
    )
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job_endpoint(
    job_id: str,
    customer_id: uuid.UUID = Depends(get_customer_id),
    session: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> JobResponse:
    job = await cancel_job(session, job_id, customer_id, notifier)
    return JobResponse.model_validate(job)
