"""Tests for the accept resolver."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from dispatch.exceptions import ConflictError, ValidationError
from dispatch.logging_config import metrics
from dispatch.models import BroadcastStatus, Job, JobBroadcast, JobStatus
from dispatch.services.accept import accept_job
from dispatch.services.broadcast import broadcast_new_job
from dispatch.services.notifications import EVENT_JOB_ACCEPTED, EVENT_JOB_TAKEN


async def _broadcast_status(session, job_id, technician_id) -> str:
    result = await session.execute(
        select(JobBroadcast.status).where(
            JobBroadcast.job_id == job_id, JobBroadcast.technician_id == technician_id
        )
    )
    return result.scalar_one()


@pytest.fixture
async def offered_job(db_session, make_technician, make_job, notifier, service_id):
    """A job broadcast to two technicians, A nearer than B."""
    tech_a = await make_technician(services=[service_id], latitude=12.901)
    tech_b = await make_technician(services=[service_id], latitude=12.905)
    job = await make_job(service_id)
    await broadcast_new_job(db_session, job.id, notifier)
    return job, tech_a, tech_b


class TestAcceptJob:
    """Tests for accept_job."""

    @pytest.mark.asyncio
    async def test_first_accept_wins(self, db_session, offered_job, notifier, publish_log):
        job, tech_a, tech_b = offered_job
        publish_log.clear()

        accepted = await accept_job(db_session, job.id, tech_a.id, notifier)

        assert accepted.technician_id == tech_a.id
        assert accepted.status == JobStatus.ACCEPTED.value
        assert accepted.assigned_at is not None
        assert await _broadcast_status(db_session, job.id, tech_a.id) == BroadcastStatus.ACCEPTED.value
        assert await _broadcast_status(db_session, job.id, tech_b.id) == BroadcastStatus.EXPIRED.value

        assert publish_log.channels(EVENT_JOB_ACCEPTED) == {f"customer:{job.customer_id}"}
        assert publish_log.channels(EVENT_JOB_TAKEN) == {f"technician:{tech_b.id}"}

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, db_session, offered_job, notifier):
        job, tech_a, tech_b = offered_job
        await accept_job(db_session, job.id, tech_a.id, notifier)

        with pytest.raises(ConflictError) as exc_info:
            await accept_job(db_session, job.id, tech_b.id, notifier)

        # B's offer was expired by A's win, so B is rejected before the claim
        assert exc_info.value.code == "job_not_offered"
        reloaded = await db_session.get(Job, job.id, populate_existing=True)
        assert reloaded.technician_id == tech_a.id

    @pytest.mark.asyncio
    async def test_lost_claim_is_too_late(self, db_session, offered_job, notifier):
        job, tech_a, tech_b = offered_job
        job_id, tech_b_id = job.id, tech_b.id
        # A concurrent winner got the job row while B's offer was still sent
        job.technician_id = tech_a.id
        job.status = JobStatus.ACCEPTED.value
        await db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            await accept_job(db_session, job_id, tech_b_id, notifier)

        assert exc_info.value.code == "job_already_taken"
        assert exc_info.value.status_code == 409
        assert metrics.get_counter("accept_conflicts") == 1
        assert await _broadcast_status(db_session, job_id, tech_b_id) == BroadcastStatus.SENT.value

    @pytest.mark.asyncio
    async def test_not_offered(self, db_session, offered_job, make_technician, notifier, service_id):
        job, _, _ = offered_job
        stranger = await make_technician(services=[service_id])

        with pytest.raises(ConflictError) as exc_info:
            await accept_job(db_session, job.id, stranger.id, notifier)

        assert exc_info.value.code == "job_not_offered"

    @pytest.mark.asyncio
    async def test_malformed_ids(self, db_session, notifier):
        with pytest.raises(ValidationError):
            await accept_job(db_session, "bad", uuid.uuid4(), notifier)
        with pytest.raises(ValidationError):
            await accept_job(db_session, uuid.uuid4(), "bad", notifier)
