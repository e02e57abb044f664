"""Tests for the booking state machine."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from dispatch.exceptions import (
    ConflictError,
    EligibilityDeniedError,
    PermissionDeniedError,
    ValidationError,
)
from dispatch.models import (
    BroadcastStatus,
    JobBroadcast,
    JobStatus,
    PaymentStatus,
    SettlementStatus,
    Technician,
)
from dispatch.services.broadcast import broadcast_new_job
from dispatch.services.lifecycle import (
    advance_status,
    can_transition,
    cancel_job,
    record_work_images,
)
from dispatch.services.notifications import EVENT_JOB_CANCELLED


class TestCanTransition:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            ("requested", "broadcasted"),
            ("broadcasted", "broadcasted"),
            ("broadcasted", "accepted"),
            ("accepted", "on_the_way"),
            ("on_the_way", "reached"),
            ("reached", "in_progress"),
            ("in_progress", "completed"),
            ("accepted", "cancelled"),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("accepted", "completed"),
            ("on_the_way", "cancelled"),
            ("completed", "cancelled"),
            ("rejected", "requested"),
            ("requested", "nonsense"),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)


@pytest.fixture
def assigned_job(make_technician, make_job, service_id):
    async def _make(status=JobStatus.ACCEPTED.value, **job_overrides):
        technician = await make_technician(services=[service_id])
        job = await make_job(
            service_id, status=status, technician_id=technician.id, **job_overrides
        )
        return job, technician

    return _make


class TestAdvanceStatus:
    """Tests for advance_status."""

    @pytest.mark.asyncio
    async def test_walks_the_linear_path(self, db_session, assigned_job):
        job, technician = await assigned_job()

        for status in ("on_the_way", "reached", "in_progress"):
            job = await advance_status(db_session, job.id, technician.id, status)
            assert job.status == status

    @pytest.mark.asyncio
    async def test_cannot_skip_steps(self, db_session, assigned_job):
        job, technician = await assigned_job()

        with pytest.raises(ConflictError) as exc_info:
            await advance_status(db_session, job.id, technician.id, "reached")

        assert exc_info.value.code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_only_assigned_technician(self, db_session, assigned_job, make_technician):
        job, _ = await assigned_job()
        other = await make_technician()

        with pytest.raises(PermissionDeniedError) as exc_info:
            await advance_status(db_session, job.id, other.id, "on_the_way")

        assert exc_info.value.code == "not_assigned_technician"

    @pytest.mark.asyncio
    async def test_offline_technician_can_continue(self, db_session, assigned_job):
        job, technician = await assigned_job()
        technician.is_online = False
        await db_session.commit()

        job = await advance_status(db_session, job.id, technician.id, "on_the_way")

        assert job.status == JobStatus.ON_THE_WAY.value

    @pytest.mark.asyncio
    async def test_uncleared_technician_is_denied(self, db_session, assigned_job):
        job, technician = await assigned_job()
        technician.training_completed = False
        await db_session.commit()

        with pytest.raises(EligibilityDeniedError) as exc_info:
            await advance_status(db_session, job.id, technician.id, "on_the_way")

        assert exc_info.value.reasons == ["training_incomplete"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["accepted", "cancelled", "broadcasted", "bogus"])
    async def test_non_technician_targets_rejected(self, db_session, assigned_job, status):
        job, technician = await assigned_job()

        with pytest.raises(ValidationError):
            await advance_status(db_session, job.id, technician.id, status)

    @pytest.mark.asyncio
    async def test_completion_requires_work_images(self, db_session, assigned_job):
        job, technician = await assigned_job(
            status=JobStatus.IN_PROGRESS.value, before_image_url="https://img/before.jpg"
        )

        with pytest.raises(ValidationError) as exc_info:
            await advance_status(db_session, job.id, technician.id, "completed")

        assert exc_info.value.code == "work_images_required"

    @pytest.mark.asyncio
    async def test_completion_settles_a_paid_job(self, db_session, assigned_job):
        job, technician = await assigned_job(
            status=JobStatus.IN_PROGRESS.value,
            payment_status=PaymentStatus.PAID.value,
            before_image_url="https://img/before.jpg",
            after_image_url="https://img/after.jpg",
        )

        job = await advance_status(db_session, job.id, technician.id, "completed")

        assert job.status == JobStatus.COMPLETED.value
        assert job.completed_at is not None
        assert job.settlement_status == SettlementStatus.SETTLED.value
        refreshed = await db_session.get(Technician, technician.id, populate_existing=True)
        assert refreshed.wallet_balance == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_completion_of_unpaid_job_waits_for_payment(self, db_session, assigned_job):
        job, technician = await assigned_job(
            status=JobStatus.IN_PROGRESS.value,
            before_image_url="https://img/before.jpg",
            after_image_url="https://img/after.jpg",
        )

        job = await advance_status(db_session, job.id, technician.id, "completed")

        assert job.status == JobStatus.COMPLETED.value
        assert job.settlement_status == SettlementStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_settlement_failure_keeps_the_completion(
        self, db_session, assigned_job, monkeypatch
    ):
        job, technician = await assigned_job(
            status=JobStatus.IN_PROGRESS.value,
            payment_status=PaymentStatus.PAID.value,
            before_image_url="https://img/before.jpg",
            after_image_url="https://img/after.jpg",
        )
        job_id, technician_id = job.id, technician.id

        async def failing_settlement(session, _job_id):
            await session.rollback()
            raise OperationalError("UPDATE technicians", {}, Exception("database down"))

        monkeypatch.setattr(
            "dispatch.services.lifecycle.settle_job_earnings", failing_settlement
        )

        job = await advance_status(db_session, job_id, technician_id, "completed")

        assert job.id == job_id
        assert job.status == JobStatus.COMPLETED.value
        assert job.settlement_status == SettlementStatus.PENDING.value
        refreshed = await db_session.get(Technician, technician_id, populate_existing=True)
        assert refreshed.wallet_balance == Decimal("0.00")


class TestRecordWorkImages:
    """Tests for record_work_images."""

    @pytest.mark.asyncio
    async def test_records_images(self, db_session, assigned_job):
        job, technician = await assigned_job(status=JobStatus.IN_PROGRESS.value)

        job = await record_work_images(
            db_session, job.id, technician.id, before_image_url=" https://img/b.jpg "
        )
        job = await record_work_images(
            db_session, job.id, technician.id, after_image_url="https://img/a.jpg"
        )

        assert job.before_image_url == "https://img/b.jpg"
        assert job.after_image_url == "https://img/a.jpg"
        assert job.has_work_images

    @pytest.mark.asyncio
    async def test_requires_an_image(self, db_session, assigned_job):
        job, technician = await assigned_job()

        with pytest.raises(ValidationError):
            await record_work_images(db_session, job.id, technician.id, "  ", None)

    @pytest.mark.asyncio
    async def test_closed_job(self, db_session, assigned_job):
        job, technician = await assigned_job(status=JobStatus.COMPLETED.value)

        with pytest.raises(ConflictError):
            await record_work_images(db_session, job.id, technician.id, "https://img/b.jpg")


class TestCancelJob:
    """Tests for cancel_job."""

    @pytest.mark.asyncio
    async def test_cancel_broadcasted_job_expires_offers(
        self, db_session, make_technician, make_job, notifier, publish_log, service_id
    ):
        technician = await make_technician(services=[service_id])
        job = await make_job(service_id)
        await broadcast_new_job(db_session, job.id, notifier)
        publish_log.clear()

        job = await cancel_job(db_session, job.id, job.customer_id, notifier)

        assert job.status == JobStatus.CANCELLED.value
        assert job.cancelled_at is not None
        statuses = (
            await db_session.execute(
                select(JobBroadcast.status).where(JobBroadcast.job_id == job.id)
            )
        ).scalars().all()
        assert statuses == [BroadcastStatus.EXPIRED.value]
        assert publish_log.channels(EVENT_JOB_CANCELLED) == {f"technician:{technician.id}"}

    @pytest.mark.asyncio
    async def test_cancel_accepted_job_notifies_assignee(
        self, db_session, assigned_job, notifier, publish_log
    ):
        job, technician = await assigned_job()

        await cancel_job(db_session, job.id, job.customer_id, notifier)

        assert publish_log.channels(EVENT_JOB_CANCELLED) == {f"technician:{technician.id}"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["on_the_way", "reached", "in_progress", "completed"])
    async def test_blocked_once_under_way(self, db_session, assigned_job, status):
        job, _ = await assigned_job(status=status)

        with pytest.raises(ConflictError) as exc_info:
            await cancel_job(db_session, job.id, job.customer_id)

        assert exc_info.value.code == "cancellation_blocked"

    @pytest.mark.asyncio
    async def test_already_cancelled(self, db_session, make_job, service_id):
        job = await make_job(service_id)
        await cancel_job(db_session, job.id, job.customer_id)

        with pytest.raises(ConflictError) as exc_info:
            await cancel_job(db_session, job.id, job.customer_id)

        assert exc_info.value.code == "already_cancelled"

    @pytest.mark.asyncio
    async def test_only_owner_can_cancel(self, db_session, make_job, service_id):
        job = await make_job(service_id)

        with pytest.raises(PermissionDeniedError):
            await cancel_job(db_session, job.id, uuid.uuid4())
