"""Tests for position reports, availability and the rematch throttle."""

from __future__ import annotations

from datetime import timedelta

import pytest

from dispatch.clock import utcnow
from dispatch.exceptions import EligibilityDeniedError, ValidationError
from dispatch.logging_config import metrics
from dispatch.models import Technician, WorkStatus
from dispatch.services.location import (
    claim_rematch_slot,
    handle_location_update,
    set_availability,
)
from dispatch.services.notifications import EVENT_NEW_JOB

# ~2 m north of the default job location
NUDGE_LAT = 12.90 + 0.000018


async def _reload(db_session, technician_id) -> Technician:
    return await db_session.get(Technician, technician_id, populate_existing=True)


class TestClaimRematchSlot:
    """Tests for the conditional watermark claim."""

    @pytest.mark.asyncio
    async def test_first_claim_wins_second_is_throttled(self, db_session, make_technician):
        technician = await make_technician()
        now = utcnow()

        assert await claim_rematch_slot(db_session, technician.id, now) is True
        assert await claim_rematch_slot(db_session, technician.id, now + timedelta(seconds=5)) is False

    @pytest.mark.asyncio
    async def test_claim_after_window(self, db_session, make_technician):
        technician = await make_technician()
        now = utcnow()
        await claim_rematch_slot(db_session, technician.id, now)

        assert await claim_rematch_slot(db_session, technician.id, now + timedelta(seconds=61))


class TestHandleLocationUpdate:
    """Tests for handle_location_update."""

    @pytest.mark.asyncio
    async def test_first_report_writes_and_rematches(
        self, db_session, make_technician, make_job, notifier, publish_log, service_id
    ):
        technician = await make_technician(services=[service_id], latitude=None, longitude=None)
        job = await make_job(service_id)

        result = await handle_location_update(db_session, technician.id, 12.9001, 77.5801, notifier)

        assert result.location_updated is True
        assert result.moved_m is None
        assert result.match_calculation is True
        assert result.offered_job_ids == [job.id]
        assert publish_log.channels(EVENT_NEW_JOB) == {f"technician:{technician.id}"}

        refreshed = await _reload(db_session, technician.id)
        assert refreshed.latitude == pytest.approx(12.9001)
        assert refreshed.location_updated_at is not None
        assert refreshed.last_matching_at is not None

    @pytest.mark.asyncio
    async def test_small_move_within_window_is_a_quiet_success(
        self, db_session, make_technician, notifier, publish_log, service_id
    ):
        now = utcnow()
        technician = await make_technician(
            services=[service_id], last_matching_at=now - timedelta(seconds=10)
        )

        result = await handle_location_update(
            db_session, technician.id, NUDGE_LAT, 77.58, notifier, now=now
        )

        assert result.location_updated is False
        assert result.moved_m == pytest.approx(2.0, abs=0.5)
        assert result.match_calculation is False
        assert result.reason == "matching_rate_limited"
        assert publish_log.messages() == []
        assert metrics.get_counter("rematches_throttled") == 1

        refreshed = await _reload(db_session, technician.id)
        assert refreshed.latitude == pytest.approx(12.90)

    @pytest.mark.asyncio
    async def test_large_move_is_written_even_when_throttled(
        self, db_session, make_technician, notifier
    ):
        now = utcnow()
        technician = await make_technician(last_matching_at=now - timedelta(seconds=10))

        result = await handle_location_update(db_session, technician.id, 12.95, 77.58, notifier, now=now)

        assert result.location_updated is True
        assert result.match_calculation is False
        refreshed = await _reload(db_session, technician.id)
        assert refreshed.latitude == pytest.approx(12.95)

    @pytest.mark.asyncio
    async def test_back_to_back_reports_rematch_once(
        self, db_session, make_technician, notifier, service_id
    ):
        technician = await make_technician(services=[service_id])
        now = utcnow()

        first = await handle_location_update(db_session, technician.id, 12.91, 77.58, notifier, now=now)
        second = await handle_location_update(
            db_session, technician.id, 12.92, 77.58, notifier, now=now + timedelta(seconds=1)
        )

        assert first.match_calculation is True
        assert second.match_calculation is False
        assert metrics.get_counter("rematches_triggered") == 1

    @pytest.mark.asyncio
    async def test_location_update_does_not_change_online_flag(
        self, db_session, make_technician, notifier
    ):
        technician = await make_technician(is_online=False)

        result = await handle_location_update(db_session, technician.id, 12.91, 77.58, notifier)

        assert result.location_updated is True
        assert result.reason == "technician_not_eligible"
        refreshed = await _reload(db_session, technician.id)
        assert refreshed.is_online is False
        assert refreshed.latitude == pytest.approx(12.91)
        assert refreshed.last_matching_at is None
        assert metrics.get_counter("rematches_throttled") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lat,lng", [(None, 77.58), (91, 77.58), ("abc", 77.58), (12.9, 181)])
    async def test_invalid_coordinates(self, db_session, make_technician, notifier, lat, lng):
        technician = await make_technician()

        with pytest.raises(ValidationError) as exc_info:
            await handle_location_update(db_session, technician.id, lat, lng, notifier)

        assert exc_info.value.code == "invalid_coordinates"


class TestSetAvailability:
    """Tests for set_availability."""

    @pytest.mark.asyncio
    async def test_going_online_rematches(
        self, db_session, make_technician, make_job, notifier, service_id
    ):
        technician = await make_technician(services=[service_id], is_online=False)
        await make_job(service_id)

        result = await set_availability(db_session, technician.id, True, notifier)

        assert result.is_online is True
        assert result.match_calculation is True
        assert result.jobs_found == 1
        assert (await _reload(db_session, technician.id)).is_online is True

    @pytest.mark.asyncio
    async def test_going_online_right_after_an_offline_report(
        self, db_session, make_technician, make_job, notifier, publish_log, service_id
    ):
        technician = await make_technician(services=[service_id], is_online=False)
        technician_id = technician.id
        await make_job(service_id)
        now = utcnow()

        report = await handle_location_update(
            db_session, technician_id, 12.9001, 77.5801, notifier, now=now
        )
        result = await set_availability(db_session, technician_id, True, notifier, now=now)

        assert report.match_calculation is False
        assert report.reason == "technician_not_eligible"
        assert result.match_calculation is True
        assert result.jobs_found == 1
        assert publish_log.channels(EVENT_NEW_JOB) == {f"technician:{technician_id}"}
        assert (await _reload(db_session, technician_id)).last_matching_at is not None

    @pytest.mark.asyncio
    async def test_going_online_restarts_the_throttle_window(
        self, db_session, make_technician, notifier, service_id
    ):
        now = utcnow()
        technician = await make_technician(
            services=[service_id], is_online=False, last_matching_at=now - timedelta(seconds=5)
        )
        technician_id = technician.id

        online = await set_availability(db_session, technician_id, True, notifier, now=now)
        report = await handle_location_update(
            db_session, technician_id, 12.95, 77.58, notifier, now=now + timedelta(seconds=1)
        )

        assert online.match_calculation is True
        assert report.match_calculation is False
        assert report.reason == "matching_rate_limited"

    @pytest.mark.asyncio
    async def test_going_offline(self, db_session, make_technician, notifier, publish_log):
        technician = await make_technician()

        result = await set_availability(db_session, technician.id, False, notifier)

        assert result.to_dict()["is_online"] is False
        assert result.match_calculation is False
        assert publish_log.messages() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("work_status", [WorkStatus.SUSPENDED.value, WorkStatus.DELETED.value])
    async def test_blocked_technician_cannot_go_online(
        self, db_session, make_technician, notifier, work_status
    ):
        technician = await make_technician(is_online=False, work_status=work_status)
        technician_id = technician.id

        with pytest.raises(EligibilityDeniedError) as exc_info:
            await set_availability(db_session, technician_id, True, notifier)

        assert exc_info.value.reasons == ["workStatus_not_approved"]
        assert (await _reload(db_session, technician_id)).is_online is False

    @pytest.mark.asyncio
    async def test_blocked_technician_can_go_offline(self, db_session, make_technician, notifier):
        technician = await make_technician(work_status=WorkStatus.SUSPENDED.value)

        result = await set_availability(db_session, technician.id, False, notifier)

        assert result.is_online is False
