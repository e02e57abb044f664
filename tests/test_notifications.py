"""Tests for the Redis notifier."""

from __future__ import annotations

import json
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dispatch.logging_config import metrics
from dispatch.models import Job
from dispatch.services.notifications import (
    EVENT_JOB_ACCEPTED,
    EVENT_JOB_TAKEN,
    EVENT_NEW_JOB,
    Notifier,
    customer_channel,
    job_offer_payload,
    technician_channel,
)


def _job(**overrides) -> Job:
    fields = {
        "id": uuid.uuid4(),
        "customer_id": uuid.uuid4(),
        "service_id": uuid.uuid4(),
        "base_amount": Decimal("500.00"),
        "technician_amount": Decimal("450.00"),
        "address_snapshot": {"name": "Asha", "city": "Bengaluru"},
        "status": "broadcasted",
    }
    fields.update(overrides)
    return Job(**fields)


class TestNotifier:
    """Tests for Notifier."""

    @pytest.mark.asyncio
    async def test_new_job_goes_to_each_technician(self, notifier, publish_log):
        job = _job()
        technicians = [uuid.uuid4(), uuid.uuid4()]

        delivered = await notifier.notify_new_job(technicians, job)

        assert delivered == 2
        assert publish_log.channels(EVENT_NEW_JOB) == {technician_channel(t) for t in technicians}
        _, message = publish_log.messages()[0]
        assert message["payload"]["job_id"] == str(job.id)
        assert message["payload"]["customer_name"] == "Asha"
        assert "sent_at" in message

    @pytest.mark.asyncio
    async def test_customer_gets_acceptance(self, notifier, publish_log):
        job = _job(technician_id=uuid.uuid4(), status="accepted")

        await notifier.notify_customer_job_accepted(job)

        assert publish_log.channels(EVENT_JOB_ACCEPTED) == {customer_channel(job.customer_id)}

    @pytest.mark.asyncio
    async def test_no_recipients_is_a_noop(self, notifier, mock_redis):
        assert await notifier.notify_job_taken([], uuid.uuid4()) == 0
        mock_redis.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failures_are_swallowed(self, mock_redis):
        mock_redis.publish = AsyncMock(
            side_effect=[RedisConnectionError("connection reset"), 1]
        )
        notifier = Notifier(mock_redis)

        delivered = await notifier.notify_job_taken([uuid.uuid4(), uuid.uuid4()], uuid.uuid4())

        assert delivered == 1
        assert metrics.get_counter("notifications_failed") == 1
        assert metrics.get_counter("notifications_sent") == 1

    @pytest.mark.asyncio
    async def test_missing_client_skips(self):
        notifier = Notifier(None)

        assert await notifier.notify_job_taken([uuid.uuid4()], uuid.uuid4()) == 0

    @pytest.mark.asyncio
    async def test_message_is_json(self, notifier, mock_redis):
        job_id = uuid.uuid4()

        await notifier.notify_job_taken([uuid.uuid4()], job_id)

        raw = mock_redis.publish.await_args.args[1]
        message = json.loads(raw)
        assert message["event"] == EVENT_JOB_TAKEN
        assert message["payload"]["job_id"] == str(job_id)


class TestJobOfferPayload:
    """Tests for job_offer_payload."""

    def test_placeholders_for_missing_snapshot(self):
        payload = job_offer_payload(_job(address_snapshot=None))

        assert payload["customer_name"] == "Customer"
        assert payload["city"] == ""
