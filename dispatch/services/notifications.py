"""Fire-and-forget notifications over Redis pub/sub.

Delivery (push, sockets) is owned by the gateway subscribed to these
channels. Nothing here may raise into the caller: a state transition that has
already committed must never be unwound because a notification failed.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from dispatch.clock import utcnow
from dispatch.logging_config import get_logger, metrics

if TYPE_CHECKING:
    from dispatch.models import Job

logger = get_logger(__name__)

EVENT_NEW_JOB = "job:new"
EVENT_JOB_TAKEN = "job_taken"
EVENT_JOB_ACCEPTED = "job_accepted"
EVENT_JOB_CANCELLED = "job_cancelled"


def technician_channel(technician_id: Any) -> str:
    return f"technician:{technician_id}"


def customer_channel(customer_id: Any) -> str:
    return f"customer:{customer_id}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def job_offer_payload(job: Job) -> dict[str, Any]:
    """Payload sent to technicians when a job is offered."""
    snapshot = job.address_snapshot or {}
    return {
        "job_id": job.id,
        "service_id": job.service_id,
        "customer_name": snapshot.get("name") or "Customer",
        "address": snapshot.get("address_line") or "",
        "city": snapshot.get("city") or "",
        "base_amount": job.base_amount,
        "earnings": job.technician_amount,
        "scheduled_at": job.scheduled_at,
    }


class Notifier:
    """Publishes domain events to per-recipient Redis channels."""

    def __init__(self, client: Optional[redis.Redis]):
        self.client = client

    async def publish(self, channels: Iterable[str], event: str, payload: dict[str, Any]) -> int:
        """Publish one event to each channel; returns how many publishes succeeded."""
        channels = list(channels)
        if not channels:
            return 0
        if self.client is None:
            logger.warning("notification_skipped", reason="redis_not_initialized", notify_event=event)
            return 0

        message = json.dumps(
            {"event": event, "payload": payload, "sent_at": utcnow()},
            default=_json_default,
        )
        delivered = 0
        for channel in channels:
            try:
                await self.client.publish(channel, message)
                delivered += 1
            except (RedisError, OSError) as e:
                metrics.increment("notifications_failed")
                logger.warning(
                    "notification_dispatch_failed",
                    channel=channel,
                    notify_event=event,
                    error=str(e),
                )
        metrics.increment("notifications_sent", delivered)
        return delivered

    async def notify_new_job(self, technician_ids: Iterable[uuid.UUID], job: Job) -> int:
        return await self.publish(
            (technician_channel(tid) for tid in technician_ids),
            EVENT_NEW_JOB,
            job_offer_payload(job),
        )

    async def notify_job_taken(self, technician_ids: Iterable[uuid.UUID], job_id: uuid.UUID) -> int:
        return await self.publish(
            (technician_channel(tid) for tid in technician_ids),
            EVENT_JOB_TAKEN,
            {"job_id": job_id, "message": "This job has been accepted by another technician"},
        )

    async def notify_customer_job_accepted(self, job: Job) -> int:
        return await self.publish(
            [customer_channel(job.customer_id)],
            EVENT_JOB_ACCEPTED,
            {"job_id": job.id, "technician_id": job.technician_id, "status": job.status},
        )

    async def notify_job_cancelled(self, technician_ids: Iterable[uuid.UUID], job_id: uuid.UUID) -> int:
        return await self.publish(
            (technician_channel(tid) for tid in technician_ids),
            EVENT_JOB_CANCELLED,
            {"job_id": job_id},
        )
