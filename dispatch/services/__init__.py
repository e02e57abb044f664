"""Dispatch core services."""

from dispatch.services.accept import accept_job
from dispatch.services.bookings import confirm_payment, create_job
from dispatch.services.broadcast import (
    JobBroadcastResult,
    PendingBroadcastResult,
    broadcast_new_job,
    broadcast_pending_jobs_to_technician,
)
from dispatch.services.eligibility import ReadinessReport, TechnicianReadiness, evaluate_readiness
from dispatch.services.feed import get_live_jobs
from dispatch.services.lifecycle import advance_status, cancel_job, record_work_images
from dispatch.services.location import handle_location_update, set_availability
from dispatch.services.matching import find_candidate_technicians
from dispatch.services.notifications import Notifier
from dispatch.services.settlement import SettlementOutcome, settle_job_earnings

__all__ = [
    "JobBroadcastResult",
    "Notifier",
    "PendingBroadcastResult",
    "ReadinessReport",
    "SettlementOutcome",
    "TechnicianReadiness",
    "accept_job",
    "advance_status",
    "broadcast_new_job",
    "broadcast_pending_jobs_to_technician",
    "cancel_job",
    "confirm_payment",
    "create_job",
    "evaluate_readiness",
    "find_candidate_technicians",
    "get_live_jobs",
    "handle_location_update",
    "record_work_images",
    "set_availability",
    "settle_job_earnings",
]
