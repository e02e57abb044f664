"""SQLAlchemy models."""

from dispatch.models.base import BaseModel
from dispatch.models.broadcast import BroadcastStatus, JobBroadcast
from dispatch.models.job import Job, JobStatus, PaymentStatus, SettlementStatus
from dispatch.models.technician import (
    KycStatus,
    Technician,
    TechnicianKyc,
    TechnicianSkill,
    WorkStatus,
)
from dispatch.models.wallet import EntrySource, EntryType, WalletLedgerEntry

__all__ = [
    "BaseModel",
    "BroadcastStatus",
    "EntrySource",
    "EntryType",
    "Job",
    "JobBroadcast",
    "JobStatus",
    "KycStatus",
    "PaymentStatus",
    "SettlementStatus",
    "Technician",
    "TechnicianKyc",
    "TechnicianSkill",
    "WalletLedgerEntry",
    "WorkStatus",
]
