"""Technician readiness: the composite gate in front of every broadcast.

KYC approval, bank verification, training, owner approval and the online
toggle are owned by different collaborators and change independently. They
are folded here into one :class:`ReadinessReport` with a named state, so call
sites never check the flags one by one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.exceptions import EligibilityDeniedError, NotFoundError
from dispatch.models import KycStatus, Technician, TechnicianKyc, WorkStatus
from dispatch.validation import parse_uuid


class TechnicianReadiness(str, Enum):
    """First gate a technician fails, in evaluation order, or READY."""

    NOT_FOUND = "not_found"
    PROFILE_INCOMPLETE = "profile_incomplete"
    KYC_PENDING = "kyc_pending"
    BANK_UNVERIFIED = "bank_unverified"
    TRAINING_PENDING = "training_pending"
    NOT_APPROVED = "not_approved"
    OFFLINE = "offline"
    READY = "ready"


# (reason code, readiness state) in evaluation order
_GATES: tuple[tuple[str, TechnicianReadiness], ...] = (
    ("profile_incomplete", TechnicianReadiness.PROFILE_INCOMPLETE),
    ("kyc_not_approved", TechnicianReadiness.KYC_PENDING),
    ("bank_not_verified", TechnicianReadiness.BANK_UNVERIFIED),
    ("training_incomplete", TechnicianReadiness.TRAINING_PENDING),
    ("workStatus_not_approved", TechnicianReadiness.NOT_APPROVED),
    ("offline", TechnicianReadiness.OFFLINE),
)


@dataclass(frozen=True)
class ReadinessReport:
    """Outcome of the readiness evaluation for one technician."""

    state: TechnicianReadiness
    reasons: list[str] = field(default_factory=list)
    kyc_status: str = KycStatus.NOT_SUBMITTED.value
    work_status: Optional[str] = None

    @property
    def eligible(self) -> bool:
        """May receive new broadcasts."""
        return self.state == TechnicianReadiness.READY

    @property
    def can_work(self) -> bool:
        """May act on an assigned job; being offline does not block this."""
        return all(reason == "offline" for reason in self.reasons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "eligible": self.eligible,
            "can_work": self.can_work,
            "reasons": list(self.reasons),
            "kyc_status": self.kyc_status,
            "work_status": self.work_status,
        }


def evaluate_readiness(
    technician: Optional[Technician], kyc: Optional[TechnicianKyc]
) -> ReadinessReport:
    """Evaluate readiness from possibly partial records.

    A missing KYC row counts as not approved and not bank-verified; it is
    never an error.
    """
    if technician is None:
        return ReadinessReport(
            state=TechnicianReadiness.NOT_FOUND, reasons=["technician_not_found"]
        )

    kyc_status = (kyc.verification_status if kyc is not None else None) or (
        KycStatus.NOT_SUBMITTED.value
    )
    failing = {
        "profile_incomplete": not technician.profile_complete,
        "kyc_not_approved": kyc_status != KycStatus.APPROVED.value,
        "bank_not_verified": not (kyc is not None and kyc.bank_verified),
        "training_incomplete": not technician.training_completed,
        "workStatus_not_approved": technician.work_status != WorkStatus.APPROVED.value,
        "offline": not technician.is_online,
    }

    reasons = [reason for reason, _ in _GATES if failing[reason]]
    state = next(
        (readiness for reason, readiness in _GATES if failing[reason]),
        TechnicianReadiness.READY,
    )
    return ReadinessReport(
        state=state,
        reasons=reasons,
        kyc_status=kyc_status,
        work_status=technician.work_status,
    )


async def load_technician_with_kyc(
    session: AsyncSession, technician_id: uuid.UUID
) -> tuple[Optional[Technician], Optional[TechnicianKyc]]:
    technician = await session.get(Technician, technician_id, populate_existing=True)
    if technician is None:
        return None, None
    result = await session.execute(
        select(TechnicianKyc)
        .where(TechnicianKyc.technician_id == technician_id)
        .execution_options(populate_existing=True)
    )
    return technician, result.scalar_one_or_none()


async def get_readiness(session: AsyncSession, technician_id: Any) -> ReadinessReport:
    """Load a technician and its KYC row and evaluate readiness."""
    tech_id = parse_uuid(technician_id, "technician_id")
    technician, kyc = await load_technician_with_kyc(session, tech_id)
    return evaluate_readiness(technician, kyc)


async def require_can_work(session: AsyncSession, technician_id: uuid.UUID) -> Technician:
    """Return the technician if it may act on assigned jobs, else raise."""
    technician, kyc = await load_technician_with_kyc(session, technician_id)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")
    report = evaluate_readiness(technician, kyc)
    if not report.can_work:
        raise EligibilityDeniedError(
            "Technician is not cleared to work on jobs",
            reasons=[reason for reason in report.reasons if reason != "offline"],
        )
    return technician
