"""Wallet ledger: immutable financial facts backing the technician balance."""

from __future__ import annotations

import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.models.base import BaseModel


class EntryType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntrySource(str, Enum):
    JOB = "job"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"
    PENALTY = "penalty"
    BONUS = "bonus"


class WalletLedgerEntry(BaseModel):
    """Model representing one credit or debit against a technician wallet."""

    __tablename__ = "wallet_ledger_entries"

    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("technicians.id"), index=True, nullable=False
    )
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("jobs.id"), index=True, nullable=True
    )
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(10), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Settlement idempotency key; NULL job_id rows never collide
    __table_args__ = (
        UniqueConstraint("job_id", "entry_type", "source", name="uq_wallet_ledger_job_type_source"),
    )

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.entry_type == EntryType.CREDIT.value else -self.amount

    def __repr__(self) -> str:
        return (
            f"<WalletLedgerEntry(technician_id={self.technician_id}, job_id={self.job_id}, "
            f"{self.entry_type} {self.amount} {self.source})>"
        )
