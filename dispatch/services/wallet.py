"""Wallet read side: summary, ledger listing and balance audit."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.clock import as_utc
from dispatch.exceptions import NotFoundError, ValidationError
from dispatch.logging_config import get_logger
from dispatch.models import EntryType, Technician, WalletLedgerEntry
from dispatch.validation import parse_uuid

logger = get_logger(__name__)

CENTS = Decimal("0.01")

DateBound = Union[date, datetime, None]


@dataclass(frozen=True)
class WalletTotals:
    credits: Decimal
    debits: Decimal
    entry_count: int

    @property
    def net(self) -> Decimal:
        return self.credits - self.debits


@dataclass(frozen=True)
class WalletSummary:
    technician_id: uuid.UUID
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    entry_count: int


@dataclass(frozen=True)
class WalletAudit:
    technician_id: uuid.UUID
    balance: Decimal
    ledger_balance: Decimal

    @property
    def drift(self) -> Decimal:
        return self.balance - self.ledger_balance

    @property
    def consistent(self) -> bool:
        return self.drift == 0


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS)


async def _get_technician(session: AsyncSession, technician_id: Any) -> Technician:
    tech_id = parse_uuid(technician_id, "technician_id")
    technician = await session.get(Technician, tech_id, populate_existing=True)
    if technician is None:
        raise NotFoundError("Technician profile not found", code="technician_not_found")
    return technician


async def ledger_totals(session: AsyncSession, technician_id: uuid.UUID) -> WalletTotals:
    credit = EntryType.CREDIT.value
    debit = EntryType.DEBIT.value
    row = (
        await session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case((WalletLedgerEntry.entry_type == credit, WalletLedgerEntry.amount), else_=0)
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case((WalletLedgerEntry.entry_type == debit, WalletLedgerEntry.amount), else_=0)
                    ),
                    0,
                ),
                func.count(WalletLedgerEntry.id),
            ).where(WalletLedgerEntry.technician_id == technician_id)
        )
    ).one()
    return WalletTotals(credits=_money(row[0]), debits=_money(row[1]), entry_count=int(row[2]))


async def get_wallet_summary(session: AsyncSession, technician_id: Any) -> WalletSummary:
    technician = await _get_technician(session, technician_id)
    totals = await ledger_totals(session, technician.id)
    return WalletSummary(
        technician_id=technician.id,
        balance=_money(technician.wallet_balance),
        total_credits=totals.credits,
        total_debits=totals.debits,
        entry_count=totals.entry_count,
    )


def _lower_bound(value: DateBound) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _upper_bound(value: DateBound) -> Optional[datetime]:
    """A bare date includes the whole day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


async def list_ledger_entries(
    session: AsyncSession,
    technician_id: Any,
    start: DateBound = None,
    end: DateBound = None,
    limit: int = 100,
    offset: int = 0,
) -> list[WalletLedgerEntry]:
    """Ledger entries of a technician, newest first, optionally within a date range."""
    tech_id = parse_uuid(technician_id, "technician_id")
    lower = _lower_bound(start)
    upper = _upper_bound(end)
    if lower is not None and upper is not None and lower > upper:
        raise ValidationError("start must not be after end", code="invalid_date_range")

    query = select(WalletLedgerEntry).where(WalletLedgerEntry.technician_id == tech_id)
    if lower is not None:
        query = query.where(WalletLedgerEntry.created_at >= lower)
    if upper is not None:
        query = query.where(WalletLedgerEntry.created_at <= upper)
    query = (
        query.order_by(WalletLedgerEntry.created_at.desc(), WalletLedgerEntry.id)
        .limit(limit)
        .offset(offset)
    )
    return list((await session.execute(query)).scalars().all())


async def audit_wallet_balance(session: AsyncSession, technician_id: Any) -> WalletAudit:
    """Compare the denormalized balance with the ledger sum. Read-only."""
    technician = await _get_technician(session, technician_id)
    totals = await ledger_totals(session, technician.id)
    audit = WalletAudit(
        technician_id=technician.id,
        balance=_money(technician.wallet_balance),
        ledger_balance=totals.net,
    )
    if not audit.consistent:
        logger.warning(
            "wallet_balance_drift",
            technician_id=str(technician.id),
            balance=str(audit.balance),
            ledger_balance=str(audit.ledger_balance),
        )
    return audit
