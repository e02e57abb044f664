"""Pydantic schemas for payment endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentConfirmedRequest(BaseModel):
    """Payment-verified signal from the payment collaborator."""

    job_id: UUID
    paid_amount: Decimal = Field(ge=0)
    provider_payment_id: Optional[str] = Field(default=None, max_length=100)


class SettlementRetryRequest(BaseModel):
    job_id: UUID


class SettlementResponse(BaseModel):
    job_id: UUID
    settled: bool
    reason: str
