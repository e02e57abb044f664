"""Input validation shared by services; runs before any store access."""

from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from dispatch.exceptions import ValidationError


def parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    """Parse an identifier or raise a ValidationError naming the field."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid {field_name}", code=f"invalid_{field_name}") from None


def parse_money(value: Any, field_name: str) -> Decimal:
    """Parse a non-negative monetary amount."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number", code=f"invalid_{field_name}") from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(
            f"{field_name} must be a non-negative number", code=f"invalid_{field_name}"
        )
    return amount
