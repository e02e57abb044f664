"""Shared dependencies for FastAPI dependency injection."""

from __future__ import annotations

import uuid
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, status

from dispatch.services.notifications import Notifier
from dispatch.validation import parse_uuid

# Redis client (initialized in main.py on startup)
redis_client: redis.Redis | None = None

ADMIN_ROLES = frozenset({"admin", "owner"})


def set_redis_client(client: Optional[redis.Redis]) -> None:
    """Set the Redis client (called from main.py on startup)."""
    global redis_client
    redis_client = client


def get_redis() -> redis.Redis:
    """Get Redis client dependency."""
    if redis_client is None:
        raise RuntimeError("Redis client not initialized")
    return redis_client


def get_notifier() -> Notifier:
    """Notifier over the shared Redis client; publishes are skipped while it is unset."""
    return Notifier(redis_client)


# Identity is asserted by the upstream auth gateway
def get_technician_id(
    x_technician_id: Optional[str] = Header(default=None),
) -> uuid.UUID:
    if not x_technician_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Technician identity required",
        )
    return parse_uuid(x_technician_id, "technician_id")


def get_customer_id(
    x_customer_id: Optional[str] = Header(default=None),
) -> uuid.UUID:
    if not x_customer_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Customer identity required",
        )
    return parse_uuid(x_customer_id, "customer_id")


def get_actor_role(x_actor_role: Optional[str] = Header(default=None)) -> str:
    return (x_actor_role or "").strip().lower()


def require_admin(role: str = Depends(get_actor_role)) -> str:
    """Admin or owner only."""
    if role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin/Owner access only",
        )
    return role
