"""Shared fixtures for service and API tests.

Each test gets a fresh in-memory SQLite database; Redis publishing is
replaced with an AsyncMock so notifications can be asserted on.
"""

from __future__ import annotations

import json
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dispatch import models  # noqa: F401  registers tables on Base.metadata
from dispatch.database import Base, get_db
from dispatch.dependencies import get_notifier
from dispatch.logging_config import metrics
from dispatch.models import (
    Job,
    JobStatus,
    KycStatus,
    PaymentStatus,
    Technician,
    TechnicianKyc,
    TechnicianSkill,
    WorkStatus,
)
from dispatch.services.notifications import Notifier

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

# Bengaluru, used as the default job location
JOB_LAT = 12.90
JOB_LNG = 77.58


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
async def test_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis() -> AsyncMock:
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def notifier(mock_redis) -> Notifier:
    return Notifier(mock_redis)


class PublishLog:
    """Decoded view of the publish calls made on the mocked Redis client."""

    def __init__(self, client: AsyncMock):
        self.client = client

    def messages(self) -> list[tuple[str, dict[str, Any]]]:
        return [(c.args[0], json.loads(c.args[1])) for c in self.client.publish.await_args_list]

    def channels(self, event: str) -> set[str]:
        return {channel for channel, message in self.messages() if message["event"] == event}

    def clear(self) -> None:
        self.client.publish.reset_mock()


@pytest.fixture
def publish_log(mock_redis) -> PublishLog:
    return PublishLog(mock_redis)


@pytest.fixture
def service_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_technician(db_session):
    """Create a technician with its KYC row; ready to receive offers by default."""

    async def _make(
        services: Optional[list[uuid.UUID]] = None,
        latitude: Optional[float] = JOB_LAT,
        longitude: Optional[float] = JOB_LNG,
        is_online: bool = True,
        profile_complete: bool = True,
        training_completed: bool = True,
        work_status: str = WorkStatus.APPROVED.value,
        kyc_status: Optional[str] = KycStatus.APPROVED.value,
        bank_verified: bool = True,
        city: Optional[str] = None,
        state: Optional[str] = None,
        pincode: Optional[str] = None,
        **overrides: Any,
    ) -> Technician:
        technician = Technician(
            latitude=latitude,
            longitude=longitude,
            is_online=is_online,
            profile_complete=profile_complete,
            training_completed=training_completed,
            work_status=work_status,
            city=city,
            state=state,
            pincode=pincode,
            skills=[TechnicianSkill(service_id=sid) for sid in services or []],
            **overrides,
        )
        db_session.add(technician)
        await db_session.flush()
        if kyc_status is not None:
            db_session.add(
                TechnicianKyc(
                    technician_id=technician.id,
                    verification_status=kyc_status,
                    bank_verified=bank_verified,
                )
            )
        await db_session.commit()
        return technician

    return _make


@pytest.fixture
def make_job(db_session):
    """Create a job directly in the store, bypassing intake validation."""

    async def _make(
        service_id: uuid.UUID,
        latitude: Optional[float] = JOB_LAT,
        longitude: Optional[float] = JOB_LNG,
        status: str = JobStatus.REQUESTED.value,
        technician_id: Optional[uuid.UUID] = None,
        technician_amount: Decimal = Decimal("450.00"),
        address_snapshot: Optional[dict[str, Any]] = None,
        payment_status: str = PaymentStatus.PENDING.value,
        **overrides: Any,
    ) -> Job:
        job = Job(
            customer_id=overrides.pop("customer_id", uuid.uuid4()),
            service_id=service_id,
            base_amount=Decimal("500.00"),
            commission_percentage=Decimal("10"),
            commission_amount=Decimal("500.00") - technician_amount,
            technician_amount=technician_amount,
            latitude=latitude,
            longitude=longitude,
            address_snapshot=address_snapshot or {"name": "Asha", "city": "Bengaluru"},
            status=status,
            technician_id=technician_id,
            payment_status=payment_status,
            **overrides,
        )
        db_session.add(job)
        await db_session.commit()
        return job

    return _make


@pytest.fixture
async def test_client(session_factory, notifier) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the SQLite store and mocked Redis."""
    from dispatch.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_notifier():
        return notifier

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = override_get_notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
