"""Initial dispatch schema.

Technicians still carry their skills as a JSON list (``legacy_skills``); the
next revision moves them into ``technician_skills``.

Revision ID: 0001
Revises:
Create Date: 2024-06-01 00:00:00
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Create technicians table
    op.create_table(
        "technicians",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=100), nullable=True),
        sa.Column("pincode", sa.String(length=20), nullable=True),
        sa.Column("work_status", sa.String(length=20), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False),
        sa.Column("training_completed", sa.Boolean(), nullable=False),
        sa.Column("profile_complete", sa.Boolean(), nullable=False),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_matching_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_skills", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_technicians_pincode"), "technicians", ["pincode"], unique=False)
    op.create_index(op.f("ix_technicians_work_status"), "technicians", ["work_status"], unique=False)
    op.create_index(op.f("ix_technicians_is_online"), "technicians", ["is_online"], unique=False)
    op.create_index("ix_technicians_lat_lng", "technicians", ["latitude", "longitude"], unique=False)

    # Create technician_kyc table
    op.create_table(
        "technician_kyc",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("technician_id", sa.UUID(), nullable=False),
        sa.Column("verification_status", sa.String(length=20), nullable=False),
        sa.Column("bank_verified", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["technician_id"], ["technicians.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("technician_id"),
    )
    op.create_index(
        op.f("ix_technician_kyc_verification_status"),
        "technician_kyc",
        ["verification_status"],
        unique=False,
    )

    # Create technician_skills table
    op.create_table(
        "technician_skills",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("technician_id", sa.UUID(), nullable=False),
        sa.Column("service_id", sa.UUID(), nullable=False),
        sa.Column("experience_years", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["technician_id"], ["technicians.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("technician_id", "service_id", name="uq_technician_skills_pair"),
    )
    op.create_index(
        op.f("ix_technician_skills_technician_id"), "technician_skills", ["technician_id"], unique=False
    )
    op.create_index(
        op.f("ix_technician_skills_service_id"), "technician_skills", ["service_id"], unique=False
    )

    # Create jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("service_id", sa.UUID(), nullable=False),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("technician_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address_snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("search_radius_m", sa.Float(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fault_problem", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("technician_id", sa.UUID(), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("provider_payment_id", sa.String(length=100), nullable=True),
        sa.Column("settlement_status", sa.String(length=20), nullable=False),
        sa.Column("before_image_url", sa.String(length=500), nullable=True),
        sa.Column("after_image_url", sa.String(length=500), nullable=True),
        sa.Column("broadcasted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("customer_id", "service_id", "status", "technician_id", "payment_status", "settlement_status"):
        op.create_index(op.f(f"ix_jobs_{column}"), "jobs", [column], unique=False)
    op.create_index("ix_jobs_technician_status", "jobs", ["technician_id", "status"], unique=False)
    op.create_index("ix_jobs_lat_lng", "jobs", ["latitude", "longitude"], unique=False)

    # Create job_broadcasts table
    op.create_table(
        "job_broadcasts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("job_id", sa.UUID(), nullable=False),
        sa.Column("technician_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.ForeignKeyConstraint(["technician_id"], ["technicians.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "technician_id", name="uq_job_broadcasts_job_technician"),
    )
    for column in ("job_id", "technician_id", "status", "sent_at"):
        op.create_index(op.f(f"ix_job_broadcasts_{column}"), "job_broadcasts", [column], unique=False)

    # Create wallet_ledger_entries table
    op.create_table(
        "wallet_ledger_entries",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("technician_id", sa.UUID(), nullable=False),
        sa.Column("job_id", sa.UUID(), nullable=True),
        sa.Column("provider_payment_id", sa.String(length=100), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("entry_type", sa.String(length=10), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.ForeignKeyConstraint(["technician_id"], ["technicians.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "job_id", "entry_type", "source", name="uq_wallet_ledger_job_type_source"
        ),
    )
    op.create_index(
        op.f("ix_wallet_ledger_entries_technician_id"),
        "wallet_ledger_entries",
        ["technician_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_wallet_ledger_entries_job_id"), "wallet_ledger_entries", ["job_id"], unique=False
    )


def downgrade() -> None:
    op.drop_table("wallet_ledger_entries")
    op.drop_table("job_broadcasts")
    op.drop_table("jobs")
    op.drop_table("technician_skills")
    op.drop_table("technician_kyc")
    op.drop_table("technicians")
