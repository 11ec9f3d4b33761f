# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from leave_ledger.models.base import DAYS_TYPE, TimestampMixin, UUIDBase


class CustomLeavePolicy(UUIDBase, TimestampMixin, table=True):
    """Per-employee override of a leave type's default annual quota."""

    __tablename__ = "custom_leave_policy"
    __table_args__ = (sa.Index("ix_custom_policy_company_type", "company_id", "leave_type"),)

    company_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=50)
    name: str = Field(max_length=255)
    override_quota: Decimal = Field(sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    is_active: bool = Field(default=True, sa_column_kwargs={"server_default": sa.true()})
    created_by: uuid.UUID
    deactivated_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]


class CustomLeavePolicyMember(SQLModel, table=True):
    """An employee covered by a custom policy.

    The partial unique index allows at most one active policy per
    (employee, leave type) within a company.
    """

    __tablename__ = "custom_leave_policy_member"
    __table_args__ = (
        sa.PrimaryKeyConstraint("policy_id", "employee_id"),
        sa.Index(
            "uq_custom_policy_member_active",
            "company_id",
            "employee_id",
            "leave_type",
            unique=True,
            postgresql_where=sa.text("is_active = true"),
            sqlite_where=sa.text("is_active = 1"),
        ),
    )

    policy_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("custom_leave_policy.id", ondelete="CASCADE"), nullable=False),
    )
    employee_id: uuid.UUID
    company_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=50)
    # Effective quota the override replaced, for rebuilding the adjustment entry.
    previous_quota: Decimal | None = Field(default=None, sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    is_active: bool = Field(default=True, sa_column_kwargs={"server_default": sa.true()})
