# ruff: noqa: TC003
from __future__ import annotations

import uuid
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import DAYS_TYPE, SoftDeleteMixin, TimestampMixin, UUIDBase


class LeaveType(UUIDBase, TimestampMixin, SoftDeleteMixin, table=True):
    """Tenant-scoped leave category (earned, sick, unpaid, ...)."""

    __tablename__ = "leave_type"
    __table_args__ = (
        sa.Index(
            "uq_leave_type_company_code",
            "company_id",
            "code",
            unique=True,
            postgresql_where=sa.text("is_deleted = false"),
            sqlite_where=sa.text("is_deleted = 0"),
        ),
    )

    company_id: uuid.UUID = Field(index=True)
    code: str = Field(max_length=50)
    name: str = Field(max_length=255)
    default_annual_quota: Decimal = Field(default=Decimal(0), sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    is_paid: bool = True
    requires_approval: bool = True
    allow_negative: bool = False
    is_active: bool = Field(default=True, sa_column_kwargs={"server_default": sa.true()})
