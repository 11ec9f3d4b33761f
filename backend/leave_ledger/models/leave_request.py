# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import DAYS_TYPE, SoftDeleteMixin, TimestampMixin, UUIDBase
from leave_ledger.models.enums import LeaveRequestStatus


class LeaveRequest(UUIDBase, TimestampMixin, SoftDeleteMixin, table=True):
    """An employee's leave request with approval workflow state."""

    __tablename__ = "leave_request"
    __table_args__ = (
        sa.Index("ix_leave_request_company_status", "company_id", "status"),
        sa.Index("ix_leave_request_employee_dates", "company_id", "employee_id", "start_date", "end_date"),
    )

    company_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=50)
    start_date: date
    end_date: date
    duration: Decimal = Field(sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    reason: str | None = None
    status: str = Field(
        default=LeaveRequestStatus.PENDING, max_length=50, index=True, sa_column_kwargs={"server_default": "pending"}
    )
    # Point-in-time audit snapshot, no ledger effect.
    balance_at_request: Decimal | None = Field(default=None, sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    approved_by: uuid.UUID | None = None
    approved_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    approval_comment: str | None = None
    rejected_by: uuid.UUID | None = None
    rejected_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    rejection_reason: str | None = None
    cancelled_by: uuid.UUID | None = None
    cancelled_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    created_by: uuid.UUID
