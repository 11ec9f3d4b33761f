# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from leave_ledger.models.base import DAYS_TYPE, now_utc


class LeaveBalanceSnapshot(SQLModel, table=True):
    """Denormalized balance cache, written only by the ledger append path.

    Always rebuildable from the ledger, which remains the source of truth.
    """

    __tablename__ = "leave_balance_snapshot"
    __table_args__ = (sa.PrimaryKeyConstraint("company_id", "employee_id", "leave_type"),)

    company_id: uuid.UUID
    employee_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=50)
    total_days: Decimal = Field(default=Decimal(0), sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    used_days: Decimal = Field(default=Decimal(0), sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    balance_days: Decimal = Field(default=Decimal(0), sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    last_sequence: int | None = Field(default=None, sa_type=sa.BigInteger)
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),
        sa_column_kwargs={"server_default": sa.func.now()},
    )
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
