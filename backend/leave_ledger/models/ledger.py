# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from leave_ledger.models.base import DAYS_TYPE, SoftDeleteMixin, TimestampMixin, UUIDBase


class LeaveLedgerEntry(UUIDBase, TimestampMixin, SoftDeleteMixin, table=True):
    """Append-only ledger entry that records every balance-affecting event.

    Rows are never updated; corrections are new entries.
    """

    __tablename__ = "leave_ledger_entry"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "sequence", name="uq_ledger_company_sequence"),
        sa.Index("ix_ledger_pair_order", "company_id", "employee_id", "leave_type", "transaction_date", "sequence"),
        sa.Index(
            "uq_ledger_request_transaction",
            "leave_request_id",
            "transaction_type",
            unique=True,
            postgresql_where=sa.text("is_deleted = false AND leave_request_id IS NOT NULL"),
            sqlite_where=sa.text("is_deleted = 0 AND leave_request_id IS NOT NULL"),
        ),
        sa.Index(
            "uq_ledger_policy_employee",
            "custom_policy_id",
            "employee_id",
            unique=True,
            postgresql_where=sa.text("is_deleted = false AND custom_policy_id IS NOT NULL"),
            sqlite_where=sa.text("is_deleted = 0 AND custom_policy_id IS NOT NULL"),
        ),
    )

    company_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=50)
    transaction_type: str = Field(max_length=50)
    amount: Decimal = Field(sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    balance_before: Decimal = Field(sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    balance_after: Decimal = Field(sa_type=DAYS_TYPE)  # ty: ignore[invalid-argument-type]
    leave_request_id: uuid.UUID | None = Field(default=None, index=True)
    custom_policy_id: uuid.UUID | None = Field(default=None, index=True)
    transaction_date: datetime = Field(sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    sequence: int = Field(sa_type=sa.BigInteger)
    description: str = Field(max_length=1000)
    is_backfilled: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})
    details_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    created_by: uuid.UUID


class LedgerSequence(SQLModel, table=True):
    """Per-company counter that orders ledger entries sharing a timestamp."""

    __tablename__ = "ledger_sequence"

    company_id: uuid.UUID = Field(primary_key=True, sa_type=sa.Uuid)
    last_value: int = Field(default=0, sa_type=sa.BigInteger)
