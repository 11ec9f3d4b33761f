# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from leave_ledger.models.enums import TransactionType
from leave_ledger.schemas.types import Days, LeaveTypeCode, NonNegativeDays

# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    """Resolved entitlement for one (employee, leave type) pair."""

    leave_type: str
    total: Days
    used: Days
    balance: Days
    has_custom_policy: bool
    custom_policy_id: uuid.UUID | None
    # False when the cached counters disagree with the ledger.
    is_consistent: bool


class BalanceListResponse(BaseModel):
    """All leave type balances for an employee."""

    employee_id: uuid.UUID
    items: list[BalanceResponse]
    total: int


# ---------------------------------------------------------------------------
# Ledger response schemas
# ---------------------------------------------------------------------------


class LedgerEntryResponse(BaseModel):
    """A single ledger entry."""

    id: uuid.UUID
    employee_id: uuid.UUID
    company_id: uuid.UUID
    leave_type: str
    transaction_type: TransactionType
    amount: Days
    balance_before: Days
    balance_after: Days
    leave_request_id: uuid.UUID | None
    custom_policy_id: uuid.UUID | None
    transaction_date: datetime
    sequence: int
    description: str
    is_backfilled: bool
    details_json: dict[str, Any] | None
    is_deleted: bool
    created_at: datetime


class LedgerListResponse(BaseModel):
    """Paginated ledger entries."""

    items: list[LedgerEntryResponse]
    total: int


class LedgerChainBreak(BaseModel):
    """An entry whose balances do not follow from its predecessor."""

    sequence: int
    expected_balance_before: Days
    actual_balance_before: Days
    expected_balance_after: Days
    actual_balance_after: Days


class LedgerVerificationResponse(BaseModel):
    """Result of replaying an (employee, leave type) ledger."""

    employee_id: uuid.UUID
    leave_type: str
    entry_count: int
    replayed_balance: Days | None
    is_valid: bool
    breaks: list[LedgerChainBreak]


# ---------------------------------------------------------------------------
# Opening balance request schema
# ---------------------------------------------------------------------------


class CreateOpeningBalanceRequest(BaseModel):
    """Request body for seeding a pair's ledger with an opening balance."""

    employee_id: uuid.UUID
    leave_type: LeaveTypeCode
    amount: NonNegativeDays
    description: str = Field(default="Opening balance", min_length=1, max_length=1000)

    @field_validator("leave_type", mode="before")
    @classmethod
    def _normalize_code(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value
