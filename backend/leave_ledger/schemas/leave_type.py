# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from leave_ledger.schemas.types import Days, LeaveTypeCode, NonNegativeDays


class CreateLeaveTypeRequest(BaseModel):
    """Request body for registering a leave type."""

    code: LeaveTypeCode
    name: str = Field(min_length=1, max_length=255)
    default_annual_quota: NonNegativeDays
    is_paid: bool = True
    requires_approval: bool = True
    allow_negative: bool = False

    @field_validator("code", mode="before")
    @classmethod
    def _normalize_code(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class UpdateLeaveTypeRequest(BaseModel):
    """Partial update; the code is immutable and cannot be changed here."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    default_annual_quota: NonNegativeDays | None = None
    is_paid: bool | None = None
    requires_approval: bool | None = None
    allow_negative: bool | None = None
    is_active: bool | None = None


class LeaveTypeResponse(BaseModel):
    """Response schema for a leave type."""

    id: uuid.UUID
    company_id: uuid.UUID
    code: str
    name: str
    default_annual_quota: Days
    is_paid: bool
    requires_approval: bool
    allow_negative: bool
    is_active: bool
    created_at: datetime


class LeaveTypeListResponse(BaseModel):
    """List of leave types."""

    items: list[LeaveTypeResponse]
    total: int
