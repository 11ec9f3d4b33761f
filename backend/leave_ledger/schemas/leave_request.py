# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from leave_ledger.models.enums import LeaveRequestStatus
from leave_ledger.schemas.types import Days, LeaveTypeCode, PositiveDays

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class CreateLeaveRequestPayload(BaseModel):
    """Request body for creating a leave request.

    ``duration`` defaults to the inclusive number of calendar days in the range.
    """

    employee_id: uuid.UUID
    leave_type: LeaveTypeCode
    start_date: date
    end_date: date
    duration: PositiveDays | None = None
    reason: str | None = Field(default=None, max_length=1000)

    @field_validator("leave_type", mode="before")
    @classmethod
    def _normalize_code(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must not be before start_date"
            raise ValueError(msg)
        if self.duration is not None and self.duration > self.span_days:
            msg = "duration cannot exceed the number of days in the range"
            raise ValueError(msg)
        return self

    @property
    def span_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class ApprovePayload(BaseModel):
    """Request body for approve actions."""

    comment: str | None = Field(default=None, max_length=1000)


class RejectPayload(BaseModel):
    """Request body for reject actions; a reason is mandatory."""

    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "Rejection reason is required"
            raise ValueError(msg)
        return value.strip()


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(BaseModel):
    """Response schema for a single leave request."""

    id: uuid.UUID
    company_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    duration: Days
    reason: str | None
    status: LeaveRequestStatus
    balance_at_request: Days | None
    approved_by: uuid.UUID | None
    approved_at: datetime | None
    approval_comment: str | None
    rejected_by: uuid.UUID | None
    rejected_at: datetime | None
    rejection_reason: str | None
    cancelled_by: uuid.UUID | None
    cancelled_at: datetime | None
    created_by: uuid.UUID
    created_at: datetime


class LeaveRequestListResponse(BaseModel):
    """Paginated list of leave requests."""

    items: list[LeaveRequestResponse]
    total: int
