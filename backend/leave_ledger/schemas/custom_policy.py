# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from leave_ledger.schemas.types import Days, LeaveTypeCode, NonNegativeDays


class CreateCustomPolicyRequest(BaseModel):
    """Request body for creating a custom quota override."""

    name: str = Field(min_length=1, max_length=255)
    leave_type: LeaveTypeCode
    employee_ids: list[uuid.UUID] = Field(min_length=1)
    override_quota: NonNegativeDays

    @field_validator("leave_type", mode="before")
    @classmethod
    def _normalize_code(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _unique_employees(self) -> Self:
        if len(set(self.employee_ids)) != len(self.employee_ids):
            msg = "employee_ids must not contain duplicates"
            raise ValueError(msg)
        return self


class CustomPolicyResponse(BaseModel):
    """Response schema for a custom policy."""

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    leave_type: str
    override_quota: Days
    employee_ids: list[uuid.UUID]
    is_active: bool
    created_by: uuid.UUID
    created_at: datetime
    deactivated_at: datetime | None


class CustomPolicyListResponse(BaseModel):
    """Paginated list of custom policies."""

    items: list[CustomPolicyResponse]
    total: int
