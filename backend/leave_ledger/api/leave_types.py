# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.leave_type import (
    CreateLeaveTypeRequest,
    LeaveTypeListResponse,
    LeaveTypeResponse,
    UpdateLeaveTypeRequest,
)
from leave_ledger.services import leave_type as leave_type_service

leave_types_router = APIRouter(
    prefix="/companies/{company_id}/leave-types",
    tags=["leave-types"],
    dependencies=[Depends(validate_company_scope)],
)


@leave_types_router.post("", response_model=LeaveTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_leave_type(
    payload: CreateLeaveTypeRequest,
    session: SessionDep,
    auth: AdminDep,
) -> LeaveTypeResponse:
    """Register a leave type (admin only)."""
    return await leave_type_service.create_leave_type(session, auth, payload)


@leave_types_router.get("", response_model=LeaveTypeListResponse)
async def list_leave_types(
    session: SessionDep,
    auth: AuthDep,
    active_only: bool = Query(default=False),
) -> LeaveTypeListResponse:
    """List the company's leave types."""
    return await leave_type_service.list_leave_types(session, auth, active_only=active_only)


@leave_types_router.get("/{code}", response_model=LeaveTypeResponse)
async def get_leave_type(
    code: str,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveTypeResponse:
    """Get a single leave type by code."""
    return await leave_type_service.get_leave_type(session, auth, code)


@leave_types_router.patch("/{code}", response_model=LeaveTypeResponse)
async def update_leave_type(
    code: str,
    payload: UpdateLeaveTypeRequest,
    session: SessionDep,
    auth: AdminDep,
) -> LeaveTypeResponse:
    """Update a leave type's settings (admin only)."""
    return await leave_type_service.update_leave_type(session, auth, code, payload)


@leave_types_router.delete("/{code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_leave_type(
    code: str,
    session: SessionDep,
    auth: AdminDep,
) -> None:
    """Soft-delete a leave type (admin only)."""
    await leave_type_service.delete_leave_type(session, auth, code)
