# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from leave_ledger.api.deps import ApproverDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.models.enums import LeaveRequestStatus
from leave_ledger.schemas.leave_request import (
    ApprovePayload,
    CreateLeaveRequestPayload,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    RejectPayload,
)
from leave_ledger.services import leave_request as leave_request_service

leave_requests_router = APIRouter(
    prefix="/companies/{company_id}/leave-requests",
    tags=["leave-requests"],
    dependencies=[Depends(validate_company_scope)],
)


@leave_requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_leave_request(
    payload: CreateLeaveRequestPayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Create a leave request."""
    return await leave_request_service.create_request(session, auth, payload)


@leave_requests_router.get("", response_model=LeaveRequestListResponse)
async def list_leave_requests(
    session: SessionDep,
    auth: AuthDep,
    status_filter: LeaveRequestStatus | None = Query(default=None, alias="status"),
    employee_id: uuid.UUID | None = Query(default=None),
    leave_type: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LeaveRequestListResponse:
    """List leave requests with optional filters."""
    return await leave_request_service.list_requests(
        session,
        auth,
        employee_id=employee_id,
        status=status_filter,
        leave_type=leave_type,
        offset=offset,
        limit=limit,
    )


@leave_requests_router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Get a single leave request."""
    return await leave_request_service.get_request(session, auth, request_id)


@leave_requests_router.post("/{request_id}/approve", response_model=LeaveRequestResponse)
async def approve_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: ApproverDep,
    payload: ApprovePayload | None = None,
) -> LeaveRequestResponse:
    """Approve a pending request and deduct its days."""
    return await leave_request_service.approve_request(session, auth, request_id, payload or ApprovePayload())


@leave_requests_router.post("/{request_id}/reject", response_model=LeaveRequestResponse)
async def reject_leave_request(
    request_id: uuid.UUID,
    payload: RejectPayload,
    session: SessionDep,
    auth: ApproverDep,
) -> LeaveRequestResponse:
    """Reject a pending request; a reason is required."""
    return await leave_request_service.reject_request(session, auth, request_id, payload)


@leave_requests_router.post("/{request_id}/cancel", response_model=LeaveRequestResponse)
async def cancel_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Cancel an approved request and restore its days."""
    return await leave_request_service.cancel_request(session, auth, request_id)


@leave_requests_router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> None:
    """Delete a pending or rejected request."""
    await leave_request_service.delete_request(session, auth, request_id)
