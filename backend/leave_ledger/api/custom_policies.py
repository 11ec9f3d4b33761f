# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.custom_policy import (
    CreateCustomPolicyRequest,
    CustomPolicyListResponse,
    CustomPolicyResponse,
)
from leave_ledger.services import custom_policy as custom_policy_service

custom_policies_router = APIRouter(
    prefix="/companies/{company_id}/custom-policies",
    tags=["custom-policies"],
    dependencies=[Depends(validate_company_scope)],
)


@custom_policies_router.post("", response_model=CustomPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_custom_policy(
    payload: CreateCustomPolicyRequest,
    session: SessionDep,
    auth: AdminDep,
) -> CustomPolicyResponse:
    """Override a leave type's quota for a set of employees (admin only)."""
    return await custom_policy_service.create_policy(session, auth, payload)


@custom_policies_router.get("", response_model=CustomPolicyListResponse)
async def list_custom_policies(
    session: SessionDep,
    auth: AuthDep,
    leave_type: str | None = Query(default=None),
    active_only: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> CustomPolicyListResponse:
    """List custom policies."""
    return await custom_policy_service.list_policies(
        session, auth, leave_type=leave_type, active_only=active_only, offset=offset, limit=limit
    )


@custom_policies_router.get("/{policy_id}", response_model=CustomPolicyResponse)
async def get_custom_policy(
    policy_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> CustomPolicyResponse:
    """Get a single custom policy."""
    return await custom_policy_service.get_policy(session, auth, policy_id)


@custom_policies_router.post("/{policy_id}/deactivate", response_model=CustomPolicyResponse)
async def deactivate_custom_policy(
    policy_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
) -> CustomPolicyResponse:
    """Deactivate a custom policy (admin only). Posted adjustments stay in the ledger."""
    return await custom_policy_service.deactivate_policy(session, auth, policy_id)
