# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.balance import (
    BalanceListResponse,
    BalanceResponse,
    CreateOpeningBalanceRequest,
    LedgerEntryResponse,
    LedgerListResponse,
    LedgerVerificationResponse,
)
from leave_ledger.services import balance as balance_service
from leave_ledger.services import ledger as ledger_service

employee_balance_router = APIRouter(
    prefix="/companies/{company_id}/employees/{employee_id}/balances",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)

employee_ledger_router = APIRouter(
    prefix="/companies/{company_id}/employees/{employee_id}/ledger",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)

my_balance_router = APIRouter(
    prefix="/companies/{company_id}/me/balances",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)

opening_balance_router = APIRouter(
    prefix="/companies/{company_id}/opening-balances",
    tags=["balances"],
    dependencies=[Depends(validate_company_scope)],
)


@employee_balance_router.get("", response_model=BalanceListResponse)
async def get_employee_balances(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type: str | None = Query(default=None),
) -> BalanceListResponse:
    """Get balances for every leave type, or one when ``leave_type`` is given."""
    return await balance_service.get_employee_balances(session, auth, employee_id, leave_type)


@employee_balance_router.post("/{leave_type}/rebuild", response_model=BalanceResponse)
async def rebuild_employee_balance(
    employee_id: uuid.UUID,
    leave_type: str,
    session: SessionDep,
    auth: AdminDep,
) -> BalanceResponse:
    """Recompute the cached balance from the ledger (admin only)."""
    await ledger_service.rebuild_snapshot(session, auth, employee_id, leave_type)
    return await balance_service.get_balance(session, auth, employee_id, leave_type)


@employee_ledger_router.get("", response_model=LedgerListResponse)
async def get_employee_ledger(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LedgerListResponse:
    """Get paginated ledger entries for an employee, newest first."""
    return await ledger_service.list_entries(session, auth, employee_id, leave_type, offset, limit)


@employee_ledger_router.get("/verify", response_model=LedgerVerificationResponse)
async def verify_employee_ledger(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type: str = Query(),
) -> LedgerVerificationResponse:
    """Replay the ledger of one leave type and report broken links."""
    return await ledger_service.verify_chain(session, auth, employee_id, leave_type)


@my_balance_router.get("", response_model=BalanceListResponse)
async def get_my_balances(
    session: SessionDep,
    auth: AuthDep,
    leave_type: str | None = Query(default=None),
) -> BalanceListResponse:
    """Get the authenticated employee's balances."""
    return await balance_service.get_my_balances(session, auth, leave_type)


@opening_balance_router.post("", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_opening_balance(
    payload: CreateOpeningBalanceRequest,
    session: SessionDep,
    auth: AdminDep,
) -> LedgerEntryResponse:
    """Seed an employee's ledger for a leave type with an opening balance (admin only)."""
    return await ledger_service.post_opening_balance(session, auth, payload)
