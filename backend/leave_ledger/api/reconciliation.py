# ruff: noqa: B008, TC001, TC003
"""Admin trigger for ledger reconciliation."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from leave_ledger.api.deps import AdminDep, validate_company_scope
from leave_ledger.db import SessionDep
from leave_ledger.schemas.reconciliation import ReconciliationRunResponse
from leave_ledger.services.reconciliation import run_reconciliation

reconciliation_router = APIRouter(
    prefix="/companies/{company_id}/reconciliation",
    tags=["reconciliation"],
    dependencies=[Depends(validate_company_scope)],
)


@reconciliation_router.post("/run", response_model=ReconciliationRunResponse)
async def trigger_reconciliation(
    session: SessionDep,
    auth: AdminDep,
    employee_id: uuid.UUID | None = Query(default=None),
) -> ReconciliationRunResponse:
    """Backfill missing ledger entries for the authenticated company (admin only).

    Idempotent: a second run finds nothing to backfill.
    """
    result = await run_reconciliation(session, company_id=auth.company_id, employee_id=employee_id)
    return ReconciliationRunResponse(
        companies=result.companies,
        processed=result.processed,
        backfilled=result.backfilled,
        skipped=result.skipped,
        errors=result.errors,
    )
