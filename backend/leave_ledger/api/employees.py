# ruff: noqa: TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from leave_ledger.api.deps import AdminDep, AuthDep, validate_company_scope
from leave_ledger.schemas.employee import EmployeeListResponse, EmployeeResponse, UpsertEmployeeRequest
from leave_ledger.services.employee import EmployeeInfo, get_employee_service, require_employee

employees_router = APIRouter(
    prefix="/companies/{company_id}/employees",
    tags=["employees"],
    dependencies=[Depends(validate_company_scope)],
)


def _to_response(employee: EmployeeInfo) -> EmployeeResponse:
    return EmployeeResponse.model_validate(employee.model_dump())


@employees_router.put("/{employee_id}", response_model=EmployeeResponse)
async def upsert_employee(
    employee_id: uuid.UUID,
    payload: UpsertEmployeeRequest,
    auth: AdminDep,
) -> EmployeeResponse:
    """Create or update an employee in the in-memory directory (admin only)."""
    employee = EmployeeInfo(id=employee_id, company_id=auth.company_id, **payload.model_dump())
    get_employee_service().seed(employee)  # ty: ignore[unresolved-attribute]
    return _to_response(employee)


@employees_router.get("/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: uuid.UUID,
    auth: AuthDep,
) -> EmployeeResponse:
    """Get an employee from the directory."""
    return _to_response(await require_employee(auth.company_id, employee_id))


@employees_router.get("", response_model=EmployeeListResponse)
async def list_employees(auth: AuthDep) -> EmployeeListResponse:
    """List the company's employees."""
    employees = await get_employee_service().list_employees(auth.company_id)
    items = [_to_response(e) for e in sorted(employees, key=lambda e: e.employee_code)]
    return EmployeeListResponse(items=items, total=len(items))
