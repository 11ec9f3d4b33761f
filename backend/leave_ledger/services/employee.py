# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from leave_ledger.exceptions import NotFoundError


class EmployeeInfo(BaseModel):
    """Employee record from the Employee Directory."""

    id: uuid.UUID  # internal ledger key
    company_id: uuid.UUID
    user_id: uuid.UUID | None = None  # external identity from the auth layer
    employee_code: str  # e.g. "EMP-0256"
    first_name: str
    last_name: str
    email: str


@runtime_checkable
class EmployeeService(Protocol):
    """Interface for the Employee Directory."""

    async def get_employee(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch an employee. Returns None if not found."""
        ...

    async def get_employee_by_user_id(self, company_id: uuid.UUID, user_id: uuid.UUID) -> EmployeeInfo | None:
        """Map an authenticated user to their employee record."""
        ...

    async def list_employees(self, company_id: uuid.UUID) -> list[EmployeeInfo]:
        """List all employees for a company."""
        ...


class InMemoryEmployeeService:
    """In-memory stub implementation for development and tests."""

    def __init__(self) -> None:
        self._employees: dict[tuple[uuid.UUID, uuid.UUID], EmployeeInfo] = {}

    def seed(self, employee: EmployeeInfo) -> None:
        """Seed an employee for testing."""
        self._employees[(employee.company_id, employee.id)] = employee

    async def get_employee(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        return self._employees.get((company_id, employee_id))

    async def get_employee_by_user_id(self, company_id: uuid.UUID, user_id: uuid.UUID) -> EmployeeInfo | None:
        for employee in self._employees.values():
            if employee.company_id == company_id and employee.user_id == user_id:
                return employee
        return None

    async def list_employees(self, company_id: uuid.UUID) -> list[EmployeeInfo]:
        return [e for e in self._employees.values() if e.company_id == company_id]


_employee_service: EmployeeService = InMemoryEmployeeService()


def get_employee_service() -> EmployeeService:
    """Return the configured Employee Directory."""
    return _employee_service


def set_employee_service(service: EmployeeService) -> None:
    """Override the service (for testing or production wiring)."""
    global _employee_service
    _employee_service = service


async def require_employee(company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo:
    """Fetch an employee or raise NotFoundError."""
    employee = await get_employee_service().get_employee(company_id, employee_id)
    if employee is None:
        raise NotFoundError(f"Employee {employee_id} not found")
    return employee


async def resolve_current_employee(company_id: uuid.UUID, user_id: uuid.UUID) -> EmployeeInfo:
    """Map the authenticated user to the internal employee id used as ledger key."""
    employee = await get_employee_service().get_employee_by_user_id(company_id, user_id)
    if employee is None:
        raise NotFoundError(f"No employee record for user {user_id}")
    return employee
