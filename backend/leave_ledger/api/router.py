from fastapi import APIRouter

from leave_ledger.api.balances import (
    employee_balance_router,
    employee_ledger_router,
    my_balance_router,
    opening_balance_router,
)
from leave_ledger.api.custom_policies import custom_policies_router
from leave_ledger.api.employees import employees_router
from leave_ledger.api.leave_requests import leave_requests_router
from leave_ledger.api.leave_types import leave_types_router
from leave_ledger.api.reconciliation import reconciliation_router

api_router = APIRouter()
api_router.include_router(leave_types_router)
api_router.include_router(custom_policies_router)
api_router.include_router(leave_requests_router)
api_router.include_router(employee_balance_router)
api_router.include_router(employee_ledger_router)
api_router.include_router(my_balance_router)
api_router.include_router(opening_balance_router)
api_router.include_router(reconciliation_router)
api_router.include_router(employees_router)
