# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.models.balance import LeaveBalanceSnapshot
from leave_ledger.schemas.balance import BalanceListResponse, BalanceResponse
from leave_ledger.services.employee import require_employee, resolve_current_employee
from leave_ledger.services.entitlement import resolve_effective_quota
from leave_ledger.services.leave_type import get_leave_type_or_404, list_codes
from leave_ledger.services.ledger import get_latest_entry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.models.ledger import LeaveLedgerEntry
    from leave_ledger.schemas.auth import AuthContext

logger = logging.getLogger(__name__)


async def _get_snapshot(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> LeaveBalanceSnapshot | None:
    result = await session.execute(
        select(LeaveBalanceSnapshot)
        .where(
            col(LeaveBalanceSnapshot.company_id) == company_id,
            col(LeaveBalanceSnapshot.employee_id) == employee_id,
            col(LeaveBalanceSnapshot.leave_type) == leave_type,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _is_consistent(
    snapshot: LeaveBalanceSnapshot | None,
    latest: LeaveLedgerEntry | None,
    total: Decimal,
) -> bool:
    if snapshot is None:
        return latest is None
    if latest is None:
        return snapshot.last_sequence is None
    return (
        snapshot.last_sequence == latest.sequence
        and snapshot.balance_days == latest.balance_after
        and snapshot.used_days == total - latest.balance_after
    )


async def get_balance(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str,
) -> BalanceResponse:
    """Resolve {total, used, balance} for one (employee, leave type) pair.

    The ledger is authoritative: balance is the latest entry's balance_after,
    or the effective quota when the pair has no history. The snapshot is only
    compared against it to flag drift.
    """
    code = leave_type.lower()
    quota = await resolve_effective_quota(session, auth.company_id, employee_id, code)
    latest = await get_latest_entry(session, auth.company_id, employee_id, code)

    total = quota.total
    balance = latest.balance_after if latest is not None else total
    used = total - balance

    snapshot = await _get_snapshot(session, auth.company_id, employee_id, code)
    is_consistent = _is_consistent(snapshot, latest, total)
    if not is_consistent:
        logger.warning(
            "Balance snapshot disagrees with ledger for company=%s employee=%s leave_type=%s",
            auth.company_id,
            employee_id,
            code,
        )

    return BalanceResponse(
        leave_type=code,
        total=total,
        used=used,
        balance=balance,
        has_custom_policy=quota.policy is not None,
        custom_policy_id=quota.policy_id,
        is_consistent=is_consistent,
    )


async def get_employee_balances(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str | None = None,
) -> BalanceListResponse:
    """Balances for every registered leave type, or just one when ``leave_type`` is given."""
    await require_employee(auth.company_id, employee_id)

    if leave_type is not None:
        registered = await get_leave_type_or_404(session, auth.company_id, leave_type, include_inactive=True)
        codes = [registered.code]
    else:
        codes = await list_codes(session, auth.company_id)

    items = [await get_balance(session, auth, employee_id, code) for code in codes]
    return BalanceListResponse(employee_id=employee_id, items=items, total=len(items))


async def get_my_balances(
    session: AsyncSession,
    auth: AuthContext,
    leave_type: str | None = None,
) -> BalanceListResponse:
    """Balances for the employee mapped to the authenticated user."""
    employee = await resolve_current_employee(auth.company_id, auth.user_id)
    return await get_employee_balances(session, auth, employee.id, leave_type)
