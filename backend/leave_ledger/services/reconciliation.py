"""Reconciliation of the ledger against request and policy history.

Finds approved or cancelled leave requests, and active custom policy
memberships, whose ledger entries are missing and appends them at the
current tip, flagged as backfilled. Safe to re-run: anything already
reconciled is skipped.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, union
from sqlmodel import col

from leave_ledger.models.custom_policy import CustomLeavePolicy, CustomLeavePolicyMember
from leave_ledger.models.enums import AuditAction, AuditEntityType, LeaveRequestStatus, TransactionType
from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.models.ledger import LeaveLedgerEntry
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.leave_type import get_leave_type_or_404
from leave_ledger.services.ledger import append_entry, find_request_entry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = uuid.UUID(int=0)

BACKFILL_SUFFIX = "(backfilled)"


@dataclass
class ReconciliationRunResult:
    """Result of a reconciliation run."""

    companies: list[uuid.UUID] = field(default_factory=list)
    processed: int = 0
    backfilled: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict[str, object]] = field(default_factory=list)


def _system_auth(company_id: uuid.UUID) -> AuthContext:
    return AuthContext(company_id=company_id, user_id=SYSTEM_ACTOR, role="system")


async def _find_companies(session: AsyncSession) -> list[uuid.UUID]:
    """Tenants that have anything to reconcile."""
    query = union(
        select(col(LeaveRequest.company_id)).where(
            col(LeaveRequest.status).in_([LeaveRequestStatus.APPROVED.value, LeaveRequestStatus.CANCELLED.value]),
            col(LeaveRequest.is_deleted).is_(False),
        ),
        select(col(CustomLeavePolicyMember.company_id)).where(col(CustomLeavePolicyMember.is_active).is_(True)),
    )
    result = await session.execute(query)
    return sorted(result.scalars().all(), key=str)


async def _find_settled_requests(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID | None,
) -> list[Any]:
    """Approved or cancelled requests of one tenant, as plain rows."""
    filters = [
        col(LeaveRequest.company_id) == company_id,
        col(LeaveRequest.is_deleted).is_(False),
        col(LeaveRequest.status).in_([LeaveRequestStatus.APPROVED.value, LeaveRequestStatus.CANCELLED.value]),
    ]
    if employee_id is not None:
        filters.append(col(LeaveRequest.employee_id) == employee_id)

    result = await session.execute(
        select(
            col(LeaveRequest.id),
            col(LeaveRequest.employee_id),
            col(LeaveRequest.leave_type),
            col(LeaveRequest.status),
            col(LeaveRequest.duration),
            col(LeaveRequest.start_date),
            col(LeaveRequest.end_date),
        )
        .where(*filters)
        .order_by(col(LeaveRequest.created_at), col(LeaveRequest.id))
    )
    return list(result.all())


async def _find_active_members(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID | None,
) -> list[Any]:
    """Active policy memberships of one tenant, as plain rows."""
    filters = [
        col(CustomLeavePolicyMember.company_id) == company_id,
        col(CustomLeavePolicyMember.is_active).is_(True),
        col(CustomLeavePolicy.is_active).is_(True),
    ]
    if employee_id is not None:
        filters.append(col(CustomLeavePolicyMember.employee_id) == employee_id)

    result = await session.execute(
        select(
            col(CustomLeavePolicy.id).label("policy_id"),
            col(CustomLeavePolicy.name),
            col(CustomLeavePolicy.override_quota),
            col(CustomLeavePolicyMember.employee_id),
            col(CustomLeavePolicyMember.leave_type),
            col(CustomLeavePolicyMember.previous_quota),
        )
        .join(CustomLeavePolicyMember, col(CustomLeavePolicyMember.policy_id) == col(CustomLeavePolicy.id))
        .where(*filters)
        .order_by(col(CustomLeavePolicy.created_at), col(CustomLeavePolicyMember.employee_id))
    )
    return list(result.all())


async def _has_policy_entry(
    session: AsyncSession,
    company_id: uuid.UUID,
    policy_id: uuid.UUID,
    employee_id: uuid.UUID,
) -> bool:
    result = await session.execute(
        select(col(LeaveLedgerEntry.id)).where(
            col(LeaveLedgerEntry.company_id) == company_id,
            col(LeaveLedgerEntry.custom_policy_id) == policy_id,
            col(LeaveLedgerEntry.employee_id) == employee_id,
            col(LeaveLedgerEntry.is_deleted).is_(False),
        )
    )
    return result.first() is not None


async def _audit_backfill(session: AsyncSession, auth: AuthContext, entry: LeaveLedgerEntry) -> None:
    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEDGER_ENTRY,
        entity_id=entry.id,
        action=AuditAction.BACKFILL,
        after_json=model_to_audit_dict(entry),
    )


# ---------------------------------------------------------------------------
# Per-item reconciliation
# ---------------------------------------------------------------------------


async def _reconcile_policy_member(
    session: AsyncSession,
    auth: AuthContext,
    member: Any,
    result: ReconciliationRunResult,
) -> None:
    if await _has_policy_entry(session, auth.company_id, member.policy_id, member.employee_id):
        result.skipped += 1
        return

    if member.previous_quota is not None:
        previous_quota = Decimal(member.previous_quota)
    else:
        # Rows written before the column existed: assume the type default was in effect.
        registered = await get_leave_type_or_404(session, auth.company_id, member.leave_type, include_inactive=True)
        previous_quota = registered.default_annual_quota
    amount = Decimal(member.override_quota) - previous_quota

    entry = await append_entry(
        session,
        auth,
        employee_id=member.employee_id,
        leave_type=member.leave_type,
        transaction_type=TransactionType.CUSTOM_ADJUSTMENT,
        amount=amount,
        custom_policy_id=member.policy_id,
        description=f"Custom policy '{member.name}': quota {previous_quota} -> {member.override_quota} {BACKFILL_SUFFIX}",
        is_backfilled=True,
        details={"previous_quota": previous_quota, "override_quota": member.override_quota},
        opening_quota=previous_quota,
    )
    await _audit_backfill(session, auth, entry)
    await session.commit()

    result.backfilled += 1
    result.details.append(
        {
            "company_id": str(auth.company_id),
            "employee_id": str(member.employee_id),
            "custom_policy_id": str(member.policy_id),
            "transaction_type": TransactionType.CUSTOM_ADJUSTMENT.value,
            "amount": str(amount),
        }
    )


async def _reconcile_request(
    session: AsyncSession,
    auth: AuthContext,
    request: Any,
    result: ReconciliationRunResult,
) -> None:
    expected = [(TransactionType.USED, -Decimal(request.duration), "Leave approved")]
    if request.status == LeaveRequestStatus.CANCELLED:
        expected.append((TransactionType.RESTORED, Decimal(request.duration), "Leave cancelled"))

    missing = [
        item
        for item in expected
        if await find_request_entry(session, auth.company_id, request.id, item[0]) is None
    ]
    if not missing:
        result.skipped += 1
        return

    for transaction_type, amount, label in missing:
        entry = await append_entry(
            session,
            auth,
            employee_id=request.employee_id,
            leave_type=request.leave_type,
            transaction_type=transaction_type,
            amount=amount,
            leave_request_id=request.id,
            description=f"{label}: {request.start_date} to {request.end_date} {BACKFILL_SUFFIX}",
            is_backfilled=True,
        )
        await _audit_backfill(session, auth, entry)
    # One commit per request keeps the job restartable.
    await session.commit()

    result.backfilled += len(missing)
    for transaction_type, amount, _ in missing:
        result.details.append(
            {
                "company_id": str(auth.company_id),
                "employee_id": str(request.employee_id),
                "leave_request_id": str(request.id),
                "transaction_type": transaction_type.value,
                "amount": str(amount),
            }
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_reconciliation(
    session: AsyncSession,
    *,
    company_id: uuid.UUID | None = None,
    employee_id: uuid.UUID | None = None,
) -> ReconciliationRunResult:
    """Backfill missing ledger entries, one tenant at a time.

    Policy memberships are reconciled before requests so that a pair's first
    entry starts from the default quota. Individual failures are logged,
    counted and rolled back without stopping the run.
    """
    companies = [company_id] if company_id is not None else await _find_companies(session)
    result = ReconciliationRunResult(companies=list(companies))

    for cid in companies:
        auth = _system_auth(cid)

        for member in await _find_active_members(session, cid, employee_id):
            result.processed += 1
            try:
                await _reconcile_policy_member(session, auth, member, result)
            except Exception:
                await session.rollback()
                logger.exception(
                    "Reconciliation failed for company=%s policy=%s employee=%s",
                    cid,
                    member.policy_id,
                    member.employee_id,
                )
                result.errors += 1

        for request in await _find_settled_requests(session, cid, employee_id):
            result.processed += 1
            try:
                await _reconcile_request(session, auth, request, result)
            except Exception:
                await session.rollback()
                logger.exception("Reconciliation failed for company=%s request=%s", cid, request.id)
                result.errors += 1

        # Close the read transaction before moving to the next tenant.
        await session.commit()

    logger.info(
        "Reconciliation complete: companies=%d processed=%d backfilled=%d skipped=%d errors=%d",
        len(result.companies),
        result.processed,
        result.backfilled,
        result.skipped,
        result.errors,
    )
    return result
