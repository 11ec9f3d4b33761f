# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from leave_ledger.exceptions import ConflictError, LedgerContentionError, NotFoundError, ValidationError
from leave_ledger.models.base import now_utc
from leave_ledger.models.enums import AuditAction, AuditEntityType, TransactionType
from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.models.leave_type import LeaveType
from leave_ledger.models.ledger import LeaveLedgerEntry
from leave_ledger.schemas.leave_type import LeaveTypeListResponse, LeaveTypeResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.notification import notify

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.leave_type import CreateLeaveTypeRequest, UpdateLeaveTypeRequest

logger = logging.getLogger(__name__)


def _build_leave_type_response(leave_type: LeaveType) -> LeaveTypeResponse:
    return LeaveTypeResponse(
        id=leave_type.id,
        company_id=leave_type.company_id,
        code=leave_type.code,
        name=leave_type.name,
        default_annual_quota=leave_type.default_annual_quota,
        is_paid=leave_type.is_paid,
        requires_approval=leave_type.requires_approval,
        allow_negative=leave_type.allow_negative,
        is_active=leave_type.is_active,
        created_at=leave_type.created_at,
    )


async def get_leave_type_or_404(
    session: AsyncSession,
    company_id: uuid.UUID,
    code: str,
    *,
    include_inactive: bool = False,
) -> LeaveType:
    """Fetch a non-deleted leave type by code.

    Inactive types still resolve historical balances, so callers on the read
    path pass ``include_inactive=True``.
    """
    query = select(LeaveType).where(
        col(LeaveType.company_id) == company_id,
        col(LeaveType.code) == code.lower(),
        col(LeaveType.is_deleted).is_(False),
    )
    if not include_inactive:
        query = query.where(col(LeaveType.is_active).is_(True))
    result = await session.execute(query)
    leave_type = result.scalar_one_or_none()
    if leave_type is None:
        raise NotFoundError(f"Leave type '{code}' not found")
    return leave_type


async def list_codes(session: AsyncSession, company_id: uuid.UUID) -> list[str]:
    """Codes of every non-deleted leave type of the company, active or not."""
    result = await session.execute(
        select(col(LeaveType.code))
        .where(col(LeaveType.company_id) == company_id, col(LeaveType.is_deleted).is_(False))
        .order_by(col(LeaveType.code))
    )
    return list(result.scalars().all())


async def _is_code_referenced(session: AsyncSession, company_id: uuid.UUID, code: str) -> bool:
    """Whether any ledger entry or leave request, deleted or not, carries the code."""
    for model in (LeaveLedgerEntry, LeaveRequest):
        result = await session.execute(
            select(col(model.id)).where(col(model.company_id) == company_id, col(model.leave_type) == code).limit(1)
        )
        if result.first() is not None:
            return True
    return False


async def _list_unoverridden_employees(session: AsyncSession, company_id: uuid.UUID, code: str) -> list[uuid.UUID]:
    """Employees with ledger history for the code whose quota follows the type default."""
    from leave_ledger.services.entitlement import find_active_policy

    result = await session.execute(
        select(col(LeaveLedgerEntry.employee_id))
        .where(
            col(LeaveLedgerEntry.company_id) == company_id,
            col(LeaveLedgerEntry.leave_type) == code,
            col(LeaveLedgerEntry.is_deleted).is_(False),
        )
        .distinct()
        .order_by(col(LeaveLedgerEntry.employee_id))
    )
    return [
        employee_id
        for employee_id in result.scalars().all()
        if await find_active_policy(session, company_id, employee_id, code) is None
    ]


async def create_leave_type(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateLeaveTypeRequest,
) -> LeaveTypeResponse:
    """Register a leave type for the company."""
    existing = await session.execute(
        select(LeaveType).where(
            col(LeaveType.company_id) == auth.company_id,
            col(LeaveType.code) == payload.code,
            col(LeaveType.is_deleted).is_(False),
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Leave type '{payload.code}' already exists for this company")
    # Ledger pairs are keyed by code; a new type must not inherit a deleted one's history.
    if await _is_code_referenced(session, auth.company_id, payload.code):
        raise ConflictError(f"Leave type code '{payload.code}' is referenced by existing leave history")

    leave_type = LeaveType(
        company_id=auth.company_id,
        code=payload.code,
        name=payload.name,
        default_annual_quota=payload.default_annual_quota,
        is_paid=payload.is_paid,
        requires_approval=payload.requires_approval,
        allow_negative=payload.allow_negative,
    )
    session.add(leave_type)
    await session.flush()

    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEAVE_TYPE,
        entity_id=leave_type.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(leave_type),
    )

    await session.commit()
    await session.refresh(leave_type)
    return _build_leave_type_response(leave_type)


async def get_leave_type(session: AsyncSession, auth: AuthContext, code: str) -> LeaveTypeResponse:
    """Fetch one leave type, active or not."""
    leave_type = await get_leave_type_or_404(session, auth.company_id, code, include_inactive=True)
    return _build_leave_type_response(leave_type)


async def list_leave_types(
    session: AsyncSession,
    auth: AuthContext,
    *,
    active_only: bool = False,
) -> LeaveTypeListResponse:
    """List the company's non-deleted leave types ordered by code."""
    filters = [col(LeaveType.company_id) == auth.company_id, col(LeaveType.is_deleted).is_(False)]
    if active_only:
        filters.append(col(LeaveType.is_active).is_(True))

    count_result = await session.execute(select(func.count()).select_from(LeaveType).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(select(LeaveType).where(*filters).order_by(col(LeaveType.code)))
    return LeaveTypeListResponse(
        items=[_build_leave_type_response(t) for t in result.scalars().all()],
        total=total,
    )


async def update_leave_type(
    session: AsyncSession,
    auth: AuthContext,
    code: str,
    payload: UpdateLeaveTypeRequest,
) -> LeaveTypeResponse:
    """Update registry settings. The code itself never changes.

    A new ``default_annual_quota`` is carried into the ledger: every employee
    with history for the type and no active custom policy gets one
    ``custom_adjustment`` of (new - old) in the same unit of work, so days
    already used stay used.
    """
    # Deferred: the ledger resolves leave types through this module.
    from leave_ledger.services.ledger import append_entry

    leave_type = await get_leave_type_or_404(session, auth.company_id, code, include_inactive=True)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    for field, value in changes.items():
        if value is None:
            raise ValidationError(f"{field} cannot be null")

    previous_quota: Decimal = leave_type.default_annual_quota
    delta = Decimal(changes.get("default_annual_quota", previous_quota)) - previous_quota
    adjusted: list[uuid.UUID] = []
    try:
        before = model_to_audit_dict(leave_type)
        for field, value in changes.items():
            setattr(leave_type, field, value)
        await session.flush()

        if delta != 0:
            new_quota = leave_type.default_annual_quota
            for employee_id in await _list_unoverridden_employees(session, auth.company_id, leave_type.code):
                await append_entry(
                    session,
                    auth,
                    employee_id=employee_id,
                    leave_type=leave_type.code,
                    transaction_type=TransactionType.CUSTOM_ADJUSTMENT,
                    amount=delta,
                    description=f"Default quota for '{leave_type.code}': {previous_quota} -> {new_quota}",
                    details={"previous_quota": previous_quota, "default_quota": new_quota},
                )
                adjusted.append(employee_id)

        after = model_to_audit_dict(leave_type)
        if adjusted:
            after["adjusted_employee_ids"] = [str(e) for e in adjusted]
        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.LEAVE_TYPE,
            entity_id=leave_type.id,
            action=AuditAction.UPDATE,
            before_json=before,
            after_json=after,
        )
        await session.commit()
    except (IntegrityError, LedgerContentionError) as exc:
        await session.rollback()
        raise ConflictError(f"Concurrent change to '{code}' entitlements, retry the request") from exc
    except Exception:
        await session.rollback()
        raise

    await session.refresh(leave_type)
    if adjusted:
        logger.info(
            "Default quota of %s for company=%s changed by %s; adjusted %d employees",
            leave_type.code,
            auth.company_id,
            delta,
            len(adjusted),
        )
    for employee_id in adjusted:
        await notify(
            auth.company_id,
            "leave:balance_updated",
            {"employee_id": str(employee_id), "leave_type": leave_type.code},
        )
    return _build_leave_type_response(leave_type)


async def delete_leave_type(session: AsyncSession, auth: AuthContext, code: str) -> None:
    """Soft-delete a leave type. Ledger history referencing its code is kept."""
    leave_type = await get_leave_type_or_404(session, auth.company_id, code, include_inactive=True)
    before = model_to_audit_dict(leave_type)

    leave_type.is_deleted = True
    leave_type.is_active = False
    leave_type.deleted_at = now_utc()
    await session.flush()

    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEAVE_TYPE,
        entity_id=leave_type.id,
        action=AuditAction.DELETE,
        before_json=before,
        after_json=model_to_audit_dict(leave_type),
    )
    await session.commit()
