# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from leave_ledger.config import get_settings
from leave_ledger.exceptions import (
    ConflictError,
    ForbiddenError,
    LedgerContentionError,
    NotFoundError,
    ValidationError,
)
from leave_ledger.models.base import now_utc
from leave_ledger.models.enums import AuditAction, AuditEntityType, LeaveRequestStatus, TransactionType
from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.schemas.leave_request import LeaveRequestListResponse, LeaveRequestResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.balance import get_balance
from leave_ledger.services.employee import get_employee_service, require_employee
from leave_ledger.services.leave_type import get_leave_type_or_404
from leave_ledger.services.ledger import append_entry, lock_tenant_writes
from leave_ledger.services.notification import notify

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.models.leave_type import LeaveType
    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.leave_request import ApprovePayload, CreateLeaveRequestPayload, RejectPayload

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (LeaveRequestStatus.PENDING, LeaveRequestStatus.APPROVED)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: LeaveRequest) -> LeaveRequestResponse:
    """Map a LeaveRequest model to its response schema."""
    return LeaveRequestResponse(
        id=request.id,
        company_id=request.company_id,
        employee_id=request.employee_id,
        leave_type=request.leave_type,
        start_date=request.start_date,
        end_date=request.end_date,
        duration=request.duration,
        reason=request.reason,
        status=LeaveRequestStatus(request.status),
        balance_at_request=request.balance_at_request,
        approved_by=request.approved_by,
        approved_at=request.approved_at,
        approval_comment=request.approval_comment,
        rejected_by=request.rejected_by,
        rejected_at=request.rejected_at,
        rejection_reason=request.rejection_reason,
        cancelled_by=request.cancelled_by,
        cancelled_at=request.cancelled_at,
        created_by=request.created_by,
        created_at=request.created_at,
    )


async def _get_request_or_404(
    session: AsyncSession,
    company_id: uuid.UUID,
    request_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> LeaveRequest:
    """Fetch a non-deleted leave request, optionally locking the row."""
    query = select(LeaveRequest).where(
        col(LeaveRequest.id) == request_id,
        col(LeaveRequest.company_id) == company_id,
        col(LeaveRequest.is_deleted).is_(False),
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query.execution_options(populate_existing=True))
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(f"Leave request {request_id} not found")
    return request


async def _find_overlap(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    start_date: date,
    end_date: date,
) -> LeaveRequest | None:
    """Return a pending or approved request whose inclusive range intersects the given one."""
    result = await session.execute(
        select(LeaveRequest)
        .where(
            col(LeaveRequest.company_id) == company_id,
            col(LeaveRequest.employee_id) == employee_id,
            col(LeaveRequest.is_deleted).is_(False),
            col(LeaveRequest.status).in_([s.value for s in ACTIVE_STATUSES]),
            col(LeaveRequest.start_date) <= end_date,
            col(LeaveRequest.end_date) >= start_date,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _is_own_request(auth: AuthContext, request: LeaveRequest) -> bool:
    employee = await get_employee_service().get_employee(auth.company_id, request.employee_id)
    return employee is not None and employee.user_id == auth.user_id


def _require_approver(auth: AuthContext) -> None:
    if not auth.is_approver:
        raise ForbiddenError("Only admin, hr or manager roles can act on leave requests")


def _min_balance(leave_type: LeaveType) -> Decimal | None:
    return None if leave_type.allow_negative else Decimal(0)


async def _with_ledger_retries(
    session: AsyncSession,
    operation: Callable[[], Awaitable[LeaveRequest]],
    *,
    action: str,
    subject: str,
) -> LeaveRequest:
    """Run a ledger-writing transition, retrying when another writer moved the tip.

    Every attempt starts from a clean transaction; any other failure rolls
    back and propagates.
    """
    attempts = get_settings().ledger_max_retries
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except LedgerContentionError:
            await session.rollback()
            logger.warning("Ledger contention on %s of %s (attempt %d/%d)", action, subject, attempt, attempts)
        except Exception:
            await session.rollback()
            raise
    raise ConflictError(f"Could not {action} {subject}: balance changed concurrently, retry")


async def _approve_once(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    comment: str | None,
) -> LeaveRequest:
    request = await _get_request_or_404(session, auth.company_id, request_id, for_update=True)
    if request.status != LeaveRequestStatus.PENDING:
        raise ConflictError(f"Cannot approve a request with status '{request.status}'")

    leave_type = await get_leave_type_or_404(session, auth.company_id, request.leave_type, include_inactive=True)
    before = model_to_audit_dict(request)

    request.status = LeaveRequestStatus.APPROVED
    request.approved_by = auth.user_id
    request.approved_at = now_utc()
    request.approval_comment = comment

    await append_entry(
        session,
        auth,
        employee_id=request.employee_id,
        leave_type=request.leave_type,
        transaction_type=TransactionType.USED,
        amount=-request.duration,
        leave_request_id=request.id,
        description=f"Leave approved: {request.start_date} to {request.end_date}",
        min_balance=_min_balance(leave_type),
    )
    await session.flush()

    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEAVE_REQUEST,
        entity_id=request.id,
        action=AuditAction.APPROVE,
        before_json=before,
        after_json=model_to_audit_dict(request),
    )
    await session.commit()
    await session.refresh(request)
    return request


async def _cancel_once(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> LeaveRequest:
    request = await _get_request_or_404(session, auth.company_id, request_id, for_update=True)
    if not auth.is_approver and not await _is_own_request(auth, request):
        raise ForbiddenError("Only the requesting employee or an approver can cancel this request")
    if request.status != LeaveRequestStatus.APPROVED:
        raise ConflictError(f"Cannot cancel a request with status '{request.status}'")

    before = model_to_audit_dict(request)
    request.status = LeaveRequestStatus.CANCELLED
    request.cancelled_by = auth.user_id
    request.cancelled_at = now_utc()

    await append_entry(
        session,
        auth,
        employee_id=request.employee_id,
        leave_type=request.leave_type,
        transaction_type=TransactionType.RESTORED,
        amount=request.duration,
        leave_request_id=request.id,
        description=f"Leave cancelled: {request.start_date} to {request.end_date}",
    )
    await session.flush()

    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEAVE_REQUEST,
        entity_id=request.id,
        action=AuditAction.CANCEL,
        before_json=before,
        after_json=model_to_audit_dict(request),
    )
    await session.commit()
    await session.refresh(request)
    return request


async def _notify_transition(request: LeaveRequest, event: str) -> None:
    payload = {
        "request_id": str(request.id),
        "employee_id": str(request.employee_id),
        "leave_type": request.leave_type,
        "status": str(request.status),
    }
    await notify(request.company_id, event, payload)
    if event in ("leave:approved", "leave:cancelled"):
        await notify(request.company_id, "leave:balance_updated", payload)


async def _create_once(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateLeaveRequestPayload,
    *,
    leave_type: str,
    auto_approve: bool,
    min_balance: Decimal | None,
) -> LeaveRequest:
    # Serializes with concurrent creates and approvals before the overlap check.
    await lock_tenant_writes(session, auth.company_id)
    overlap = await _find_overlap(session, auth.company_id, payload.employee_id, payload.start_date, payload.end_date)
    if overlap is not None:
        raise ConflictError(
            f"Dates overlap with {overlap.status} request {overlap.id} ({overlap.start_date} to {overlap.end_date})"
        )

    balance = await get_balance(session, auth, payload.employee_id, leave_type)
    request = LeaveRequest(
        company_id=auth.company_id,
        employee_id=payload.employee_id,
        leave_type=leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        duration=payload.duration if payload.duration is not None else Decimal(payload.span_days),
        reason=payload.reason,
        balance_at_request=balance.balance,
        created_by=auth.user_id,
    )
    session.add(request)
    await session.flush()

    await write_audit_log(
        session,
        auth,
        entity_type=AuditEntityType.LEAVE_REQUEST,
        entity_id=request.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(request),
    )

    if auto_approve:
        request.status = LeaveRequestStatus.APPROVED
        request.approved_by = auth.user_id
        request.approved_at = now_utc()
        request.approval_comment = "Auto-approved"
        await append_entry(
            session,
            auth,
            employee_id=request.employee_id,
            leave_type=leave_type,
            transaction_type=TransactionType.USED,
            amount=-request.duration,
            leave_request_id=request.id,
            description=f"Leave approved: {request.start_date} to {request.end_date}",
            min_balance=min_balance,
        )
        await session.flush()
        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.LEAVE_REQUEST,
            entity_id=request.id,
            action=AuditAction.APPROVE,
            after_json=model_to_audit_dict(request),
        )

    await session.commit()
    await session.refresh(request)
    return request


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_request(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateLeaveRequestPayload,
) -> LeaveRequestResponse:
    """Create a pending leave request.

    No ledger effect; ``balance_at_request`` records the balance seen at
    creation time. A type that does not require approval is approved in the
    same unit of work, posting its ``used`` entry before the commit.

    Callers without an approver role may only file for their own employee record.
    """
    employee = await require_employee(auth.company_id, payload.employee_id)
    if not auth.is_approver and employee.user_id != auth.user_id:
        raise ForbiddenError("Employees can only request leave for themselves")
    leave_type = await get_leave_type_or_404(session, auth.company_id, payload.leave_type, include_inactive=True)
    if not leave_type.is_active:
        raise ValidationError(f"Leave type '{leave_type.code}' is not active")

    # Plain values: a retried attempt starts after a rollback that expires loaded rows.
    code = leave_type.code
    auto_approve = not leave_type.requires_approval
    min_balance = _min_balance(leave_type)

    request = await _with_ledger_retries(
        session,
        lambda: _create_once(
            session, auth, payload, leave_type=code, auto_approve=auto_approve, min_balance=min_balance
        ),
        action="create",
        subject=f"leave request for employee {payload.employee_id}",
    )
    logger.info(
        "Leave request %s created for employee=%s leave_type=%s duration=%s status=%s",
        request.id,
        request.employee_id,
        request.leave_type,
        request.duration,
        request.status,
    )
    await _notify_transition(request, "leave:created")
    if auto_approve:
        await _notify_transition(request, "leave:approved")
    return _build_request_response(request)


async def approve_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: ApprovePayload,
) -> LeaveRequestResponse:
    """Approve a pending request and post its ``used`` ledger entry in one unit of work.

    When the type does not allow a negative balance, approval fails with a
    conflict instead of overdrawing; the request stays pending.
    """
    _require_approver(auth)
    request = await _with_ledger_retries(
        session,
        lambda: _approve_once(session, auth, request_id, payload.comment),
        action="approve",
        subject=f"leave request {request_id}",
    )
    logger.info("Leave request %s approved by %s", request.id, auth.user_id)
    await _notify_transition(request, "leave:approved")
    return _build_request_response(request)


async def reject_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: RejectPayload,
) -> LeaveRequestResponse:
    """Reject a pending request. Balances are untouched."""
    _require_approver(auth)
    try:
        request = await _get_request_or_404(session, auth.company_id, request_id, for_update=True)
        if request.status != LeaveRequestStatus.PENDING:
            raise ConflictError(f"Cannot reject a request with status '{request.status}'")

        before = model_to_audit_dict(request)
        request.status = LeaveRequestStatus.REJECTED
        request.rejected_by = auth.user_id
        request.rejected_at = now_utc()
        request.rejection_reason = payload.reason
        await session.flush()

        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.LEAVE_REQUEST,
            entity_id=request.id,
            action=AuditAction.REJECT,
            before_json=before,
            after_json=model_to_audit_dict(request),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(request)
    logger.info("Leave request %s rejected by %s", request.id, auth.user_id)
    await _notify_transition(request, "leave:rejected")
    return _build_request_response(request)


async def cancel_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> LeaveRequestResponse:
    """Cancel an approved request and restore its days through a ``restored`` entry."""
    request = await _with_ledger_retries(
        session,
        lambda: _cancel_once(session, auth, request_id),
        action="cancel",
        subject=f"leave request {request_id}",
    )
    logger.info("Leave request %s cancelled by %s", request.id, auth.user_id)
    await _notify_transition(request, "leave:cancelled")
    return _build_request_response(request)


async def delete_request(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> None:
    """Soft-delete a pending or rejected request.

    Approved requests hold a ledger entry and must be cancelled instead.
    """
    try:
        request = await _get_request_or_404(session, auth.company_id, request_id, for_update=True)
        if not auth.is_approver and not await _is_own_request(auth, request):
            raise ForbiddenError("Only the requesting employee or an approver can delete this request")
        if request.status == LeaveRequestStatus.APPROVED:
            raise ConflictError("Cannot delete an approved request, cancel it instead")

        before = model_to_audit_dict(request)
        request.is_deleted = True
        request.deleted_at = now_utc()
        await session.flush()

        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.LEAVE_REQUEST,
            entity_id=request.id,
            action=AuditAction.DELETE,
            before_json=before,
            after_json=model_to_audit_dict(request),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Leave request %s deleted by %s", request_id, auth.user_id)


async def get_request(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> LeaveRequestResponse:
    """Fetch a single leave request."""
    request = await _get_request_or_404(session, auth.company_id, request_id)
    return _build_request_response(request)


async def list_requests(
    session: AsyncSession,
    auth: AuthContext,
    *,
    employee_id: uuid.UUID | None = None,
    status: LeaveRequestStatus | None = None,
    leave_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LeaveRequestListResponse:
    """List non-deleted requests, newest first."""
    filters = [col(LeaveRequest.company_id) == auth.company_id, col(LeaveRequest.is_deleted).is_(False)]
    if employee_id is not None:
        filters.append(col(LeaveRequest.employee_id) == employee_id)
    if status is not None:
        filters.append(col(LeaveRequest.status) == status.value)
    if leave_type is not None:
        filters.append(col(LeaveRequest.leave_type) == leave_type.lower())

    count_result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(LeaveRequest)
        .where(*filters)
        .order_by(col(LeaveRequest.created_at).desc(), col(LeaveRequest.id))
        .offset(offset)
        .limit(limit)
    )
    return LeaveRequestListResponse(
        items=[_build_request_response(r) for r in result.scalars().all()],
        total=total,
    )
