# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from leave_ledger.exceptions import ConflictError, LedgerContentionError, NotFoundError
from leave_ledger.models.base import now_utc
from leave_ledger.models.custom_policy import CustomLeavePolicy, CustomLeavePolicyMember
from leave_ledger.models.enums import AuditAction, AuditEntityType, TransactionType
from leave_ledger.schemas.custom_policy import CustomPolicyListResponse, CustomPolicyResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.employee import require_employee
from leave_ledger.services.entitlement import resolve_effective_quota
from leave_ledger.services.leave_type import get_leave_type_or_404
from leave_ledger.services.ledger import append_entry
from leave_ledger.services.notification import notify

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.custom_policy import CreateCustomPolicyRequest

logger = logging.getLogger(__name__)


async def _list_member_ids(session: AsyncSession, policy_id: uuid.UUID) -> list[uuid.UUID]:
    result = await session.execute(
        select(col(CustomLeavePolicyMember.employee_id))
        .where(col(CustomLeavePolicyMember.policy_id) == policy_id)
        .order_by(col(CustomLeavePolicyMember.employee_id))
    )
    return list(result.scalars().all())


async def _build_policy_response(session: AsyncSession, policy: CustomLeavePolicy) -> CustomPolicyResponse:
    return CustomPolicyResponse(
        id=policy.id,
        company_id=policy.company_id,
        name=policy.name,
        leave_type=policy.leave_type,
        override_quota=policy.override_quota,
        employee_ids=await _list_member_ids(session, policy.id),
        is_active=policy.is_active,
        created_by=policy.created_by,
        created_at=policy.created_at,
        deactivated_at=policy.deactivated_at,
    )


async def _get_policy_or_404(session: AsyncSession, company_id: uuid.UUID, policy_id: uuid.UUID) -> CustomLeavePolicy:
    result = await session.execute(
        select(CustomLeavePolicy).where(
            col(CustomLeavePolicy.id) == policy_id,
            col(CustomLeavePolicy.company_id) == company_id,
        )
    )
    policy = result.scalar_one_or_none()
    if policy is None:
        raise NotFoundError(f"Custom policy {policy_id} not found")
    return policy


async def create_policy(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateCustomPolicyRequest,
) -> CustomPolicyResponse:
    """Override the annual quota of one leave type for a set of employees.

    For each employee a ``custom_adjustment`` entry of (override - current
    effective quota) is appended, so days already used stay deducted.
    Policy, members and entries commit together or not at all.
    """
    await get_leave_type_or_404(session, auth.company_id, payload.leave_type)
    for employee_id in payload.employee_ids:
        await require_employee(auth.company_id, employee_id)

    covered = await session.execute(
        select(col(CustomLeavePolicyMember.employee_id)).where(
            col(CustomLeavePolicyMember.company_id) == auth.company_id,
            col(CustomLeavePolicyMember.leave_type) == payload.leave_type,
            col(CustomLeavePolicyMember.employee_id).in_(payload.employee_ids),
            col(CustomLeavePolicyMember.is_active).is_(True),
        )
    )
    already_covered = list(covered.scalars().all())
    if already_covered:
        ids = ", ".join(str(e) for e in already_covered)
        raise ConflictError(f"Employees already have an active '{payload.leave_type}' policy: {ids}")

    try:
        policy = CustomLeavePolicy(
            company_id=auth.company_id,
            leave_type=payload.leave_type,
            name=payload.name,
            override_quota=payload.override_quota,
            created_by=auth.user_id,
        )
        session.add(policy)
        await session.flush()

        adjustments: dict[uuid.UUID, str] = {}
        for employee_id in payload.employee_ids:
            # Read the quota before the membership row exists.
            current = await resolve_effective_quota(session, auth.company_id, employee_id, payload.leave_type)
            delta = payload.override_quota - current.total
            await append_entry(
                session,
                auth,
                employee_id=employee_id,
                leave_type=payload.leave_type,
                transaction_type=TransactionType.CUSTOM_ADJUSTMENT,
                amount=delta,
                custom_policy_id=policy.id,
                description=f"Custom policy '{payload.name}': quota {current.total} -> {payload.override_quota}",
                details={"previous_quota": current.total, "override_quota": payload.override_quota},
                opening_quota=current.total,
            )
            adjustments[employee_id] = str(delta)

            session.add(
                CustomLeavePolicyMember(
                    policy_id=policy.id,
                    employee_id=employee_id,
                    company_id=auth.company_id,
                    leave_type=payload.leave_type,
                    previous_quota=current.total,
                )
            )
        await session.flush()

        after = model_to_audit_dict(policy)
        after["employee_ids"] = [str(e) for e in payload.employee_ids]
        after["adjustments"] = {str(k): v for k, v in adjustments.items()}
        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.CUSTOM_POLICY,
            entity_id=policy.id,
            action=AuditAction.CREATE,
            after_json=after,
        )
        await session.commit()
    except (IntegrityError, LedgerContentionError) as exc:
        await session.rollback()
        raise ConflictError(f"Concurrent change to '{payload.leave_type}' entitlements, retry the request") from exc
    except Exception:
        await session.rollback()
        raise

    await session.refresh(policy)
    logger.info(
        "Created custom policy %s for company=%s leave_type=%s employees=%d",
        policy.id,
        auth.company_id,
        policy.leave_type,
        len(payload.employee_ids),
    )
    for employee_id in payload.employee_ids:
        await notify(
            auth.company_id,
            "leave:balance_updated",
            {"employee_id": str(employee_id), "leave_type": policy.leave_type, "custom_policy_id": str(policy.id)},
        )
    return await _build_policy_response(session, policy)


async def get_policy(session: AsyncSession, auth: AuthContext, policy_id: uuid.UUID) -> CustomPolicyResponse:
    """Fetch a single custom policy."""
    policy = await _get_policy_or_404(session, auth.company_id, policy_id)
    return await _build_policy_response(session, policy)


async def list_policies(
    session: AsyncSession,
    auth: AuthContext,
    *,
    leave_type: str | None = None,
    active_only: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> CustomPolicyListResponse:
    """List custom policies, newest first."""
    filters = [col(CustomLeavePolicy.company_id) == auth.company_id]
    if leave_type is not None:
        filters.append(col(CustomLeavePolicy.leave_type) == leave_type.lower())
    if active_only:
        filters.append(col(CustomLeavePolicy.is_active).is_(True))

    count_result = await session.execute(select(func.count()).select_from(CustomLeavePolicy).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(CustomLeavePolicy)
        .where(*filters)
        .order_by(col(CustomLeavePolicy.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    items = [await _build_policy_response(session, p) for p in result.scalars().all()]
    return CustomPolicyListResponse(items=items, total=total)


async def deactivate_policy(session: AsyncSession, auth: AuthContext, policy_id: uuid.UUID) -> CustomPolicyResponse:
    """Deactivate a policy and its memberships.

    Ledger history is left as is: the adjustment entries already posted stay,
    and the pair falls back to the leave type default for future resolution.
    """
    policy = await _get_policy_or_404(session, auth.company_id, policy_id)
    if not policy.is_active:
        raise ConflictError(f"Custom policy {policy_id} is already inactive")

    before = model_to_audit_dict(policy)
    try:
        policy.is_active = False
        policy.deactivated_at = now_utc()
        await session.execute(
            update(CustomLeavePolicyMember)
            .where(col(CustomLeavePolicyMember.policy_id) == policy.id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await session.flush()

        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.CUSTOM_POLICY,
            entity_id=policy.id,
            action=AuditAction.DEACTIVATE,
            before_json=before,
            after_json=model_to_audit_dict(policy),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(policy)
    logger.info("Deactivated custom policy %s for company=%s", policy.id, auth.company_id)
    return await _build_policy_response(session, policy)
