"""Effective quota resolution: custom policy override, else the leave type default."""

# ruff: noqa: TC003
from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.models.custom_policy import CustomLeavePolicy, CustomLeavePolicyMember
from leave_ledger.services.leave_type import get_leave_type_or_404

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class EffectiveQuota:
    """The annual quota that applies to one (employee, leave type) pair."""

    total: Decimal
    policy: CustomLeavePolicy | None = None

    @property
    def policy_id(self) -> uuid.UUID | None:
        return self.policy.id if self.policy is not None else None


async def find_active_policy(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> CustomLeavePolicy | None:
    """Return the active custom policy covering the pair, if any."""
    result = await session.execute(
        select(CustomLeavePolicy)
        .join(CustomLeavePolicyMember, col(CustomLeavePolicyMember.policy_id) == col(CustomLeavePolicy.id))
        .where(
            col(CustomLeavePolicyMember.company_id) == company_id,
            col(CustomLeavePolicyMember.employee_id) == employee_id,
            col(CustomLeavePolicyMember.leave_type) == leave_type,
            col(CustomLeavePolicyMember.is_active).is_(True),
            col(CustomLeavePolicy.company_id) == company_id,
            col(CustomLeavePolicy.is_active).is_(True),
        )
        .order_by(col(CustomLeavePolicy.created_at).desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_effective_quota(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> EffectiveQuota:
    """Effective total = active override quota, else the type's default annual quota."""
    policy = await find_active_policy(session, company_id, employee_id, leave_type)
    if policy is not None:
        return EffectiveQuota(total=policy.override_quota, policy=policy)

    registered = await get_leave_type_or_404(session, company_id, leave_type, include_inactive=True)
    return EffectiveQuota(total=registered.default_annual_quota)
