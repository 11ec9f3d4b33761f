# ruff: noqa: TC003
from __future__ import annotations

import uuid

from pydantic import BaseModel

APPROVER_ROLES = frozenset({"admin", "hr", "manager"})


class AuthContext(BaseModel):
    """Tenant and actor identity supplied by the auth layer.

    Passed explicitly into every service call; services never derive the
    tenant themselves.
    """

    company_id: uuid.UUID
    user_id: uuid.UUID
    role: str = "employee"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES
