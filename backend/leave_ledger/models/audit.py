# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import TimestampMixin, UUIDBase


class AuditLog(UUIDBase, TimestampMixin, table=True):
    """Before/after record of a mutation: leave types, policies, requests and ledger postings.

    Rows are only ever inserted, inside the same unit of work as the change
    they describe.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        sa.Index("ix_audit_log_company_entity", "company_id", "entity_type", "entity_id"),
        sa.Index("ix_audit_log_company_created", "company_id", "created_at"),
    )

    company_id: uuid.UUID
    # Zero UUID for reconciliation runs.
    actor_id: uuid.UUID
    entity_type: str = Field(max_length=50)
    entity_id: uuid.UUID
    action: str = Field(max_length=50)
    before_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    after_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
