# ruff: noqa: TC003
from __future__ import annotations

import uuid

from pydantic import BaseModel


class ReconciliationRunResponse(BaseModel):
    """Summary of a reconciliation pass."""

    companies: list[uuid.UUID]
    processed: int
    backfilled: int
    skipped: int
    errors: int
