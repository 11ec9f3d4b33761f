from __future__ import annotations

import enum


class LeaveRequestStatus(enum.StrEnum):
    """State machine for leave requests."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TransactionType(enum.StrEnum):
    """Kind of balance-affecting ledger transaction."""

    OPENING = "opening"
    USED = "used"
    RESTORED = "restored"
    CUSTOM_ADJUSTMENT = "custom_adjustment"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    LEAVE_TYPE = "LEAVE_TYPE"
    CUSTOM_POLICY = "CUSTOM_POLICY"
    LEAVE_REQUEST = "LEAVE_REQUEST"
    LEDGER_ENTRY = "LEDGER_ENTRY"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    DEACTIVATE = "DEACTIVATE"
    BACKFILL = "BACKFILL"
