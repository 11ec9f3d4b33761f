from sqlmodel import SQLModel

from leave_ledger.models.audit import AuditLog
from leave_ledger.models.balance import LeaveBalanceSnapshot
from leave_ledger.models.base import SoftDeleteMixin, TimestampMixin, UUIDBase
from leave_ledger.models.custom_policy import CustomLeavePolicy, CustomLeavePolicyMember
from leave_ledger.models.enums import AuditAction, AuditEntityType, LeaveRequestStatus, TransactionType
from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.models.leave_type import LeaveType
from leave_ledger.models.ledger import LeaveLedgerEntry, LedgerSequence

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "CustomLeavePolicy",
    "CustomLeavePolicyMember",
    "LeaveBalanceSnapshot",
    "LeaveLedgerEntry",
    "LeaveRequest",
    "LeaveRequestStatus",
    "LeaveType",
    "LedgerSequence",
    "SQLModel",
    "SoftDeleteMixin",
    "TimestampMixin",
    "TransactionType",
    "UUIDBase",
]
