"""Append-only leave ledger: the system of record for balances.

Every write goes through :func:`append_entry`, which runs inside the caller's
unit of work and keeps the balance snapshot in lock-step with the ledger tip.
It never commits and never swallows a storage error.
"""

# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col

from leave_ledger.exceptions import AppError, ConflictError, ConsistencyError, LedgerContentionError
from leave_ledger.models.balance import LeaveBalanceSnapshot
from leave_ledger.models.base import now_utc
from leave_ledger.models.enums import AuditAction, AuditEntityType, TransactionType
from leave_ledger.models.ledger import LeaveLedgerEntry, LedgerSequence
from leave_ledger.schemas.balance import (
    LedgerChainBreak,
    LedgerEntryResponse,
    LedgerListResponse,
    LedgerVerificationResponse,
)
from leave_ledger.services.audit import model_to_audit_dict, to_json_safe, write_audit_log
from leave_ledger.services.employee import require_employee
from leave_ledger.services.entitlement import resolve_effective_quota
from leave_ledger.services.leave_type import get_leave_type_or_404

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.balance import CreateOpeningBalanceRequest

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


@dataclass
class PairCounters:
    """Running totals for one (employee, leave type) pair."""

    total: Decimal
    used: Decimal
    balance: Decimal
    last_sequence: int | None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_ledger_entry_response(entry: LeaveLedgerEntry) -> LedgerEntryResponse:
    """Map a ledger entry model to its response schema."""
    return LedgerEntryResponse(
        id=entry.id,
        employee_id=entry.employee_id,
        company_id=entry.company_id,
        leave_type=entry.leave_type,
        transaction_type=TransactionType(entry.transaction_type),
        amount=entry.amount,
        balance_before=entry.balance_before,
        balance_after=entry.balance_after,
        leave_request_id=entry.leave_request_id,
        custom_policy_id=entry.custom_policy_id,
        transaction_date=entry.transaction_date,
        sequence=entry.sequence,
        description=entry.description,
        is_backfilled=entry.is_backfilled,
        details_json=entry.details_json,
        is_deleted=entry.is_deleted,
        created_at=entry.created_at,
    )


def _pair_filter(company_id: uuid.UUID, employee_id: uuid.UUID, leave_type: str) -> list[Any]:
    return [
        col(LeaveLedgerEntry.company_id) == company_id,
        col(LeaveLedgerEntry.employee_id) == employee_id,
        col(LeaveLedgerEntry.leave_type) == leave_type,
        col(LeaveLedgerEntry.is_deleted).is_(False),
    ]


def apply_to_counters(counters: PairCounters, entry: LeaveLedgerEntry) -> None:
    """Advance running totals by one entry.

    ``used`` is the usage counter, ``total`` the entitlement the ledger knows
    about. ``balance`` always equals ``total - used``.
    """
    amount = entry.amount
    match entry.transaction_type:
        case TransactionType.USED:
            counters.used -= amount
        case TransactionType.RESTORED:
            counters.used -= amount
        case TransactionType.CUSTOM_ADJUSTMENT:
            counters.total += amount
        case TransactionType.OPENING:
            effective_total = Decimal(str((entry.details_json or {}).get("effective_total", amount)))
            counters.total = effective_total
            counters.used = effective_total - amount
    counters.balance = entry.balance_after
    counters.last_sequence = entry.sequence


def replay_counters(entries: Sequence[LeaveLedgerEntry]) -> PairCounters | None:
    """Rebuild running totals from entries in (transaction_date, sequence) order."""
    if not entries:
        return None
    counters = PairCounters(total=entries[0].balance_before, used=ZERO, balance=entries[0].balance_before, last_sequence=None)
    for entry in entries:
        apply_to_counters(counters, entry)
    return counters


async def _list_pair_entries(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> list[LeaveLedgerEntry]:
    result = await session.execute(
        select(LeaveLedgerEntry)
        .where(*_pair_filter(company_id, employee_id, leave_type))
        .order_by(col(LeaveLedgerEntry.transaction_date), col(LeaveLedgerEntry.sequence))
    )
    return list(result.scalars().all())


async def _next_sequence(session: AsyncSession, company_id: uuid.UUID) -> int:
    """Allocate the next per-company sequence number.

    The counter row stays locked until the enclosing transaction ends, so
    sequence order matches commit order within a company.
    """
    result = await session.execute(
        update(LedgerSequence)
        .where(col(LedgerSequence.company_id) == company_id)
        .values(last_value=col(LedgerSequence.last_value) + 1)
        .returning(col(LedgerSequence.last_value))
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is not None:
        return int(value)

    session.add(LedgerSequence(company_id=company_id, last_value=1))
    await session.flush()
    return 1


async def lock_tenant_writes(session: AsyncSession, company_id: uuid.UUID) -> None:
    """Take the company's sequence row lock without allocating a number.

    Held until the enclosing transaction ends, so checks made after it cannot
    interleave with another ledger writer of the same company.
    """
    try:
        result = await session.execute(
            update(LedgerSequence)
            .where(col(LedgerSequence.company_id) == company_id)
            .values(last_value=col(LedgerSequence.last_value))
            .returning(col(LedgerSequence.company_id))
            .execution_options(synchronize_session=False)
        )
        if result.first() is not None:
            return
        session.add(LedgerSequence(company_id=company_id, last_value=0))
        await session.flush()
    except IntegrityError as exc:
        raise LedgerContentionError(f"Concurrent first ledger write for company={company_id}") from exc


async def _lock_snapshot(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> LeaveBalanceSnapshot | None:
    """Read the pair's snapshot with a FOR UPDATE lock."""
    result = await session.execute(
        select(LeaveBalanceSnapshot)
        .where(
            col(LeaveBalanceSnapshot.company_id) == company_id,
            col(LeaveBalanceSnapshot.employee_id) == employee_id,
            col(LeaveBalanceSnapshot.leave_type) == leave_type,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _write_snapshot(
    session: AsyncSession,
    snapshot: LeaveBalanceSnapshot | None,
    counters: PairCounters,
    *,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> None:
    """Persist counters, guarded by the version seen when the snapshot was read.

    A concurrent writer that got there first leaves zero matching rows and
    the whole unit of work is retried.
    """
    if snapshot is None:
        session.add(
            LeaveBalanceSnapshot(
                company_id=company_id,
                employee_id=employee_id,
                leave_type=leave_type,
                total_days=counters.total,
                used_days=counters.used,
                balance_days=counters.balance,
                last_sequence=counters.last_sequence,
                version=1,
            )
        )
        await session.flush()
        return

    seen_version = snapshot.version
    result = await session.execute(
        update(LeaveBalanceSnapshot)
        .where(
            col(LeaveBalanceSnapshot.company_id) == company_id,
            col(LeaveBalanceSnapshot.employee_id) == employee_id,
            col(LeaveBalanceSnapshot.leave_type) == leave_type,
            col(LeaveBalanceSnapshot.version) == seen_version,
        )
        .values(
            total_days=counters.total,
            used_days=counters.used,
            balance_days=counters.balance,
            last_sequence=counters.last_sequence,
            version=seen_version + 1,
            updated_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LedgerContentionError(
            f"Balance snapshot for employee={employee_id} leave_type={leave_type} changed concurrently"
        )
    await session.refresh(snapshot)


async def _starting_counters(
    session: AsyncSession,
    snapshot: LeaveBalanceSnapshot | None,
    latest: LeaveLedgerEntry | None,
    *,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> PairCounters | None:
    """Counters as of the current tip, trusting the snapshot only when it is in step."""
    if (
        snapshot is not None
        and latest is not None
        and snapshot.last_sequence == latest.sequence
        and snapshot.balance_days == latest.balance_after
    ):
        return PairCounters(
            total=snapshot.total_days,
            used=snapshot.used_days,
            balance=snapshot.balance_days,
            last_sequence=snapshot.last_sequence,
        )
    if latest is None:
        return None

    logger.warning(
        "Snapshot out of step with ledger tip for company=%s employee=%s leave_type=%s; rebuilding from ledger",
        company_id,
        employee_id,
        leave_type,
    )
    return replay_counters(await _list_pair_entries(session, company_id, employee_id, leave_type))


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def get_latest_entry(
    session: AsyncSession,
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type: str,
) -> LeaveLedgerEntry | None:
    """Return the non-deleted entry with the greatest (transaction_date, sequence)."""
    result = await session.execute(
        select(LeaveLedgerEntry)
        .where(*_pair_filter(company_id, employee_id, leave_type))
        .order_by(col(LeaveLedgerEntry.transaction_date).desc(), col(LeaveLedgerEntry.sequence).desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_request_entry(
    session: AsyncSession,
    company_id: uuid.UUID,
    leave_request_id: uuid.UUID,
    transaction_type: TransactionType,
) -> LeaveLedgerEntry | None:
    """Return the non-deleted entry of the given type linked to a leave request."""
    result = await session.execute(
        select(LeaveLedgerEntry).where(
            col(LeaveLedgerEntry.company_id) == company_id,
            col(LeaveLedgerEntry.leave_request_id) == leave_request_id,
            col(LeaveLedgerEntry.transaction_type) == transaction_type.value,
            col(LeaveLedgerEntry.is_deleted).is_(False),
        )
    )
    return result.scalar_one_or_none()


async def list_entries(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LedgerListResponse:
    """Paginated ledger history for an employee, newest first."""
    filters = [
        col(LeaveLedgerEntry.company_id) == auth.company_id,
        col(LeaveLedgerEntry.employee_id) == employee_id,
        col(LeaveLedgerEntry.is_deleted).is_(False),
    ]
    if leave_type is not None:
        filters.append(col(LeaveLedgerEntry.leave_type) == leave_type.lower())

    count_result = await session.execute(select(func.count()).select_from(LeaveLedgerEntry).where(*filters))
    total = count_result.scalar_one()

    entries_result = await session.execute(
        select(LeaveLedgerEntry)
        .where(*filters)
        .order_by(col(LeaveLedgerEntry.transaction_date).desc(), col(LeaveLedgerEntry.sequence).desc())
        .offset(offset)
        .limit(limit)
    )
    return LedgerListResponse(
        items=[build_ledger_entry_response(e) for e in entries_result.scalars().all()],
        total=total,
    )


async def verify_chain(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str,
) -> LedgerVerificationResponse:
    """Replay a pair's entries and report every link that breaks the running balance."""
    code = leave_type.lower()
    entries = await _list_pair_entries(session, auth.company_id, employee_id, code)

    breaks: list[LedgerChainBreak] = []
    previous_after: Decimal | None = None
    for entry in entries:
        expected_before = entry.balance_before if previous_after is None else previous_after
        expected_after = expected_before + entry.amount
        if entry.balance_before != expected_before or entry.balance_after != expected_after:
            breaks.append(
                LedgerChainBreak(
                    sequence=entry.sequence,
                    expected_balance_before=expected_before,
                    actual_balance_before=entry.balance_before,
                    expected_balance_after=expected_after,
                    actual_balance_after=entry.balance_after,
                )
            )
        previous_after = entry.balance_after

    if breaks:
        logger.warning(
            "Ledger chain broken for company=%s employee=%s leave_type=%s at sequences %s",
            auth.company_id,
            employee_id,
            code,
            [b.sequence for b in breaks],
        )

    return LedgerVerificationResponse(
        employee_id=employee_id,
        leave_type=code,
        entry_count=len(entries),
        replayed_balance=previous_after,
        is_valid=not breaks,
        breaks=breaks,
    )


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


async def append_entry(
    session: AsyncSession,
    auth: AuthContext,
    *,
    employee_id: uuid.UUID,
    leave_type: str,
    transaction_type: TransactionType,
    amount: Decimal,
    description: str,
    leave_request_id: uuid.UUID | None = None,
    custom_policy_id: uuid.UUID | None = None,
    is_backfilled: bool = False,
    details: dict[str, Any] | None = None,
    opening_quota: Decimal | None = None,
    min_balance: Decimal | None = None,
) -> LeaveLedgerEntry:
    """Append one entry for (employee, leave type) inside the caller's transaction.

    ``balance_before`` is the latest entry's ``balance_after``; with no prior
    entry it is ``opening_quota`` when given, else the effective quota (0 for
    an ``opening`` entry). ``min_balance`` rejects an entry that would take the
    balance below it.

    Raises:
        ConflictError: overdraft beyond ``min_balance``, or an ``opening``
            entry on a pair that already has history.
        LedgerContentionError: another writer moved the tip first; the
            caller must roll back and may retry.
        ConsistencyError: any other storage failure; the caller must roll
            back and propagate.
    """
    try:
        return await _append(
            session,
            auth,
            employee_id=employee_id,
            leave_type=leave_type,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            leave_request_id=leave_request_id,
            custom_policy_id=custom_policy_id,
            is_backfilled=is_backfilled,
            details=details,
            opening_quota=opening_quota,
            min_balance=min_balance,
        )
    except AppError:
        raise
    except IntegrityError as exc:
        raise LedgerContentionError(
            f"Concurrent ledger write for employee={employee_id} leave_type={leave_type}"
        ) from exc
    except SQLAlchemyError as exc:
        logger.error(
            "Ledger append failed for company=%s employee=%s leave_type=%s type=%s: %s",
            auth.company_id,
            employee_id,
            leave_type,
            transaction_type,
            exc,
        )
        raise ConsistencyError(f"Ledger write failed for employee={employee_id} leave_type={leave_type}") from exc


async def _append(
    session: AsyncSession,
    auth: AuthContext,
    *,
    employee_id: uuid.UUID,
    leave_type: str,
    transaction_type: TransactionType,
    amount: Decimal,
    description: str,
    leave_request_id: uuid.UUID | None,
    custom_policy_id: uuid.UUID | None,
    is_backfilled: bool,
    details: dict[str, Any] | None,
    opening_quota: Decimal | None,
    min_balance: Decimal | None,
) -> LeaveLedgerEntry:
    company_id = auth.company_id
    # Sequence first: every writer takes the company counter before any pair lock.
    sequence = await _next_sequence(session, company_id)
    snapshot = await _lock_snapshot(session, company_id, employee_id, leave_type)
    latest = await get_latest_entry(session, company_id, employee_id, leave_type)

    counters = await _starting_counters(
        session, snapshot, latest, company_id=company_id, employee_id=employee_id, leave_type=leave_type
    )
    details = dict(details or {})

    if transaction_type == TransactionType.OPENING:
        if latest is not None:
            raise ConflictError("An opening balance can only be the first ledger entry for a leave type")
        effective_total = opening_quota
        if effective_total is None:
            effective_total = (await resolve_effective_quota(session, company_id, employee_id, leave_type)).total
        details["effective_total"] = str(effective_total)
        balance_before = ZERO
        counters = PairCounters(total=effective_total, used=ZERO, balance=ZERO, last_sequence=None)
    elif counters is not None:
        balance_before = counters.balance
    else:
        if opening_quota is None:
            opening_quota = (await resolve_effective_quota(session, company_id, employee_id, leave_type)).total
        balance_before = opening_quota
        counters = PairCounters(total=opening_quota, used=ZERO, balance=opening_quota, last_sequence=None)

    balance_after = balance_before + amount
    if min_balance is not None and amount < 0 and balance_after < min_balance:
        raise ConflictError(
            f"Insufficient {leave_type} balance: {balance_before} available, {-amount} requested"
        )

    entry = LeaveLedgerEntry(
        company_id=company_id,
        employee_id=employee_id,
        leave_type=leave_type,
        transaction_type=transaction_type.value,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        leave_request_id=leave_request_id,
        custom_policy_id=custom_policy_id,
        transaction_date=now_utc(),
        sequence=sequence,
        description=description,
        is_backfilled=is_backfilled,
        details_json=to_json_safe(details) or None,
        created_by=auth.user_id,
    )
    session.add(entry)
    await session.flush()

    apply_to_counters(counters, entry)
    await _write_snapshot(
        session, snapshot, counters, company_id=company_id, employee_id=employee_id, leave_type=leave_type
    )

    logger.info(
        "Ledger %s company=%s employee=%s leave_type=%s amount=%s balance %s -> %s seq=%d",
        transaction_type.value,
        company_id,
        employee_id,
        leave_type,
        amount,
        balance_before,
        balance_after,
        sequence,
    )
    return entry


async def post_opening_balance(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateOpeningBalanceRequest,
) -> LedgerEntryResponse:
    """Seed an empty pair with an explicit opening balance (admin only).

    Used when an employee's earlier usage was tracked elsewhere; the gap
    between the effective quota and the opening amount counts as used.
    """
    await require_employee(auth.company_id, payload.employee_id)
    await get_leave_type_or_404(session, auth.company_id, payload.leave_type)

    try:
        entry = await append_entry(
            session,
            auth,
            employee_id=payload.employee_id,
            leave_type=payload.leave_type,
            transaction_type=TransactionType.OPENING,
            amount=payload.amount,
            description=payload.description,
        )
        await write_audit_log(
            session,
            auth,
            entity_type=AuditEntityType.LEDGER_ENTRY,
            entity_id=entry.id,
            action=AuditAction.CREATE,
            after_json=model_to_audit_dict(entry),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(entry)
    return build_ledger_entry_response(entry)


async def rebuild_snapshot(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str,
) -> PairCounters | None:
    """Recompute the pair's snapshot from the ledger, the sole source of truth."""
    code = leave_type.lower()
    try:
        snapshot = await _lock_snapshot(session, auth.company_id, employee_id, code)
        counters = replay_counters(await _list_pair_entries(session, auth.company_id, employee_id, code))
        if counters is None:
            if snapshot is not None:
                await session.delete(snapshot)
        else:
            await _write_snapshot(
                session, snapshot, counters, company_id=auth.company_id, employee_id=employee_id, leave_type=code
            )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Rebuilt snapshot for company=%s employee=%s leave_type=%s", auth.company_id, employee_id, code)
    return counters
