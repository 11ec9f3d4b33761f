"""Tests for the leave request workflow: create, approve, reject, cancel, delete,
overlap detection, overdraft prevention, atomicity, retries and concurrency.
"""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlmodel import col

from leave_ledger.exceptions import ConflictError, LedgerContentionError
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.balance import LeaveBalanceSnapshot
from leave_ledger.models.leave_request import LeaveRequest
from leave_ledger.models.ledger import LeaveLedgerEntry
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.schemas.leave_request import ApprovePayload, CreateLeaveRequestPayload
from leave_ledger.services import leave_request as leave_request_service
from leave_ledger.services import ledger as ledger_service
from leave_ledger.services.employee import EmployeeInfo, InMemoryEmployeeService

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from leave_ledger.services.notification import InMemoryNotificationService

COMPANY_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()
EMPLOYEE_ID = uuid.uuid4()
EMPLOYEE_USER_ID = uuid.uuid4()

ADMIN_HEADERS = {"X-Company-Id": str(COMPANY_ID), "X-User-Id": str(ADMIN_ID), "X-Role": "admin"}
MANAGER_HEADERS = {"X-Company-Id": str(COMPANY_ID), "X-User-Id": str(uuid.uuid4()), "X-Role": "manager"}
EMPLOYEE_HEADERS = {"X-Company-Id": str(COMPANY_ID), "X-User-Id": str(EMPLOYEE_USER_ID), "X-Role": "employee"}
STRANGER_HEADERS = {"X-Company-Id": str(COMPANY_ID), "X-User-Id": str(uuid.uuid4()), "X-Role": "employee"}

ADMIN_AUTH = AuthContext(company_id=COMPANY_ID, user_id=ADMIN_ID, role="admin")

LEAVE_TYPES_URL = f"/companies/{COMPANY_ID}/leave-types"
REQUESTS_URL = f"/companies/{COMPANY_ID}/leave-requests"
BALANCES_URL = f"/companies/{COMPANY_ID}/employees/{EMPLOYEE_ID}/balances"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _seed_employee(employee_service: InMemoryEmployeeService) -> None:
    employee_service.seed(
        EmployeeInfo(
            id=EMPLOYEE_ID,
            company_id=COMPANY_ID,
            user_id=EMPLOYEE_USER_ID,
            employee_code="EMP-0001",
            first_name="Asha",
            last_name="Rao",
            email="asha@example.com",
        )
    )


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _create_leave_type(client: AsyncClient, code: str = "earned", quota: float = 15, **kwargs: Any) -> None:
    resp = await client.post(
        LEAVE_TYPES_URL,
        json={"code": code, "name": code.title(), "default_annual_quota": quota, **kwargs},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201


async def _create_request(
    client: AsyncClient,
    start: str = "2026-03-02",
    end: str | None = None,
    *,
    leave_type: str = "earned",
    duration: float | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "employee_id": str(EMPLOYEE_ID),
        "leave_type": leave_type,
        "start_date": start,
        "end_date": end or start,
    }
    if duration is not None:
        payload["duration"] = duration
    resp = await client.post(REQUESTS_URL, json=payload, headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 201, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _approve(client: AsyncClient, request_id: str, headers: dict[str, str] = ADMIN_HEADERS) -> Any:
    return await client.post(f"{REQUESTS_URL}/{request_id}/approve", headers=headers)


async def _balance(client: AsyncClient, leave_type: str = "earned") -> dict[str, Any]:
    resp = await client.get(BALANCES_URL, params={"leave_type": leave_type}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    result: dict[str, Any] = resp.json()["items"][0]
    return result


async def _entries(session: AsyncSession, request_id: str | None = None) -> list[LeaveLedgerEntry]:
    query = select(LeaveLedgerEntry).where(col(LeaveLedgerEntry.employee_id) == EMPLOYEE_ID)
    if request_id is not None:
        query = query.where(col(LeaveLedgerEntry.leave_request_id) == uuid.UUID(request_id))
    result = await session.execute(
        query.order_by(col(LeaveLedgerEntry.sequence)).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _status(session: AsyncSession, request_id: str) -> str:
    result = await session.execute(select(col(LeaveRequest.status)).where(col(LeaveRequest.id) == uuid.UUID(request_id)))
    return str(result.scalar_one())


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def test_create_request_is_pending_without_ledger_effect(
    async_client: AsyncClient, db_session: AsyncSession
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    assert data["status"] == "pending"
    assert data["duration"] == 1
    assert data["balance_at_request"] == 15
    assert data["created_by"] == str(EMPLOYEE_USER_ID)
    assert await _entries(db_session) == []


async def test_create_request_duration_defaults_to_inclusive_span(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client, "2026-03-02", "2026-03-04")
    assert data["duration"] == 3


async def test_create_request_half_day(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client, duration=0.5)
    assert data["duration"] == 0.5


@pytest.mark.parametrize(
    ("start", "end", "duration"),
    [
        ("2026-03-05", "2026-03-02", None),
        ("2026-03-02", "2026-03-03", 3),
        ("2026-03-02", "2026-03-02", 0),
    ],
)
async def test_create_request_malformed(
    async_client: AsyncClient, start: str, end: str, duration: float | None
) -> None:
    await _create_leave_type(async_client)
    payload: dict[str, Any] = {
        "employee_id": str(EMPLOYEE_ID),
        "leave_type": "earned",
        "start_date": start,
        "end_date": end,
    }
    if duration is not None:
        payload["duration"] = duration
    resp = await async_client.post(REQUESTS_URL, json=payload, headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 422
    assert resp.json()["error"] == "ValidationError"


async def test_create_request_unknown_employee(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(uuid.uuid4()), "leave_type": "earned", "start_date": "2026-03-02", "end_date": "2026-03-02"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 404


async def test_create_request_unknown_leave_type(async_client: AsyncClient) -> None:
    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "missing", "start_date": "2026-03-02", "end_date": "2026-03-02"},
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFoundError"


async def test_create_request_inactive_leave_type(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    await async_client.patch(f"{LEAVE_TYPES_URL}/earned", json={"is_active": False}, headers=ADMIN_HEADERS)

    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "earned", "start_date": "2026-03-02", "end_date": "2026-03-02"},
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "ValidationError"


# ---------------------------------------------------------------------------
# Overlap detection
# ---------------------------------------------------------------------------


async def test_overlap_with_pending_request(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    await _create_request(async_client, "2026-03-02", "2026-03-04")

    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "earned", "start_date": "2026-03-04", "end_date": "2026-03-06"},
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "ConflictError"


async def test_overlap_with_approved_request_of_other_type(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    await _create_leave_type(async_client, code="sick", quota=7)
    data = await _create_request(async_client, "2026-03-02", "2026-03-04")
    assert (await _approve(async_client, data["id"])).status_code == 200

    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "sick", "start_date": "2026-03-03", "end_date": "2026-03-03"},
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 409


async def test_adjacent_requests_do_not_overlap(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    await _create_request(async_client, "2026-03-02", "2026-03-04")
    await _create_request(async_client, "2026-03-05", "2026-03-06")


async def test_rejected_and_cancelled_requests_free_their_dates(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    rejected = await _create_request(async_client, "2026-03-02")
    await async_client.post(f"{REQUESTS_URL}/{rejected['id']}/reject", json={"reason": "busy"}, headers=ADMIN_HEADERS)

    cancelled = await _create_request(async_client, "2026-03-02")
    await _approve(async_client, cancelled["id"])
    await async_client.post(f"{REQUESTS_URL}/{cancelled['id']}/cancel", headers=EMPLOYEE_HEADERS)

    await _create_request(async_client, "2026-03-02")


# ---------------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------------


async def test_approve_posts_single_used_entry(async_client: AsyncClient, db_session: AsyncSession) -> None:
    """Earned 15, approve one day: one used entry -1 (15 -> 14) and balance {15, 1, 14}."""
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    resp = await _approve(async_client, data["id"])
    assert resp.status_code == 200
    approved = resp.json()
    assert approved["status"] == "approved"
    assert approved["approved_by"] == str(ADMIN_ID)

    entries = await _entries(db_session)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.transaction_type == "used"
    assert entry.amount == Decimal(-1)
    assert entry.balance_before == Decimal(15)
    assert entry.balance_after == Decimal(14)
    assert entry.leave_request_id == uuid.UUID(data["id"])
    assert entry.is_backfilled is False

    balance = await _balance(async_client)
    assert (balance["total"], balance["used"], balance["balance"]) == (15, 1, 14)
    assert balance["is_consistent"] is True


async def test_approve_with_comment_by_manager(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    resp = await async_client.post(
        f"{REQUESTS_URL}/{data['id']}/approve", json={"comment": "Enjoy"}, headers=MANAGER_HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["approval_comment"] == "Enjoy"


async def test_approve_requires_approver_role(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    resp = await _approve(async_client, data["id"], headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 403


async def test_approve_twice_is_conflict(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])

    resp = await _approve(async_client, data["id"])
    assert resp.status_code == 409
    assert len(await _entries(db_session)) == 1


async def test_approve_not_found(async_client: AsyncClient) -> None:
    resp = await _approve(async_client, str(uuid.uuid4()))
    assert resp.status_code == 404


async def test_approve_insufficient_balance_keeps_request_pending(
    async_client: AsyncClient, db_session: AsyncSession
) -> None:
    await _create_leave_type(async_client, quota=2)
    data = await _create_request(async_client, "2026-03-02", "2026-03-04")

    resp = await _approve(async_client, data["id"])
    assert resp.status_code == 409
    assert "Insufficient" in resp.json()["detail"]
    assert await _status(db_session, data["id"]) == "pending"
    assert await _entries(db_session) == []


async def test_approve_allow_negative(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client, code="unpaid", quota=0, allow_negative=True, is_paid=False)
    data = await _create_request(async_client, "2026-03-02", "2026-03-03", leave_type="unpaid")

    assert (await _approve(async_client, data["id"])).status_code == 200
    balance = await _balance(async_client, "unpaid")
    assert (balance["total"], balance["used"], balance["balance"]) == (0, 2, -2)


async def test_auto_approved_type(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client, code="wfh", quota=10, requires_approval=False)
    data = await _create_request(async_client, leave_type="wfh")

    assert data["status"] == "approved"
    assert data["approval_comment"] == "Auto-approved"
    entries = await _entries(db_session, data["id"])
    assert [(e.transaction_type, e.amount) for e in entries] == [("used", Decimal(-1))]


async def test_employee_cannot_request_for_someone_else(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client, code="wfh", quota=15, requires_approval=False)

    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "wfh", "start_date": "2026-03-02", "end_date": "2026-03-06"},
        headers=STRANGER_HEADERS,
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "ForbiddenError"

    count = await db_session.execute(select(func.count()).select_from(LeaveRequest))
    assert count.scalar_one() == 0
    assert await _entries(db_session) == []
    balance = await _balance(async_client, "wfh")
    assert (balance["total"], balance["used"], balance["balance"]) == (15, 0, 15)


async def test_approver_can_request_on_behalf_of_employee(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    resp = await async_client.post(
        REQUESTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type": "earned", "start_date": "2026-03-02", "end_date": "2026-03-02"},
        headers=MANAGER_HEADERS,
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "pending"


async def test_approve_writes_audit_entry(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])

    result = await db_session.execute(
        select(AuditLog).where(
            col(AuditLog.entity_id) == uuid.UUID(data["id"]),
            col(AuditLog.action) == "APPROVE",
        )
    )
    log = result.scalar_one()
    assert log.entity_type == "LEAVE_REQUEST"
    assert log.before_json is not None
    assert log.before_json["status"] == "pending"
    assert log.after_json is not None
    assert log.after_json["status"] == "approved"


# ---------------------------------------------------------------------------
# Reject
# ---------------------------------------------------------------------------


async def test_reject_request(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    resp = await async_client.post(
        f"{REQUESTS_URL}/{data['id']}/reject", json={"reason": "Quarter close"}, headers=MANAGER_HEADERS
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"
    assert resp.json()["rejection_reason"] == "Quarter close"
    assert await _entries(db_session) == []
    assert (await _balance(async_client))["balance"] == 15


@pytest.mark.parametrize("body", [{}, {"reason": "   "}])
async def test_reject_requires_reason(async_client: AsyncClient, body: dict[str, str]) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/reject", json=body, headers=ADMIN_HEADERS)
    assert resp.status_code == 422


async def test_reject_approved_request_is_conflict(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])
    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/reject", json={"reason": "no"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 409


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


async def test_approve_cancel_round_trip(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client, "2026-03-02", "2026-03-03")
    await _approve(async_client, data["id"])

    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancelled_by"] == str(EMPLOYEE_USER_ID)

    entries = await _entries(db_session, data["id"])
    assert [(e.transaction_type, e.amount, e.balance_after) for e in entries] == [
        ("used", Decimal(-2), Decimal(13)),
        ("restored", Decimal(2), Decimal(15)),
    ]
    balance = await _balance(async_client)
    assert (balance["total"], balance["used"], balance["balance"]) == (15, 0, 15)
    assert balance["is_consistent"] is True


async def test_cancel_by_other_employee_forbidden(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])

    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/cancel", headers=STRANGER_HEADERS)
    assert resp.status_code == 403


async def test_cancel_pending_request_is_conflict(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/cancel", headers=ADMIN_HEADERS)
    assert resp.status_code == 409
    assert await _entries(db_session) == []


async def test_cancel_twice_is_conflict(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])
    await async_client.post(f"{REQUESTS_URL}/{data['id']}/cancel", headers=ADMIN_HEADERS)

    resp = await async_client.post(f"{REQUESTS_URL}/{data['id']}/cancel", headers=ADMIN_HEADERS)
    assert resp.status_code == 409
    assert len(await _entries(db_session)) == 2


# ---------------------------------------------------------------------------
# Delete, get, list
# ---------------------------------------------------------------------------


async def test_delete_pending_request(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    resp = await async_client.delete(f"{REQUESTS_URL}/{data['id']}", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 204
    assert (await async_client.get(f"{REQUESTS_URL}/{data['id']}", headers=ADMIN_HEADERS)).status_code == 404


async def test_delete_approved_request_is_conflict(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])

    resp = await async_client.delete(f"{REQUESTS_URL}/{data['id']}", headers=ADMIN_HEADERS)
    assert resp.status_code == 409
    assert "cancel" in resp.json()["detail"]


async def test_list_requests_filters_and_pagination(async_client: AsyncClient) -> None:
    await _create_leave_type(async_client)
    first = await _create_request(async_client, "2026-03-02")
    await _create_request(async_client, "2026-03-09")
    await _create_request(async_client, "2026-03-16")
    await _approve(async_client, first["id"])

    resp = await async_client.get(REQUESTS_URL, params={"status": "approved"}, headers=ADMIN_HEADERS)
    assert resp.json()["total"] == 1
    assert resp.json()["items"][0]["id"] == first["id"]

    resp = await async_client.get(
        REQUESTS_URL, params={"employee_id": str(EMPLOYEE_ID), "limit": 2}, headers=ADMIN_HEADERS
    )
    data = resp.json()
    assert data["total"] == 3
    assert len(data["items"]) == 2


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def test_approve_notifies_after_commit(
    async_client: AsyncClient, notifications: InMemoryNotificationService
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)
    await _approve(async_client, data["id"])

    events = [e.event for e in notifications.events]
    assert events == ["leave:created", "leave:approved", "leave:balance_updated"]
    assert notifications.events[-1].company_id == COMPANY_ID
    assert notifications.events[-1].payload["request_id"] == data["id"]


async def test_notification_failure_does_not_undo_approval(
    async_client: AsyncClient,
    db_session: AsyncSession,
    notifications: InMemoryNotificationService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    async def _boom(event: object) -> None:
        raise RuntimeError("socket closed")

    monkeypatch.setattr(notifications, "publish", _boom)
    resp = await _approve(async_client, data["id"])

    assert resp.status_code == 200
    assert await _status(db_session, data["id"]) == "approved"
    assert len(await _entries(db_session)) == 1


# ---------------------------------------------------------------------------
# Atomicity and retries
# ---------------------------------------------------------------------------


async def test_ledger_failure_rolls_back_approval(
    async_client: AsyncClient, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    async def _failing_write(*args: object, **kwargs: object) -> None:
        raise OperationalError("UPDATE leave_balance_snapshot", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger_service, "_write_snapshot", _failing_write)
    resp = await _approve(async_client, data["id"])

    assert resp.status_code == 500
    assert resp.json()["error"] == "ConsistencyError"
    assert await _status(db_session, data["id"]) == "pending"
    assert await _entries(db_session) == []
    snapshots = await db_session.execute(select(func.count()).select_from(LeaveBalanceSnapshot))
    assert snapshots.scalar_one() == 0

    monkeypatch.undo()
    assert (await _approve(async_client, data["id"])).status_code == 200
    assert len(await _entries(db_session)) == 1


async def test_contention_is_retried(
    async_client: AsyncClient, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    original = ledger_service._write_snapshot
    calls = {"n": 0}

    async def _flaky_write(*args: Any, **kwargs: Any) -> None:
        calls["n"] += 1
        if calls["n"] == 1:
            raise LedgerContentionError("tip moved")
        await original(*args, **kwargs)

    monkeypatch.setattr(ledger_service, "_write_snapshot", _flaky_write)
    resp = await _approve(async_client, data["id"])

    assert resp.status_code == 200
    assert calls["n"] == 2
    entries = await _entries(db_session)
    assert len(entries) == 1
    assert entries[0].balance_after == Decimal(14)


async def test_contention_exhausts_retries(
    async_client: AsyncClient, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    async def _always_contended(*args: object, **kwargs: object) -> None:
        raise LedgerContentionError("tip moved")

    monkeypatch.setattr(ledger_service, "_write_snapshot", _always_contended)
    resp = await _approve(async_client, data["id"])

    assert resp.status_code == 409
    assert await _status(db_session, data["id"]) == "pending"
    assert await _entries(db_session) == []


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


async def _approve_in_own_session(
    session_factory: async_sessionmaker[AsyncSession], request_id: str
) -> str:
    async with session_factory() as session:
        try:
            await leave_request_service.approve_request(session, ADMIN_AUTH, uuid.UUID(request_id), ApprovePayload())
        except ConflictError:
            return "conflict"
    return "approved"


async def test_concurrent_approvals_beyond_balance(
    async_client: AsyncClient,
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Two approvals of 2 days against a balance of 3: exactly one succeeds."""
    await _create_leave_type(async_client, quota=3)
    first = await _create_request(async_client, "2026-03-02", "2026-03-03")
    second = await _create_request(async_client, "2026-03-09", "2026-03-10")

    outcomes = await asyncio.gather(
        _approve_in_own_session(session_factory, first["id"]),
        _approve_in_own_session(session_factory, second["id"]),
    )

    assert sorted(outcomes) == ["approved", "conflict"]
    statuses = sorted([await _status(db_session, first["id"]), await _status(db_session, second["id"])])
    assert statuses == ["approved", "pending"]
    entries = await _entries(db_session)
    assert len(entries) == 1
    assert entries[0].balance_after == Decimal(1)
    assert (await _balance(async_client))["is_consistent"] is True


async def test_concurrent_double_approval_posts_once(
    async_client: AsyncClient,
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await _create_leave_type(async_client)
    data = await _create_request(async_client)

    outcomes = await asyncio.gather(
        _approve_in_own_session(session_factory, data["id"]),
        _approve_in_own_session(session_factory, data["id"]),
    )

    assert sorted(outcomes) == ["approved", "conflict"]
    assert len(await _entries(db_session, data["id"])) == 1


async def _create_in_own_session(
    session_factory: async_sessionmaker[AsyncSession], start: str, end: str
) -> str:
    payload = CreateLeaveRequestPayload.model_validate(
        {"employee_id": str(EMPLOYEE_ID), "leave_type": "earned", "start_date": start, "end_date": end}
    )
    async with session_factory() as session:
        try:
            await leave_request_service.create_request(session, ADMIN_AUTH, payload)
        except ConflictError:
            return "conflict"
    return "created"


async def test_concurrent_overlapping_creates(
    async_client: AsyncClient,
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Two overlapping requests for one employee filed at once: exactly one is recorded."""
    await _create_leave_type(async_client)

    outcomes = await asyncio.gather(
        _create_in_own_session(session_factory, "2026-03-02", "2026-03-04"),
        _create_in_own_session(session_factory, "2026-03-03", "2026-03-05"),
    )

    assert sorted(outcomes) == ["conflict", "created"]
    count = await db_session.execute(select(func.count()).select_from(LeaveRequest))
    assert count.scalar_one() == 1
