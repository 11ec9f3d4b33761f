"""Fire-and-forget notification of balance-affecting events.

The notification layer is outside every unit of work: events are published
after the commit, and a failing publisher is logged, never propagated.
"""

# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from leave_ledger.models.base import now_utc

logger = logging.getLogger(__name__)


class LeaveEvent(BaseModel):
    """Event broadcast to a company's listeners."""

    company_id: uuid.UUID
    event: str  # e.g. "leave:approved", "leave:balance_updated"
    payload: dict[str, Any] = Field(default_factory=dict)
    published_at: str = Field(default_factory=lambda: now_utc().isoformat())


@runtime_checkable
class NotificationService(Protocol):
    """Interface for the Notification layer."""

    async def publish(self, event: LeaveEvent) -> None:
        """Deliver an event to the company's room."""
        ...


class InMemoryNotificationService:
    """Records published events; used in development and tests."""

    def __init__(self) -> None:
        self.events: list[LeaveEvent] = []

    async def publish(self, event: LeaveEvent) -> None:
        self.events.append(event)


_notification_service: NotificationService = InMemoryNotificationService()


def get_notification_service() -> NotificationService:
    """Return the configured Notification layer."""
    return _notification_service


def set_notification_service(service: NotificationService) -> None:
    """Override the service (for testing or production wiring)."""
    global _notification_service
    _notification_service = service


async def notify(company_id: uuid.UUID, event: str, payload: dict[str, Any]) -> None:
    """Publish an event, logging and discarding any delivery failure."""
    try:
        await get_notification_service().publish(LeaveEvent(company_id=company_id, event=event, payload=payload))
    except Exception:
        logger.exception("Notification %s for company=%s failed", event, company_id)
