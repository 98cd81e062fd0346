"""Notification trigger service — outbox writes and cross-module helper dispatchers.

This service only records that a notification should go out. Delivery
(email, push, in-app) is done by an external collaborator that polls
``get_undispatched`` and acknowledges with ``mark_dispatched``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.common.constants import NotificationTriggerType
from leave_service.notifications.models import NotificationTrigger

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification trigger operations."""

    @staticmethod
    async def trigger(
        db: AsyncSession,
        *,
        type: NotificationTriggerType,
        employee_id: uuid.UUID,
        request_id: uuid.UUID,
        recipients: Iterable[uuid.UUID | str],
    ) -> NotificationTrigger:
        """Record a notification trigger and flush to DB."""
        trigger = NotificationTrigger(
            type=type,
            employee_id=employee_id,
            request_id=request_id,
            recipients=[str(r) for r in recipients],
        )
        db.add(trigger)
        await db.flush()
        logger.debug(
            "Notification %s queued for request %s (%d recipient(s))",
            type.value, request_id, len(trigger.recipients),
        )
        return trigger

    @staticmethod
    async def get_undispatched(
        db: AsyncSession,
        *,
        limit: int = 100,
    ) -> Sequence[NotificationTrigger]:
        """Return triggers not yet handed to the delivery collaborator, oldest first."""
        result = await db.execute(
            select(NotificationTrigger)
            .where(NotificationTrigger.dispatched_at.is_(None))
            .order_by(NotificationTrigger.created_at.asc())
            .limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def mark_dispatched(
        db: AsyncSession,
        trigger_ids: Sequence[uuid.UUID],
    ) -> int:
        """Acknowledge delivery of the given triggers. Returns count updated."""
        if not trigger_ids:
            return 0
        result = await db.execute(
            update(NotificationTrigger)
            .where(
                NotificationTrigger.id.in_(trigger_ids),
                NotificationTrigger.dispatched_at.is_(None),
            )
            .values(dispatched_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]


# ── Cross-module helper dispatchers ─────────────────────────────────
# Imported by the leave workflow. They accept the ORM object directly
# to avoid tight schema coupling.


async def notify_leave_submitted(
    db: AsyncSession,
    leave_request,  # leave_service.leave.models.LeaveRequest
    approver_ids: Iterable[uuid.UUID],
) -> NotificationTrigger:
    """Tell the approvers that a new leave request needs review."""
    return await NotificationService.trigger(
        db,
        type=NotificationTriggerType.leave_submitted,
        employee_id=leave_request.employee_id,
        request_id=leave_request.id,
        recipients=approver_ids,
    )


async def notify_leave_approved(
    db: AsyncSession,
    leave_request,  # leave_service.leave.models.LeaveRequest
) -> NotificationTrigger:
    """Tell the employee that their leave request was approved."""
    return await NotificationService.trigger(
        db,
        type=NotificationTriggerType.leave_approved,
        employee_id=leave_request.employee_id,
        request_id=leave_request.id,
        recipients=[leave_request.employee_id],
    )


async def notify_leave_rejected(
    db: AsyncSession,
    leave_request,  # leave_service.leave.models.LeaveRequest
) -> NotificationTrigger:
    """Tell the employee that their leave request was rejected."""
    return await NotificationService.trigger(
        db,
        type=NotificationTriggerType.leave_rejected,
        employee_id=leave_request.employee_id,
        request_id=leave_request.id,
        recipients=[leave_request.employee_id],
    )
