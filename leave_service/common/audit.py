"""Audit event outbox model and async helper for recording leave mutations.

Events are written in the same transaction as the mutation they describe,
so a rolled-back operation leaves no audit trace. Storage and retention of
the trail belong to the external audit collaborator, which reads this table.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leave_service.common.constants import AuditAction, LeaveStatus
from leave_service.database import Base


# ── Immutable audit-event table ─────────────────────────────────────

class LeaveAuditEvent(Base):
    """One row per committed submit / approve / reject / cancel / adjust."""

    __tablename__ = "leave_audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    leave_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="leave_audit_action"), nullable=False,
    )
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    before_status: Mapped[Optional[LeaveStatus]] = mapped_column(
        Enum(LeaveStatus, name="leave_status"), nullable=True,
    )
    after_status: Mapped[Optional[LeaveStatus]] = mapped_column(
        Enum(LeaveStatus, name="leave_status"), nullable=True,
    )
    details: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_leave_audit_events_request", "request_id"),
        Index("ix_leave_audit_events_employee", "employee_id", "leave_type_id"),
        Index("ix_leave_audit_events_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<LeaveAuditEvent {self.action.value} request={self.request_id} "
            f"by {self.actor}>"
        )


# ── Helper to create an entry ───────────────────────────────────────

async def emit_audit_event(
    session: AsyncSession,
    *,
    action: AuditAction,
    employee_id: uuid.UUID,
    actor: Any,
    request_id: Optional[uuid.UUID] = None,
    leave_type_id: Optional[uuid.UUID] = None,
    before_status: Optional[LeaveStatus] = None,
    after_status: Optional[LeaveStatus] = None,
    details: Optional[dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> LeaveAuditEvent:
    """
    Create and flush an audit event.

    Args:
        session: Async SQLAlchemy session (inside the caller's transaction).
        action: submit | approve | reject | cancel | adjust.
        employee_id: Employee whose leave or balance changed.
        actor: Who performed the action (UUID or ``"system"``).
        request_id: Affected leave request, if any.
        leave_type_id: Affected leave type.
        before_status: Request status before the transition.
        after_status: Request status after the transition.
        details: Free-form JSON payload (amounts, reasons).
        timestamp: Event time; defaults to now (UTC).
    """
    event = LeaveAuditEvent(
        request_id=request_id,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        action=action,
        actor=str(actor),
        before_status=before_status,
        after_status=after_status,
        details=details,
        timestamp=timestamp or datetime.now(timezone.utc),
    )
    session.add(event)
    await session.flush()
    return event
