"""Notification trigger ORM model — outbox read by the delivery collaborator."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_service.common.constants import NotificationTriggerType
from leave_service.database import Base


class NotificationTrigger(Base):
    __tablename__ = "leave_notification_triggers"
    __table_args__ = (
        sa.Index("ix_leave_notification_triggers_undispatched", "dispatched_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    type: Mapped[NotificationTriggerType] = mapped_column(
        sa.Enum(NotificationTriggerType, name="leave_notification_type"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    recipients: Mapped[list] = mapped_column(JSONB, nullable=False)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
