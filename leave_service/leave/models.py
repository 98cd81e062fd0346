"""Leave ORM models: LeaveType, LeaveBalance, LeaveRequest, BalanceAdjustment."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_service.common.constants import (
    DAYS_SCALE,
    AccrualMethod,
    LeaveCategory,
    LeaveStatus,
)
from leave_service.common.exceptions import LedgerImmutableError
from leave_service.database import Base

# Day quantities: fractional days down to half an hour of an 8-hour day.
Days = sa.Numeric(12, DAYS_SCALE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(Base):
    """Leave policy. Owned by the configuration collaborator; read-only here."""

    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    category: Mapped[LeaveCategory] = mapped_column(
        sa.Enum(LeaveCategory, name="leave_category"), nullable=False,
    )
    accrual_method: Mapped[AccrualMethod] = mapped_column(
        sa.Enum(AccrualMethod, name="leave_accrual_method"), nullable=False,
    )
    days_per_year: Mapped[Decimal] = mapped_column(Days, default=Decimal("0"))
    # None = unlimited carry-over
    carry_over_days: Mapped[Optional[Decimal]] = mapped_column(Days)
    allow_negative_balance: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    requires_attachment: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    balances: Mapped[list[LeaveBalance]] = relationship(back_populates="leave_type")
    requests: Mapped[list[LeaveRequest]] = relationship(back_populates="leave_type")


class LeaveBalance(Base):
    """Authoritative accrued / taken / pending figures for one employee and leave type.

    ``available`` is derived, never stored. Rows are mutated only through
    ``BalanceStore.adjust`` / ``reserve`` / ``release``; every flush bumps
    ``version`` so a concurrent writer holding a stale row fails.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "leave_type_id", name="uq_leave_balance"),
        sa.CheckConstraint("taken >= 0", name="taken_non_negative"),
        sa.CheckConstraint("pending >= 0", name="pending_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    accrued: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    taken: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    pending: Mapped[Decimal] = mapped_column(Days, nullable=False, default=Decimal("0"))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(back_populates="balances")

    @hybrid_property
    def available(self) -> Decimal:
        return self.accrued - self.taken - self.pending

    @hybrid_property
    def is_negative(self) -> bool:
        return self.available < 0


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_employee_type", "employee_id", "leave_type_id"),
        sa.Index("ix_leave_requests_status", "status"),
        sa.CheckConstraint("end_date >= start_date", name="dates_ordered"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_partial_day: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    partial_hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 4))
    # Frozen at submission
    days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachment_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(back_populates="requests")


class BalanceAdjustment(Base):
    """Append-only ledger entry; the running sum of ``amount`` is ``accrued``."""

    __tablename__ = "balance_adjustments"
    __table_args__ = (
        sa.Index("ix_balance_adjustments_key", "employee_id", "leave_type_id", "id"),
        # Scheduled accruals are posted at most once per period.
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", "period",
            name="uq_balance_adjustment_period",
        ),
    )

    # Integer key doubles as the append order.
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Days, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    actor: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    # Set only for scheduled accrual / carry-over entries, e.g. "2026-03".
    period: Mapped[Optional[str]] = mapped_column(sa.String(32))
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )


@event.listens_for(BalanceAdjustment, "before_update")
def _reject_ledger_update(mapper, connection, target: BalanceAdjustment) -> None:
    raise LedgerImmutableError(target.id)


@event.listens_for(BalanceAdjustment, "before_delete")
def _reject_ledger_delete(mapper, connection, target: BalanceAdjustment) -> None:
    raise LedgerImmutableError(target.id)
