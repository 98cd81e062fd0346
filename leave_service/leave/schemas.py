"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_service.common.constants import AccrualMethod, LeaveCategory, LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    category: LeaveCategory
    accrual_method: AccrualMethod
    days_per_year: Decimal
    carry_over_days: Optional[Decimal] = None
    allow_negative_balance: bool = False
    requires_attachment: bool = False
    is_paid: bool = True
    is_active: bool = True


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type with derived available / is_negative."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    accrued: Decimal
    taken: Decimal
    pending: Decimal
    available: Decimal
    is_negative: bool


class BalanceAdjustRequest(BaseModel):
    """Manual balance adjustment payload."""

    leave_type_id: uuid.UUID
    amount: Decimal = Field(..., description="Positive to credit, negative to debit")
    reason: str = Field(..., min_length=1, max_length=500)


class BalanceAdjustmentOut(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    amount: Decimal
    reason: str
    actor: str
    period: Optional[str] = None
    timestamp: datetime


# ═════════════════════════════════════════════════════════════════════
# Accrual / carry-over
# ═════════════════════════════════════════════════════════════════════


class AccrualPostRequest(BaseModel):
    """Scheduled accrual posting, sent by the external scheduler."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    period: str = Field(..., min_length=1, max_length=32, description="e.g. 2026-03")
    hours_worked: Optional[Decimal] = Field(None, ge=0)


class CarryOverRequest(BaseModel):
    """Year-end carry-over cap."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    cycle: str = Field(..., min_length=1, max_length=24, description="e.g. 2026")


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    is_partial_day: bool = False
    partial_hours: Optional[Decimal] = Field(None, ge=0, le=7)
    reason: Optional[str] = Field(None, max_length=1000)
    attachment_url: Optional[str] = Field(None, max_length=500)
    approver_ids: list[uuid.UUID] = Field(
        default_factory=list,
        description="Recipients of the leave_submitted notification",
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    is_partial_day: bool = False
    partial_hours: Optional[Decimal] = None
    days: Decimal
    status: LeaveStatus
    reason: Optional[str] = None
    attachment_url: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Reject
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    reason: str = Field(..., max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Overview / Calendar
# ═════════════════════════════════════════════════════════════════════


class UpcomingLeave(BaseModel):
    """Approved leave starting today or later."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    start_date: date
    end_date: date
    days: Decimal


class LeaveOverviewOut(BaseModel):
    """Dashboard summary."""

    employees_on_leave: int
    pending_approvals: int
    negative_balances: int
    upcoming_leave: list[UpcomingLeave]


class LeaveCalendarEntry(BaseModel):
    """Single approved leave in the month calendar."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    start_date: date
    end_date: date
    days: Decimal


class LeaveCalendarOut(BaseModel):
    """Calendar view for a given month."""

    month: int
    year: int
    entries: list[LeaveCalendarEntry]
    total_entries: int = 0
