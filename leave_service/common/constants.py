"""Enums and constants for the leave service — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Leave type configuration ────────────────────────────────────────

class LeaveCategory(str, enum.Enum):
    annual = "annual"
    sick = "sick"
    family = "family"
    unpaid = "unpaid"
    custom = "custom"


class AccrualMethod(str, enum.Enum):
    monthly = "monthly"
    per_hour = "per_hour"
    upfront = "upfront"


# ── Leave requests ──────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Allowed transitions; terminal states have none.
LEAVE_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
    ),
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


def sources_of(target: LeaveStatus) -> frozenset[LeaveStatus]:
    """Statuses a request may move to *target* from."""
    return frozenset(
        status for status, exits in LEAVE_TRANSITIONS.items() if target in exits
    )


# ── Events ──────────────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    submit = "submit"
    approve = "approve"
    reject = "reject"
    cancel = "cancel"
    adjust = "adjust"


class NotificationTriggerType(str, enum.Enum):
    leave_submitted = "leave_submitted"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"


# ── Misc constants ──────────────────────────────────────────────────

SYSTEM_ACTOR = "system"
DAYS_SCALE = 6                    # decimal places kept for day quantities
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
