"""Common module — shared utilities for the leave service."""

from leave_service.common.audit import LeaveAuditEvent, emit_audit_event
from leave_service.common.constants import (
    DAYS_SCALE,
    DEFAULT_PAGE_SIZE,
    LEAVE_TRANSITIONS,
    MAX_PAGE_SIZE,
    SYSTEM_ACTOR,
    AccrualMethod,
    AuditAction,
    LeaveCategory,
    LeaveStatus,
    NotificationTriggerType,
    sources_of,
)
from leave_service.common.exceptions import (
    AppException,
    ConflictError,
    InsufficientBalanceError,
    InvalidStateError,
    LedgerImmutableError,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from leave_service.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "LeaveAuditEvent",
    "emit_audit_event",
    # Constants / Enums
    "AccrualMethod",
    "AuditAction",
    "LeaveCategory",
    "LeaveStatus",
    "NotificationTriggerType",
    "LEAVE_TRANSITIONS",
    "sources_of",
    "SYSTEM_ACTOR",
    "DAYS_SCALE",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "InsufficientBalanceError",
    "InvalidStateError",
    "LedgerImmutableError",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
