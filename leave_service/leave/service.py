"""Leave service layer — request lifecycle, leave types, overview and calendar.

Business logic:
  - Submission: leave type check, day calculation, balance reservation
  - Approve / reject / cancel: compare-and-set on ``status`` plus release
  - Every transition writes its audit event and notification trigger in the
    same savepoint as the balance change, so a failure leaves no trace
"""

from __future__ import annotations

import logging
import uuid
from calendar import monthrange
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_service.common.audit import emit_audit_event
from leave_service.common.constants import (
    DEFAULT_PAGE_SIZE,
    LEAVE_TRANSITIONS,
    AuditAction,
    LeaveStatus,
    sources_of,
)
from leave_service.common.exceptions import (
    InvalidStateError,
    NotFoundException,
    ValidationException,
)
from leave_service.common.pagination import paginate
from leave_service.config import settings
from leave_service.leave.balances import BalanceStore
from leave_service.leave.days import as_date, compute_days
from leave_service.leave.models import LeaveBalance, LeaveRequest, LeaveType
from leave_service.leave.schemas import (
    LeaveCalendarEntry,
    LeaveCalendarOut,
    LeaveOverviewOut,
    LeaveRequestOut,
    LeaveTypeOut,
    UpcomingLeave,
)
from leave_service.notifications.service import (
    notify_leave_approved,
    notify_leave_rejected,
    notify_leave_submitted,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: types, requests, transitions, overview."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _build_request_response(req: LeaveRequest) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(req)

    @staticmethod
    async def _get_request_or_404(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest).where(LeaveRequest.id == request_id)
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    def _check_transition(leave_req: LeaveRequest, target: LeaveStatus, action: str) -> None:
        if target not in LEAVE_TRANSITIONS[leave_req.status]:
            raise InvalidStateError(leave_req.id, leave_req.status.value, action)

    @staticmethod
    async def _transition(
        db: AsyncSession,
        leave_req: LeaveRequest,
        target: LeaveStatus,
        action: str,
        **fields: Any,
    ) -> None:
        """Compare-and-set *leave_req* into *target*; only one caller can win."""
        result = await db.execute(
            update(LeaveRequest)
            .where(
                LeaveRequest.id == leave_req.id,
                LeaveRequest.status.in_(sources_of(target)),
            )
            .values(status=target, **fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = (
                await db.execute(
                    select(LeaveRequest.status).where(LeaveRequest.id == leave_req.id)
                )
            ).scalar_one()
            logger.warning(
                "Lost transition race on request %s: wanted %s, found %s",
                leave_req.id, target.value, current.value,
            )
            raise InvalidStateError(leave_req.id, current.value, action)
        await db.refresh(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Leave Types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        *,
        is_active: Optional[bool] = True,
    ) -> list[LeaveTypeOut]:
        """List leave types, optionally filtered by active status."""
        query = select(LeaveType).order_by(LeaveType.name)
        if is_active is not None:
            query = query.where(LeaveType.is_active.is_(is_active))
        result = await db.execute(query)
        return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

    @staticmethod
    async def get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        result = await db.execute(select(LeaveType).where(LeaveType.id == leave_type_id))
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        start_date: Union[date, str],
        end_date: Union[date, str],
        is_partial_day: bool = False,
        partial_hours: Optional[Decimal] = None,
        reason: Optional[str] = None,
        *,
        attachment_url: Optional[str] = None,
        approver_ids: Iterable[uuid.UUID] = (),
    ) -> LeaveRequestOut:
        """Submit a leave request and reserve its days.

        Steps:
          1. Leave type must exist and be active.
          2. Attachment present when the leave type requires one.
          3. Days computed from the range (or partial hours).
          4. Reserve against the balance, persist as Pending, emit events.

        Step 4 runs in one savepoint: if persisting or emitting fails, the
        reservation is rolled back with it.
        """
        leave_type = await LeaveService.get_leave_type(db, leave_type_id)
        if not leave_type.is_active:
            raise ValidationException(
                {"leave_type_id": [f"Leave type '{leave_type.name}' is not active."]}
            )
        if leave_type.requires_attachment and not attachment_url:
            raise ValidationException(
                {"attachment_url": [f"'{leave_type.name}' requires a supporting document."]}
            )

        days = compute_days(start_date, end_date, is_partial_day, partial_hours)
        request_id = uuid.uuid4()

        async with db.begin_nested():
            await BalanceStore.reserve(db, leave_type, employee_id, request_id, days)

            leave_req = LeaveRequest(
                id=request_id,
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                start_date=as_date(start_date, "start_date"),
                end_date=as_date(end_date, "end_date"),
                is_partial_day=is_partial_day,
                partial_hours=partial_hours if is_partial_day and partial_hours else None,
                days=days,
                reason=reason,
                attachment_url=attachment_url,
                status=LeaveStatus.pending,
            )
            db.add(leave_req)
            await db.flush()

            await emit_audit_event(
                db,
                action=AuditAction.submit,
                employee_id=employee_id,
                request_id=leave_req.id,
                leave_type_id=leave_type_id,
                actor=employee_id,
                before_status=None,
                after_status=LeaveStatus.pending,
                details={"days": str(days)},
            )
            await notify_leave_submitted(db, leave_req, approver_ids)

        logger.info(
            "Leave request %s submitted: employee=%s type=%s days=%s",
            leave_req.id, employee_id, leave_type.code, days,
        )
        return LeaveService._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject / Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Approve a Pending request. Moves its days from pending to taken."""
        leave_req = await LeaveService._get_request_or_404(db, request_id)
        LeaveService._check_transition(leave_req, LeaveStatus.approved, "approve")

        now = datetime.now(timezone.utc)
        async with db.begin_nested():
            await LeaveService._transition(
                db, leave_req, LeaveStatus.approved, "approve",
                approved_by=approver_id, approved_at=now,
            )
            await BalanceStore.release(
                db, leave_req.employee_id, leave_req.leave_type_id,
                leave_req.id, leave_req.days, credit=True,
            )
            await emit_audit_event(
                db,
                action=AuditAction.approve,
                employee_id=leave_req.employee_id,
                request_id=leave_req.id,
                leave_type_id=leave_req.leave_type_id,
                actor=approver_id,
                before_status=LeaveStatus.pending,
                after_status=LeaveStatus.approved,
                timestamp=now,
            )
            await notify_leave_approved(db, leave_req)

        logger.info("Leave request %s approved by %s", leave_req.id, approver_id)
        return LeaveService._build_request_response(leave_req)

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: Optional[str],
    ) -> LeaveRequestOut:
        """Reject a Pending request with a mandatory reason. Returns the days to available."""
        leave_req = await LeaveService._get_request_or_404(db, request_id)
        if reason is None or not reason.strip():
            raise ValidationException(
                {"reason": ["A reason is required to reject a leave request."]}
            )
        LeaveService._check_transition(leave_req, LeaveStatus.rejected, "reject")

        now = datetime.now(timezone.utc)
        async with db.begin_nested():
            await LeaveService._transition(
                db, leave_req, LeaveStatus.rejected, "reject",
                rejected_by=approver_id, rejected_at=now,
                rejection_reason=reason.strip(),
            )
            await BalanceStore.release(
                db, leave_req.employee_id, leave_req.leave_type_id,
                leave_req.id, leave_req.days, credit=False,
            )
            await emit_audit_event(
                db,
                action=AuditAction.reject,
                employee_id=leave_req.employee_id,
                request_id=leave_req.id,
                leave_type_id=leave_req.leave_type_id,
                actor=approver_id,
                before_status=LeaveStatus.pending,
                after_status=LeaveStatus.rejected,
                details={"reason": leave_req.rejection_reason},
                timestamp=now,
            )
            await notify_leave_rejected(db, leave_req)

        logger.info("Leave request %s rejected by %s", leave_req.id, approver_id)
        return LeaveService._build_request_response(leave_req)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Cancel a Pending request. Whether *actor_id* may do so is checked upstream."""
        leave_req = await LeaveService._get_request_or_404(db, request_id)
        LeaveService._check_transition(leave_req, LeaveStatus.cancelled, "cancel")

        now = datetime.now(timezone.utc)
        async with db.begin_nested():
            await LeaveService._transition(
                db, leave_req, LeaveStatus.cancelled, "cancel",
                cancelled_by=actor_id, cancelled_at=now,
            )
            await BalanceStore.release(
                db, leave_req.employee_id, leave_req.leave_type_id,
                leave_req.id, leave_req.days, credit=False,
            )
            await emit_audit_event(
                db,
                action=AuditAction.cancel,
                employee_id=leave_req.employee_id,
                request_id=leave_req.id,
                leave_type_id=leave_req.leave_type_id,
                actor=actor_id,
                before_status=LeaveStatus.pending,
                after_status=LeaveStatus.cancelled,
                timestamp=now,
            )

        logger.info("Leave request %s cancelled by %s", leave_req.id, actor_id)
        return LeaveService._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequestOut:
        leave_req = await LeaveService._get_request_or_404(db, request_id)
        return LeaveService._build_request_response(leave_req)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> dict:
        """List leave requests, newest first, with pagination."""
        query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())
        if employee_id:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if status:
            query = query.where(LeaveRequest.status == status)
        if leave_type_id:
            query = query.where(LeaveRequest.leave_type_id == leave_type_id)

        rows, meta = await paginate(db, query, page=page, page_size=page_size)
        return {
            "data": [LeaveService._build_request_response(r) for r in rows],
            "meta": meta,
        }

    # ─────────────────────────────────────────────────────────────────
    # Overview
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_overview(
        db: AsyncSession,
        today: Optional[date] = None,
    ) -> LeaveOverviewOut:
        """Dashboard counts plus the next few approved leaves."""
        today = today or date.today()

        on_leave = (
            await db.execute(
                select(func.count(func.distinct(LeaveRequest.employee_id))).where(
                    LeaveRequest.status == LeaveStatus.approved,
                    LeaveRequest.start_date <= today,
                    LeaveRequest.end_date >= today,
                )
            )
        ).scalar_one()

        pending = (
            await db.execute(
                select(func.count()).select_from(LeaveRequest).where(
                    LeaveRequest.status == LeaveStatus.pending
                )
            )
        ).scalar_one()

        negative = (
            await db.execute(
                select(func.count()).select_from(LeaveBalance).where(
                    LeaveBalance.available < 0
                )
            )
        ).scalar_one()

        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date >= today,
            )
            .options(selectinload(LeaveRequest.leave_type))
            .order_by(LeaveRequest.start_date.asc())
            .limit(settings.UPCOMING_LEAVE_LIMIT)
        )
        upcoming = [
            UpcomingLeave(
                id=req.id,
                employee_id=req.employee_id,
                leave_type_id=req.leave_type_id,
                leave_type_name=req.leave_type.name,
                start_date=req.start_date,
                end_date=req.end_date,
                days=req.days,
            )
            for req in result.scalars().all()
        ]

        return LeaveOverviewOut(
            employees_on_leave=on_leave,
            pending_approvals=pending,
            negative_balances=negative,
            upcoming_leave=upcoming,
        )

    # ─────────────────────────────────────────────────────────────────
    # Calendar
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_calendar(
        db: AsyncSession,
        year: int,
        month: int,
    ) -> LeaveCalendarOut:
        """Approved leave overlapping the given month."""
        if not 1 <= month <= 12:
            raise ValidationException({"month": ["Month must be between 1 and 12."]})

        _, last_day = monthrange(year, month)
        month_start = date(year, month, 1)
        month_end = date(year, month, last_day)

        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date <= month_end,
                LeaveRequest.end_date >= month_start,
            )
            .options(selectinload(LeaveRequest.leave_type))
            .order_by(LeaveRequest.start_date)
        )

        entries = [
            LeaveCalendarEntry(
                id=req.id,
                employee_id=req.employee_id,
                leave_type_id=req.leave_type_id,
                leave_type_name=req.leave_type.name,
                start_date=req.start_date,
                end_date=req.end_date,
                days=req.days,
            )
            for req in result.scalars().all()
        ]

        return LeaveCalendarOut(
            month=month,
            year=year,
            entries=entries,
            total_entries=len(entries),
        )
