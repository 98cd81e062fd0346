"""Leave request lifecycle tests — submit, approve, reject, cancel.

Covers balance accounting through every transition, terminal-state
protection, negative-balance policy, atomicity of failed transitions, and
the audit / notification rows each transition writes.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.common.audit import LeaveAuditEvent
from leave_service.common.constants import (
    LEAVE_TRANSITIONS,
    AuditAction,
    LeaveStatus,
    NotificationTriggerType,
)
from leave_service.common.exceptions import (
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundException,
    ValidationException,
)
from leave_service.leave.balances import BalanceStore
from leave_service.leave.models import LeaveBalance, LeaveRequest
from leave_service.leave.service import LeaveService
from leave_service.notifications.models import NotificationTrigger
from tests.conftest import seed_balance, seed_leave_type


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _setup(
    db: AsyncSession,
    accrued: Decimal = Decimal("10"),
    **leave_type_kwargs,
):
    lt = await seed_leave_type(db, **leave_type_kwargs)
    emp = uuid.uuid4()
    await seed_balance(db, emp, lt.id, accrued)
    return lt, emp


async def _count(db: AsyncSession, model, *criteria) -> int:
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return (await db.execute(query)).scalar_one()


async def _submit(db: AsyncSession, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 4), **kwargs):
    return await LeaveService.submit(db, emp, lt.id, start, end, **kwargs)


# ═════════════════════════════════════════════════════════════════════
# 1. Submit
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:

    async def test_submit_reserves_days(self, db: AsyncSession):
        lt, emp = await _setup(db)

        req = await _submit(db, emp, lt, reason="Family trip")

        assert req.status == LeaveStatus.pending
        assert req.days == Decimal("3")
        assert req.reason == "Family trip"
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("3")
        assert bal.available == Decimal("7")

    async def test_partial_day_request(self, db: AsyncSession):
        lt, emp = await _setup(db)

        req = await LeaveService.submit(
            db, emp, lt.id, date(2026, 3, 2), date(2026, 3, 2), True, Decimal("4"),
        )

        assert req.days == Decimal("0.5")
        assert req.is_partial_day is True
        assert req.partial_hours == Decimal("4")
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.available == Decimal("9.5")

    async def test_quarter_hour_partial_day_stored_exactly(self, db: AsyncSession):
        lt, emp = await _setup(db)

        req = await LeaveService.submit(
            db, emp, lt.id, date(2026, 3, 2), date(2026, 3, 2), True, Decimal("2.25"),
        )

        assert req.days == Decimal("0.28125")
        assert req.partial_hours == Decimal("2.25")
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("0.28125")
        assert bal.available == Decimal("9.71875")

    async def test_first_reservation_races_balance_creation(
        self, db: AsyncSession, monkeypatch,
    ):
        """Another writer opens the balance row between the locked read and the insert."""
        lt = await seed_leave_type(
            db, code="UL", name="Unpaid Leave", allow_negative_balance=True,
        )
        emp = uuid.uuid4()
        real_load = BalanceStore._load
        raced = []

        async def load_then_race(session, employee_id, leave_type_id, *, for_update=False):
            if for_update and not raced:
                raced.append(True)
                session.add(LeaveBalance(
                    employee_id=employee_id,
                    leave_type_id=leave_type_id,
                    accrued=Decimal("0"),
                    taken=Decimal("0"),
                    pending=Decimal("1"),
                ))
                await session.flush()
                return None
            return await real_load(session, employee_id, leave_type_id, for_update=for_update)

        monkeypatch.setattr(BalanceStore, "_load", staticmethod(load_then_race))

        req = await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 3))

        assert raced == [True]
        assert req.status == LeaveStatus.pending
        monkeypatch.undo()
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("3")
        assert bal.available == Decimal("-3")
        assert await _count(db, LeaveBalance) == 1

    async def test_iso_string_dates(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await LeaveService.submit(db, emp, lt.id, "2026-03-02", "2026-03-03")
        assert req.start_date == date(2026, 3, 2)
        assert req.days == Decimal("2")

    async def test_unknown_leave_type(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveService.submit(
                db, uuid.uuid4(), uuid.uuid4(), date(2026, 3, 2), date(2026, 3, 2),
            )

    async def test_inactive_leave_type(self, db: AsyncSession):
        lt, emp = await _setup(db, is_active=False)

        with pytest.raises(ValidationException) as exc_info:
            await _submit(db, emp, lt)
        assert "leave_type_id" in exc_info.value.errors
        assert await _count(db, LeaveRequest) == 0

    async def test_end_before_start(self, db: AsyncSession):
        lt, emp = await _setup(db)

        with pytest.raises(ValidationException):
            await _submit(db, emp, lt, start=date(2026, 3, 4), end=date(2026, 3, 2))

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("0")

    async def test_attachment_required(self, db: AsyncSession):
        lt, emp = await _setup(db, code="ML", name="Medical Leave", requires_attachment=True)

        with pytest.raises(ValidationException) as exc_info:
            await _submit(db, emp, lt)
        assert "attachment_url" in exc_info.value.errors

        req = await _submit(db, emp, lt, attachment_url="https://files.example.com/note.pdf")
        assert req.attachment_url == "https://files.example.com/note.pdf"

    async def test_negative_balance_rejected(self, db: AsyncSession):
        """available=5, 6-day range, negatives disallowed → nothing changes."""
        lt, emp = await _setup(db, accrued=Decimal("5"))

        with pytest.raises(InsufficientBalanceError):
            await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 7))

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.available == Decimal("5")
        assert bal.pending == Decimal("0")
        assert await _count(db, LeaveRequest) == 0
        assert await _count(db, NotificationTrigger) == 0

    async def test_negative_balance_allowed_path(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("5"), allow_negative_balance=True)

        req = await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 7))
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("6")
        assert bal.available == Decimal("-1")

        await LeaveService.approve(db, req.id, uuid.uuid4())

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.taken == Decimal("6")
        assert bal.pending == Decimal("0")
        assert bal.available == Decimal("-1")
        assert bal.is_negative is True

    async def test_pending_accounting_across_requests(self, db: AsyncSession):
        """pending equals the sum of days over Pending requests."""
        lt, emp = await _setup(db, accrued=Decimal("20"))
        first = await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 3))
        await _submit(db, emp, lt, start=date(2026, 4, 6), end=date(2026, 4, 8))
        await LeaveService.submit(db, emp, lt.id, date(2026, 5, 4), date(2026, 5, 4), True, 6)
        await LeaveService.cancel(db, first.id, emp)

        pending_sum = (
            await db.execute(
                select(func.sum(LeaveRequest.days)).where(
                    LeaveRequest.employee_id == emp,
                    LeaveRequest.status == LeaveStatus.pending,
                )
            )
        ).scalar_one()
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal(pending_sum) == Decimal("3.75")

    async def test_submit_failure_rolls_back_reservation(self, db: AsyncSession):
        """If emitting fails after the reservation, nothing is kept."""
        lt, emp = await _setup(db)

        with patch(
            "leave_service.leave.service.notify_leave_submitted",
            new_callable=AsyncMock,
            side_effect=RuntimeError("outbox unavailable"),
        ):
            with pytest.raises(RuntimeError):
                await _submit(db, emp, lt)

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("0")
        assert bal.available == Decimal("10")
        assert await _count(db, LeaveRequest) == 0
        assert await _count(db, LeaveAuditEvent, LeaveAuditEvent.action == AuditAction.submit) == 0

    async def test_submit_events(self, db: AsyncSession):
        lt, emp = await _setup(db)
        approvers = [uuid.uuid4(), uuid.uuid4()]

        req = await _submit(db, emp, lt, approver_ids=approvers)

        event = (
            await db.execute(
                select(LeaveAuditEvent).where(LeaveAuditEvent.request_id == req.id)
            )
        ).scalars().one()
        assert event.action == AuditAction.submit
        assert event.actor == str(emp)
        assert event.before_status is None
        assert event.after_status == LeaveStatus.pending

        trigger = (
            await db.execute(
                select(NotificationTrigger).where(NotificationTrigger.request_id == req.id)
            )
        ).scalars().one()
        assert trigger.type == NotificationTriggerType.leave_submitted
        assert trigger.recipients == [str(a) for a in approvers]


# ═════════════════════════════════════════════════════════════════════
# 2. Approve
# ═════════════════════════════════════════════════════════════════════


class TestApprove:

    async def test_approve_moves_pending_to_taken(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        manager = uuid.uuid4()

        out = await LeaveService.approve(db, req.id, manager)

        assert out.status == LeaveStatus.approved
        assert out.approved_by == manager
        assert out.approved_at is not None
        assert out.rejected_by is None
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.taken == Decimal("3")
        assert bal.pending == Decimal("0")
        assert bal.available == Decimal("7")

    async def test_double_approve(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        first = await LeaveService.approve(db, req.id, uuid.uuid4())

        with pytest.raises(InvalidStateError) as exc_info:
            await LeaveService.approve(db, req.id, uuid.uuid4())
        assert exc_info.value.current_status == "approved"

        again = await LeaveService.get_request(db, req.id)
        assert again.approved_by == first.approved_by
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.taken == Decimal("3")
        assert bal.pending == Decimal("0")

    async def test_approve_unknown_request(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveService.approve(db, uuid.uuid4(), uuid.uuid4())

    async def test_lost_race_has_no_balance_effect(self, db: AsyncSession):
        """Another writer terminates the request after this session loaded it."""
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.get_request(db, req.id)

        await db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == req.id)
            .values(status=LeaveStatus.cancelled)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await LeaveService.approve(db, req.id, uuid.uuid4())
        assert exc_info.value.current_status == "cancelled"

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.taken == Decimal("0")
        assert bal.pending == Decimal("3")
        assert await _count(db, LeaveAuditEvent, LeaveAuditEvent.action == AuditAction.approve) == 0

    async def test_approve_notifies_employee(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.approve(db, req.id, uuid.uuid4())

        trigger = (
            await db.execute(
                select(NotificationTrigger).where(
                    NotificationTrigger.type == NotificationTriggerType.leave_approved
                )
            )
        ).scalars().one()
        assert trigger.recipients == [str(emp)]
        assert await _count(db, LeaveAuditEvent, LeaveAuditEvent.request_id == req.id) == 2


# ═════════════════════════════════════════════════════════════════════
# 3. Reject
# ═════════════════════════════════════════════════════════════════════


class TestReject:

    async def test_reject_returns_days(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        manager = uuid.uuid4()

        out = await LeaveService.reject(db, req.id, manager, "Team offsite that week")

        assert out.status == LeaveStatus.rejected
        assert out.rejected_by == manager
        assert out.rejection_reason == "Team offsite that week"
        assert out.approved_by is None
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.available == Decimal("10")
        assert bal.taken == Decimal("0")

    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_reject_requires_reason(self, db: AsyncSession, reason):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)

        with pytest.raises(ValidationException):
            await LeaveService.reject(db, req.id, uuid.uuid4(), reason)

        still = await LeaveService.get_request(db, req.id)
        assert still.status == LeaveStatus.pending
        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.pending == Decimal("3")

    async def test_reject_after_approve(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.approve(db, req.id, uuid.uuid4())

        with pytest.raises(InvalidStateError):
            await LeaveService.reject(db, req.id, uuid.uuid4(), "Changed my mind")

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.taken == Decimal("3")

    async def test_reject_event_carries_reason(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.reject(db, req.id, uuid.uuid4(), "Coverage gap")

        event = (
            await db.execute(
                select(LeaveAuditEvent).where(LeaveAuditEvent.action == AuditAction.reject)
            )
        ).scalars().one()
        assert event.before_status == LeaveStatus.pending
        assert event.after_status == LeaveStatus.rejected
        assert event.details == {"reason": "Coverage gap"}
        assert await _count(
            db, NotificationTrigger,
            NotificationTrigger.type == NotificationTriggerType.leave_rejected,
        ) == 1


# ═════════════════════════════════════════════════════════════════════
# 4. Cancel
# ═════════════════════════════════════════════════════════════════════


class TestCancel:

    async def test_round_trip_cancel_restores_available(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("7.25"))
        before = await BalanceStore.get_balance(db, emp, lt.id)

        req = await LeaveService.submit(
            db, emp, lt.id, date(2026, 3, 2), date(2026, 3, 2), True, Decimal("2.5"),
        )
        out = await LeaveService.cancel(db, req.id, emp)

        assert out.status == LeaveStatus.cancelled
        assert out.cancelled_by == emp
        after = await BalanceStore.get_balance(db, emp, lt.id)
        assert after.available == before.available
        assert after.pending == Decimal("0")

    async def test_cancel_terminal_request(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.reject(db, req.id, uuid.uuid4(), "No cover")

        with pytest.raises(InvalidStateError):
            await LeaveService.cancel(db, req.id, emp)

    @pytest.mark.parametrize("terminal", [
        LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled,
    ])
    async def test_terminal_requests_accept_no_transition(
        self, db: AsyncSession, terminal: LeaveStatus,
    ):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        if terminal == LeaveStatus.approved:
            await LeaveService.approve(db, req.id, uuid.uuid4())
        elif terminal == LeaveStatus.rejected:
            await LeaveService.reject(db, req.id, uuid.uuid4(), "No cover")
        else:
            await LeaveService.cancel(db, req.id, emp)
        assert not LEAVE_TRANSITIONS[terminal]
        before = await BalanceStore.get_balance(db, emp, lt.id)

        for action in (
            lambda: LeaveService.approve(db, req.id, uuid.uuid4()),
            lambda: LeaveService.reject(db, req.id, uuid.uuid4(), "Late"),
            lambda: LeaveService.cancel(db, req.id, emp),
        ):
            with pytest.raises(InvalidStateError) as exc_info:
                await action()
            assert exc_info.value.current_status == terminal.value

        assert (await LeaveService.get_request(db, req.id)).status == terminal
        assert await BalanceStore.get_balance(db, emp, lt.id) == before

    async def test_cancel_sends_no_notification(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await LeaveService.cancel(db, req.id, emp)

        assert await _count(db, NotificationTrigger) == 1  # the submit trigger
        assert await _count(
            db, LeaveAuditEvent, LeaveAuditEvent.action == AuditAction.cancel,
        ) == 1

    async def test_balance_invariant_holds_throughout(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("15"))
        a = await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 3))
        b = await _submit(db, emp, lt, start=date(2026, 4, 1), end=date(2026, 4, 3))
        c = await _submit(db, emp, lt, start=date(2026, 5, 1), end=date(2026, 5, 1))
        await LeaveService.approve(db, a.id, uuid.uuid4())
        await LeaveService.reject(db, b.id, uuid.uuid4(), "Busy season")
        await BalanceStore.adjust(db, emp, lt.id, 2, "Long service bonus", uuid.uuid4())

        bal = await BalanceStore.get_balance(db, emp, lt.id)
        assert bal.available == bal.accrued - bal.taken - bal.pending
        assert (bal.accrued, bal.taken, bal.pending) == (
            Decimal("17"), Decimal("2"), Decimal("1"),
        )
        assert (await LeaveService.get_request(db, c.id)).status == LeaveStatus.pending


# ═════════════════════════════════════════════════════════════════════
# 5. Queries
# ═════════════════════════════════════════════════════════════════════


class TestQueries:

    async def test_list_requests_filters_and_paginates(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("30"))
        other = uuid.uuid4()
        await seed_balance(db, other, lt.id)
        for month in (3, 4, 5):
            await _submit(db, emp, lt, start=date(2026, month, 2), end=date(2026, month, 2))
        await _submit(db, other, lt)

        page = await LeaveService.list_requests(db, employee_id=emp, page=1, page_size=2)

        assert len(page["data"]) == 2
        assert page["meta"].total == 3
        assert page["meta"].has_next is True
        assert all(r.employee_id == emp for r in page["data"])

    async def test_list_requests_by_status(self, db: AsyncSession):
        lt, emp = await _setup(db)
        req = await _submit(db, emp, lt)
        await _submit(db, emp, lt, start=date(2026, 4, 1), end=date(2026, 4, 1))
        await LeaveService.approve(db, req.id, uuid.uuid4())

        page = await LeaveService.list_requests(db, status=LeaveStatus.approved)
        assert [r.id for r in page["data"]] == [req.id]

    async def test_get_request_unknown(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveService.get_request(db, uuid.uuid4())

    async def test_leave_types_active_only(self, db: AsyncSession):
        await seed_leave_type(db)
        await seed_leave_type(db, code="OL", name="Old Leave", is_active=False)

        active = await LeaveService.get_leave_types(db)
        everything = await LeaveService.get_leave_types(db, is_active=None)

        assert [t.code for t in active] == ["AL"]
        assert {t.code for t in everything} == {"AL", "OL"}

    async def test_calendar_shows_approved_overlapping_month(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("30"))
        spanning = await _submit(db, emp, lt, start=date(2026, 2, 26), end=date(2026, 3, 3))
        pending = await _submit(db, emp, lt, start=date(2026, 3, 10), end=date(2026, 3, 10))
        april = await _submit(db, emp, lt, start=date(2026, 4, 6), end=date(2026, 4, 6))
        await LeaveService.approve(db, spanning.id, uuid.uuid4())
        await LeaveService.approve(db, april.id, uuid.uuid4())

        cal = await LeaveService.get_calendar(db, 2026, 3)

        assert cal.total_entries == 1
        assert cal.entries[0].id == spanning.id
        assert cal.entries[0].leave_type_name == "Annual Leave"
        assert pending.id not in {e.id for e in cal.entries}

    async def test_calendar_invalid_month(self, db: AsyncSession):
        with pytest.raises(ValidationException):
            await LeaveService.get_calendar(db, 2026, 13)

    async def test_overview(self, db: AsyncSession):
        lt, emp = await _setup(db, accrued=Decimal("30"))
        overdrawn = uuid.uuid4()
        await seed_balance(db, overdrawn, lt.id, Decimal("1"))
        await BalanceStore.adjust(db, overdrawn, lt.id, -3, "Clawback", "system")

        today = date(2026, 3, 3)
        current = await _submit(db, emp, lt, start=date(2026, 3, 2), end=date(2026, 3, 4))
        future = await _submit(db, emp, lt, start=date(2026, 3, 20), end=date(2026, 3, 21))
        await _submit(db, emp, lt, start=date(2026, 4, 1), end=date(2026, 4, 1))
        await LeaveService.approve(db, current.id, uuid.uuid4())
        await LeaveService.approve(db, future.id, uuid.uuid4())

        out = await LeaveService.get_overview(db, today)

        assert out.employees_on_leave == 1
        assert out.pending_approvals == 1
        assert out.negative_balances == 1
        assert [u.id for u in out.upcoming_leave] == [future.id]
