"""Leave balance store — the only code path that writes accrued / taken / pending.

Each (employee_id, leave_type_id) balance is one resource. Writers load the
row with ``SELECT ... FOR UPDATE`` so concurrent reservations queue behind
each other on PostgreSQL, and the ``version`` column rejects any write made
from a stale copy of the row.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from leave_service.common.audit import emit_audit_event
from leave_service.common.constants import AuditAction
from leave_service.common.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundException,
)
from leave_service.leave.ledger import AdjustmentLedger, Amount
from leave_service.leave.models import LeaveBalance, LeaveType
from leave_service.leave.schemas import LeaveBalanceOut

logger = logging.getLogger(__name__)


class BalanceStore:
    """Async balance operations keyed by (employee_id, leave_type_id)."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        result = await db.execute(select(LeaveType).where(LeaveType.id == leave_type_id))
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def _load(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalars().first()

    @staticmethod
    async def lock(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> LeaveBalance:
        """Lock an existing balance row for the rest of the transaction."""
        balance = await BalanceStore._load(db, employee_id, leave_type_id, for_update=True)
        if balance is None:
            raise NotFoundException("LeaveBalance", f"{employee_id}/{leave_type_id}")
        return balance

    @staticmethod
    async def lock_or_create(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> LeaveBalance:
        """Lock the balance row, creating an all-zero row on first use.

        A missing row cannot be locked, so two first writers may both try
        the insert. The loser's savepoint is rolled back and it locks the
        winner's row instead.
        """
        balance = await BalanceStore._load(db, employee_id, leave_type_id, for_update=True)
        if balance is not None:
            return balance

        try:
            async with db.begin_nested():
                balance = LeaveBalance(
                    employee_id=employee_id,
                    leave_type_id=leave_type_id,
                    accrued=Decimal("0"),
                    taken=Decimal("0"),
                    pending=Decimal("0"),
                )
                db.add(balance)
                await db.flush()
        except IntegrityError:
            logger.info(
                "Balance for employee=%s leave_type=%s opened concurrently; locking it",
                employee_id, leave_type_id,
            )
            balance = await BalanceStore._load(db, employee_id, leave_type_id, for_update=True)
            if balance is None:
                raise ConflictError("balance", f"{employee_id}/{leave_type_id}")
            return balance

        logger.info("Opened balance for employee=%s leave_type=%s", employee_id, leave_type_id)
        return balance

    @staticmethod
    def build_response(balance: LeaveBalance, leave_type: LeaveType) -> LeaveBalanceOut:
        """Project an ORM balance into the UI balance shape."""
        return LeaveBalanceOut(
            employee_id=balance.employee_id,
            leave_type_id=balance.leave_type_id,
            leave_type_name=leave_type.name,
            accrued=balance.accrued,
            taken=balance.taken,
            pending=balance.pending,
            available=balance.available,
            is_negative=balance.is_negative,
        )

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> LeaveBalanceOut:
        """Read projection for one balance."""
        leave_type = await BalanceStore._get_leave_type(db, leave_type_id)
        balance = await BalanceStore._load(db, employee_id, leave_type_id)
        if balance is None:
            raise NotFoundException("LeaveBalance", f"{employee_id}/{leave_type_id}")
        return BalanceStore.build_response(balance, leave_type)

    @staticmethod
    async def get_employee_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[LeaveBalanceOut]:
        """Balance query: one entry per leave type the employee holds a balance for."""
        return await BalanceStore.list_balances(db, employee_id=employee_id)

    @staticmethod
    async def list_balances(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        negative_only: bool = False,
    ) -> list[LeaveBalanceOut]:
        """Admin balance listing with optional filters."""
        query = (
            select(LeaveBalance)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .options(selectinload(LeaveBalance.leave_type))
            .order_by(LeaveBalance.employee_id, LeaveType.name)
        )
        if employee_id:
            query = query.where(LeaveBalance.employee_id == employee_id)
        if leave_type_id:
            query = query.where(LeaveBalance.leave_type_id == leave_type_id)
        if negative_only:
            query = query.where(LeaveBalance.available < 0)

        result = await db.execute(query.execution_options(populate_existing=True))
        return [
            BalanceStore.build_response(bal, bal.leave_type)
            for bal in result.scalars().all()
        ]

    # ─────────────────────────────────────────────────────────────────
    # Adjust
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def adjust(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        amount: Amount,
        reason: str,
        actor: Any,
        *,
        period: Optional[str] = None,
    ) -> LeaveBalanceOut:
        """Append a ledger entry and recompute ``accrued`` from the ledger.

        Never touches ``taken`` or ``pending``.
        """
        value = AdjustmentLedger.validate(amount, reason)
        leave_type = await BalanceStore._get_leave_type(db, leave_type_id)

        async with db.begin_nested():
            balance = await BalanceStore.lock_or_create(db, employee_id, leave_type_id)
            before = balance.accrued

            entry = await AdjustmentLedger.append(
                db, employee_id, leave_type_id, value, reason, actor, period=period,
            )
            balance.accrued = await AdjustmentLedger.total(db, employee_id, leave_type_id)
            await db.flush()

            await emit_audit_event(
                db,
                action=AuditAction.adjust,
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                actor=actor,
                details={
                    "adjustment_id": entry.id,
                    "amount": str(value),
                    "reason": entry.reason,
                    "accrued_before": str(before),
                    "accrued_after": str(balance.accrued),
                    "period": period,
                },
            )

        logger.info(
            "Adjusted balance employee=%s leave_type=%s by %s (accrued %s → %s)",
            employee_id, leave_type_id, value, before, balance.accrued,
        )
        return BalanceStore.build_response(balance, leave_type)

    # ─────────────────────────────────────────────────────────────────
    # Reserve / Release
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        leave_type: LeaveType,
        employee_id: uuid.UUID,
        request_id: uuid.UUID,
        days: Decimal,
    ) -> LeaveBalance:
        """Hold *days* against ``pending``.

        Fails with InsufficientBalanceError, without mutating anything, when
        the projected available would drop below zero and the leave type
        does not allow negative balances.
        """
        balance = await BalanceStore.lock_or_create(db, employee_id, leave_type.id)

        projected = balance.available - days
        if projected < 0 and not leave_type.allow_negative_balance:
            logger.info(
                "Reservation refused for request %s: available=%s requested=%s",
                request_id, balance.available, days,
            )
            raise InsufficientBalanceError(leave_type.name, balance.available, days)

        balance.pending += days
        try:
            await db.flush()
        except StaleDataError:
            logger.warning(
                "Concurrent update on balance employee=%s leave_type=%s; "
                "reservation for request %s lost the race",
                employee_id, leave_type.id, request_id,
            )
            raise InsufficientBalanceError(
                leave_type.name,
                balance.available,
                days,
                detail=(
                    f"The {leave_type.name} balance changed while this request was "
                    "being processed. Refresh the balance and try again."
                ),
            )

        logger.info(
            "Reserved %s day(s) for request %s (pending=%s available=%s)",
            days, request_id, balance.pending, balance.available,
        )
        return balance

    @staticmethod
    async def release(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        request_id: uuid.UUID,
        days: Decimal,
        credit: bool,
    ) -> LeaveBalance:
        """Drop a reservation; on approval (*credit*) the days move to ``taken``."""
        balance = await BalanceStore.lock_or_create(db, employee_id, leave_type_id)

        remaining = balance.pending - days
        if remaining < 0:
            logger.warning(
                "Release of %s day(s) for request %s exceeds pending=%s; clamping to zero",
                days, request_id, balance.pending,
            )
            remaining = Decimal("0")
        balance.pending = remaining
        if credit:
            balance.taken += days
        await db.flush()

        logger.info(
            "Released %s day(s) for request %s (credit=%s, taken=%s pending=%s)",
            days, request_id, credit, balance.taken, balance.pending,
        )
        return balance
