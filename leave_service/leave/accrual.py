"""Scheduled accrual posting and year-end carry-over.

Both are driven by an external scheduler and go through the adjustment
ledger as ``system`` entries, so ``accrued`` stays the sum of the ledger.
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.common.constants import DAYS_SCALE, SYSTEM_ACTOR, AccrualMethod
from leave_service.common.exceptions import ConflictError, ValidationException
from leave_service.config import settings
from leave_service.leave.balances import BalanceStore
from leave_service.leave.ledger import AdjustmentLedger
from leave_service.leave.models import LeaveType
from leave_service.leave.schemas import LeaveBalanceOut
from leave_service.leave.service import LeaveService

logger = logging.getLogger(__name__)

_QUANTUM = Decimal(1).scaleb(-DAYS_SCALE)


def accrual_amount(
    leave_type: LeaveType,
    hours_worked: Optional[Decimal] = None,
) -> Decimal:
    """Days credited for one accrual period under the leave type's method."""
    per_year = Decimal(leave_type.days_per_year)

    if leave_type.accrual_method == AccrualMethod.monthly:
        amount = per_year / 12
    elif leave_type.accrual_method == AccrualMethod.upfront:
        amount = per_year
    else:
        if hours_worked is None:
            raise ValidationException(
                {"hours_worked": ["Hours worked are required for per-hour accrual."]}
            )
        amount = per_year * Decimal(hours_worked) / settings.STANDARD_ANNUAL_HOURS

    return amount.quantize(_QUANTUM, rounding=ROUND_HALF_UP)


class AccrualService:
    """Scheduled ledger postings.

    The period check and the amount are both decided while the balance row
    is locked, so a repeated or concurrent run for the same period either
    sees the earlier posting or trips ``uq_balance_adjustment_period``.
    Both surface as ConflictError.
    """

    @staticmethod
    async def post_accrual(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        period: str,
        hours_worked: Optional[Decimal] = None,
    ) -> LeaveBalanceOut:
        """Credit one period's accrual. Each period posts at most once per balance."""
        leave_type = await LeaveService.get_leave_type(db, leave_type_id)
        amount = accrual_amount(leave_type, hours_worked)

        try:
            async with db.begin_nested():
                await BalanceStore.lock_or_create(db, employee_id, leave_type_id)
                if await AdjustmentLedger.has_period(db, employee_id, leave_type_id, period):
                    raise ConflictError("period", period)

                balance = await BalanceStore.adjust(
                    db,
                    employee_id,
                    leave_type_id,
                    amount,
                    f"{leave_type.accrual_method.value} accrual for {period}",
                    SYSTEM_ACTOR,
                    period=period,
                )
        except IntegrityError:
            logger.warning(
                "Concurrent %s accrual for employee=%s period=%s already posted",
                leave_type.code, employee_id, period,
            )
            raise ConflictError("period", period)

        logger.info(
            "Posted %s accrual of %s for employee=%s period=%s",
            leave_type.code, amount, employee_id, period,
        )
        return balance

    @staticmethod
    async def apply_carry_over(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        cycle: str,
    ) -> LeaveBalanceOut:
        """Forfeit available days above the leave type's carry-over cap.

        Only the excess is removed; a balance at or under the cap, or a leave
        type without a cap, is returned unchanged.
        """
        leave_type = await LeaveService.get_leave_type(db, leave_type_id)
        period = f"carry-over:{cycle}"
        cap = leave_type.carry_over_days

        try:
            async with db.begin_nested():
                locked = await BalanceStore.lock(db, employee_id, leave_type_id)
                if await AdjustmentLedger.has_period(db, employee_id, leave_type_id, period):
                    raise ConflictError("cycle", cycle)

                if cap is None or locked.available <= cap:
                    logger.info(
                        "No carry-over forfeit for employee=%s type=%s cycle=%s "
                        "(available=%s cap=%s)",
                        employee_id, leave_type.code, cycle, locked.available, cap,
                    )
                    return BalanceStore.build_response(locked, leave_type)

                excess = (locked.available - cap).quantize(_QUANTUM)
                return await BalanceStore.adjust(
                    db,
                    employee_id,
                    leave_type_id,
                    -excess,
                    f"Carry-over cap of {cap} applied for {cycle}; {excess} day(s) forfeited",
                    SYSTEM_ACTOR,
                    period=period,
                )
        except IntegrityError:
            logger.warning(
                "Concurrent carry-over for employee=%s type=%s cycle=%s already applied",
                employee_id, leave_type.code, cycle,
            )
            raise ConflictError("cycle", cycle)
