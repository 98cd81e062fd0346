"""Balance adjustment ledger — append-only source of truth for ``accrued``."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.common.constants import DAYS_SCALE
from leave_service.common.exceptions import ValidationException
from leave_service.leave.models import BalanceAdjustment

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, str]


class AdjustmentLedger:
    """Append / read operations over ``balance_adjustments``."""

    @staticmethod
    def validate(amount: Amount, reason: Optional[str]) -> Decimal:
        """Check an adjustment before anything is written. Returns the amount as Decimal."""
        errors: dict[str, list[str]] = {}

        if reason is None or not reason.strip():
            errors["reason"] = ["A reason is required for every balance adjustment."]

        value: Optional[Decimal] = None
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            errors["amount"] = [f"'{amount}' is not a number."]
        else:
            if not value.is_finite():
                errors["amount"] = ["Amount must be a finite number."]
            elif value.as_tuple().exponent < -DAYS_SCALE:
                errors["amount"] = [
                    f"Amount supports at most {DAYS_SCALE} decimal places."
                ]

        if errors:
            raise ValidationException(errors)
        return value

    @staticmethod
    async def append(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        amount: Amount,
        reason: str,
        actor: Any,
        *,
        period: Optional[str] = None,
    ) -> BalanceAdjustment:
        """Append one entry. Entries are never edited or removed afterwards."""
        value = AdjustmentLedger.validate(amount, reason)

        entry = BalanceAdjustment(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            amount=value,
            reason=reason.strip(),
            actor=str(actor),
            period=period,
        )
        db.add(entry)
        await db.flush()

        logger.info(
            "Ledger entry %s: employee=%s leave_type=%s amount=%s actor=%s",
            entry.id, employee_id, leave_type_id, value, entry.actor,
        )
        return entry

    @staticmethod
    async def history(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Sequence[BalanceAdjustment]:
        """All entries for the pair, oldest first."""
        result = await db.execute(
            select(BalanceAdjustment)
            .where(
                BalanceAdjustment.employee_id == employee_id,
                BalanceAdjustment.leave_type_id == leave_type_id,
            )
            .order_by(BalanceAdjustment.id.asc())
        )
        return result.scalars().all()

    @staticmethod
    async def total(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Decimal:
        """Sum of all entries for the pair, i.e. the current ``accrued``."""
        result = await db.execute(
            select(func.coalesce(func.sum(BalanceAdjustment.amount), 0)).where(
                BalanceAdjustment.employee_id == employee_id,
                BalanceAdjustment.leave_type_id == leave_type_id,
            )
        )
        return Decimal(str(result.scalar_one())).quantize(Decimal(1).scaleb(-DAYS_SCALE))

    @staticmethod
    async def has_period(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        period: str,
    ) -> bool:
        """Whether a scheduled entry was already posted for *period*."""
        result = await db.execute(
            select(func.count()).select_from(BalanceAdjustment).where(
                BalanceAdjustment.employee_id == employee_id,
                BalanceAdjustment.leave_type_id == leave_type_id,
                BalanceAdjustment.period == period,
            )
        )
        return result.scalar_one() > 0
