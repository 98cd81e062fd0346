"""Leave day calculation.

Every calendar day in the range counts as a leave day; weekends and public
holidays are not excluded. A partial-day request is worth
``partial_hours / PARTIAL_DAY_HOURS_DIVISOR`` regardless of the range.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from leave_service.common.constants import DAYS_SCALE
from leave_service.common.exceptions import ValidationException
from leave_service.config import settings

DateLike = Union[date, str]

_QUANTUM = Decimal(1).scaleb(-DAYS_SCALE)


def as_date(value: DateLike, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationException({field: [f"'{value}' is not an ISO date (YYYY-MM-DD)."]})


def _as_hours(value: Union[Decimal, int, float, str]) -> Decimal:
    try:
        hours = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationException({"partial_hours": [f"'{value}' is not a number."]})
    if not hours.is_finite():
        raise ValidationException({"partial_hours": ["Partial hours must be finite."]})
    return hours


def compute_days(
    start_date: DateLike,
    end_date: DateLike,
    is_partial_day: bool = False,
    partial_hours: Optional[Union[Decimal, int, float, str]] = None,
) -> Decimal:
    """Return the signed day quantity for a leave range.

    Missing or zero partial hours count the full range, as for a
    full-day request.

    Raises:
        ValidationException: end before start, or partial hours outside
            the configured 1–7 hour window.
    """
    start = as_date(start_date, "start_date")
    end = as_date(end_date, "end_date")

    if end < start:
        raise ValidationException({"end_date": ["end before start"]})

    if is_partial_day and partial_hours is not None:
        hours = _as_hours(partial_hours)
        if hours != 0:
            if not settings.PARTIAL_HOURS_MIN <= hours <= settings.PARTIAL_HOURS_MAX:
                raise ValidationException(
                    {"partial_hours": [
                        f"Partial hours must be between {settings.PARTIAL_HOURS_MIN} "
                        f"and {settings.PARTIAL_HOURS_MAX}."
                    ]}
                )
            days = hours / Decimal(settings.PARTIAL_DAY_HOURS_DIVISOR)
            return days.quantize(_QUANTUM, rounding=ROUND_HALF_UP)

    return Decimal((end - start).days + 1)
