# src/analytics/period_resolver.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Union

from src.analytics.base import ValidationError
from src.data_models import Period, PeriodRequest

logger = logging.getLogger(__name__)

DateInput = Union[str, date, None]


def _parse_day(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # Берём только календарный день, часовой пояс не трогаем
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def _raw(value: Union[str, date]) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


def make_period(start: Union[str, date], end: Union[str, date]) -> Period:
    return Period(start=_parse_day(start), end=_parse_day(end), raw_start=_raw(start), raw_end=_raw(end))


def resolve_periods(
    start: DateInput,
    end: DateInput,
    comparison_start: DateInput = None,
    comparison_end: DateInput = None,
    require_comparison: bool = False,
) -> PeriodRequest:
    """
    Проверяет и нормализует основной период и (опционально) период сравнения.

    - нет start или end -> ValidationError;
    - передана только одна граница сравнения -> сравнение просто отключается
      (если require_comparison=False), ошибки нет.
    """
    if not start or not end:
        raise ValidationError("start and end date are required")

    if require_comparison and (not comparison_start or not comparison_end):
        raise ValidationError("dates are required")

    primary = make_period(start, end)

    comparison: Optional[Period] = None
    if comparison_start and comparison_end:
        comparison = make_period(comparison_start, comparison_end)
    elif comparison_start or comparison_end:
        logger.info(
            "Only one comparison bound supplied (start=%s, end=%s), comparison disabled",
            comparison_start,
            comparison_end,
        )

    return PeriodRequest(primary=primary, comparison=comparison)


def resolve_end_date(end: DateInput) -> date:
    """
    Для срезов склада нужна только конечная дата.
    """
    if not end:
        raise ValidationError("end date is required to analyse stock at that date")
    return _parse_day(end)
