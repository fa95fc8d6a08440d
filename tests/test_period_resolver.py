# tests/test_period_resolver.py
from datetime import date

import pytest

from src.analytics.base import ValidationError
from src.analytics.period_resolver import resolve_end_date, resolve_periods


def test_primary_period_is_parsed_and_raw_strings_kept():
    periods = resolve_periods("2024-01-01", "2024-01-31T23:59:59.000Z")

    assert periods.primary.start == date(2024, 1, 1)
    # учитывается только календарный день
    assert periods.primary.end == date(2024, 1, 31)
    assert periods.primary.raw_end == "2024-01-31T23:59:59.000Z"
    assert periods.has_comparison is False


def test_comparison_period_when_both_bounds_given():
    periods = resolve_periods("2024-01-01", "2024-01-31", "2023-01-01", "2023-01-31")

    assert periods.has_comparison is True
    assert periods.comparison.start == date(2023, 1, 1)
    assert periods.comparison.end == date(2023, 1, 31)


def test_single_comparison_bound_disables_comparison():
    periods = resolve_periods("2024-01-01", "2024-01-31", comparison_start="2023-01-01")

    assert periods.comparison is None


@pytest.mark.parametrize("start, end", [(None, "2024-01-31"), ("2024-01-01", None), ("", "")])
def test_missing_primary_bounds_raise(start, end):
    with pytest.raises(ValidationError, match="start and end date are required"):
        resolve_periods(start, end)


def test_required_comparison_missing_raises():
    with pytest.raises(ValidationError, match="dates are required"):
        resolve_periods("2024-01-01", "2024-01-31", "2023-01-01", None, require_comparison=True)


def test_invalid_date_raises():
    with pytest.raises(ValidationError, match="Invalid date"):
        resolve_periods("not-a-date", "2024-01-31")


def test_resolve_end_date():
    assert resolve_end_date("2024-03-31") == date(2024, 3, 31)

    with pytest.raises(ValidationError):
        resolve_end_date(None)
