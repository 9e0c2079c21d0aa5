from datetime import date

import pytest

from periods import previous_month, resolve_period, year_bounds


def test_previous_month_wraps_into_prior_year() -> None:
    period = previous_month(date(2026, 1, 1))
    assert (period.start, period.end) == (date(2025, 12, 1), date(2025, 12, 31))


def test_previous_month_handles_leap_february() -> None:
    period = previous_month(date(2028, 3, 31))
    assert (period.start, period.end) == (date(2028, 2, 1), date(2028, 2, 29))


def test_resolve_period_quarter_and_year() -> None:
    quarter = resolve_period("quarterly", date(2026, 11, 5))
    assert (quarter.start, quarter.end) == (date(2026, 10, 1), date(2026, 12, 31))
    assert quarter.contains(date(2026, 12, 31))
    assert not quarter.contains(date(2027, 1, 1))

    assert resolve_period("ANNUAL", date(2026, 6, 1)) == year_bounds(2026)
    month = resolve_period(None, date(2026, 4, 15))
    assert (month.start, month.end) == (date(2026, 4, 1), date(2026, 4, 30))


def test_resolve_period_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        resolve_period("fortnightly")
