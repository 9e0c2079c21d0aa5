from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def year_bounds(year: int) -> Period:
    return Period("annual", date(year, 1, 1), date(year, 12, 31))


def previous_month(today: Optional[date] = None) -> Period:
    today = today or date.today()
    first_this = today.replace(day=1)
    last_month_end = first_this - date.resolution
    last_month_start = last_month_end.replace(day=1)
    return Period("monthly", last_month_start, last_month_end)


def resolve_period(kind: Optional[str], reference: Optional[date] = None) -> Period:
    """Window of the given kind (MONTHLY, QUARTERLY, ANNUAL) containing ``reference``."""
    reference = reference or date.today()
    slug = (kind or "MONTHLY").upper()
    if slug == "ANNUAL":
        return year_bounds(reference.year)
    if slug == "QUARTERLY":
        first_month = ((reference.month - 1) // 3) * 3 + 1
        last_month = first_month + 2
        return Period(
            "quarterly",
            date(reference.year, first_month, 1),
            _month_end(reference.year, last_month),
        )
    if slug == "MONTHLY":
        return Period(
            "monthly",
            reference.replace(day=1),
            _month_end(reference.year, reference.month),
        )
    raise ValueError(f"Unsupported period: {kind}")
