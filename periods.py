from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(year: int, month: int) -> Period:
    """Inclusive [first day, last day] range of a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return Period(
        f"{year:04d}-{month:02d}", month_start(year, month), month_end(year, month)
    )
