"""Date filters and period rollups over sales and expenses.

The helpers accept any iterable of :class:`~clinic_ledger.data_manager.SaleRow`
or :class:`~clinic_ledger.data_manager.ExpenseRow` and never touch the store.
Dates are compared at calendar-day granularity. A record whose date cannot be
parsed is left out of every filter and every rollup bucket instead of raising.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Literal, Optional, TypeVar, Union

from .data_manager import ExpenseRow, SaleRow


Record = Union[SaleRow, ExpenseRow]
R = TypeVar("R", SaleRow, ExpenseRow)
DayLike = Union[date, datetime, str, None]
Period = Literal["month", "year"]


@dataclass(frozen=True)
class PeriodSummary:
    """Sales, expenses and profit for one month (``YYYY-MM``) or year (``YYYY``)."""

    period: str
    total_sales: int
    total_expenses: int

    @property
    def profit(self) -> int:
        return self.total_sales - self.total_expenses


def parse_day(value: DayLike) -> Optional[date]:
    """Normalise ``value`` to a :class:`datetime.date`.

    Accepts dates, datetimes (the time part is dropped) and ISO 8601 text such
    as ``2024-03-15`` or ``2024-03-15T18:30``. Anything else yields ``None``.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        return None


def record_day(record: Record) -> Optional[date]:
    """Return the calendar day of a sale or expense, or ``None`` if malformed."""

    if isinstance(record, SaleRow):
        return parse_day(record.sale_date)
    return parse_day(record.expense_date)


def record_amount(record: Record) -> int:
    """Return the amount a record contributes to totals.

    Sales count their discounted ``final_price``; expenses their ``amount``.
    """

    if isinstance(record, SaleRow):
        return record.final_price
    return record.amount


def in_range(value: DayLike, start: DayLike, end: DayLike) -> bool:
    """Return ``True`` when ``value`` falls within ``[start, end]`` inclusive.

    All three arguments are reduced to calendar days first, so the time of day
    never affects the outcome. Any unparseable argument yields ``False``.
    """

    day, first, last = parse_day(value), parse_day(start), parse_day(end)
    if day is None or first is None or last is None:
        return False
    return not day < first and not day > last


def filter_on_date(records: Iterable[R], target: DayLike) -> list[R]:
    """Keep the records dated exactly ``target``."""

    day = parse_day(target)
    if day is None:
        return []
    return [record for record in records if record_day(record) == day]


def filter_in_range(records: Iterable[R], start: DayLike, end: DayLike) -> list[R]:
    """Keep the records dated within ``[start, end]``."""

    first, last = parse_day(start), parse_day(end)
    return [record for record in records if in_range(record_day(record), first, last)]


def daily_totals(records: Iterable[Record]) -> list[tuple[date, int]]:
    """Sum amounts per day and return ``(day, total)`` pairs in date order."""

    totals: dict[date, int] = defaultdict(int)
    for record in records:
        day = record_day(record)
        if day is None:
            continue
        totals[day] += record_amount(record)
    return sorted(totals.items())


def _period_key(day: date, period: Period) -> str:
    if period == "year":
        return f"{day.year:04d}"
    return f"{day.year:04d}-{day.month:02d}"


def rollup(
    sales: Iterable[SaleRow],
    expenses: Iterable[ExpenseRow],
    *,
    period: Period = "month",
    year: Optional[int] = None,
) -> list[PeriodSummary]:
    """Aggregate sales and expenses into per-period profit summaries.

    With ``year=None`` only periods that saw at least one sale or expense are
    returned. With ``year`` set, records outside that year are ignored and
    every period of the year is returned, zero-filled: twelve months for
    ``period="month"`` or the single year for ``period="year"``.

    Args:
        sales (Iterable[SaleRow]): Full sale collection.
        expenses (Iterable[ExpenseRow]): Full expense collection.
        period (str): ``"month"`` or ``"year"``.
        year (int | None): Calendar year to pin the rollup to.

    Returns:
        list[PeriodSummary]: Summaries sorted by ascending period key.

    Raises:
        ValueError: If ``period`` is neither ``"month"`` nor ``"year"``.
    """

    if period not in ("month", "year"):
        raise ValueError(f"Unsupported rollup period: {period!r}")

    sales_by_key: dict[str, int] = defaultdict(int)
    expenses_by_key: dict[str, int] = defaultdict(int)

    for bucket, records in ((sales_by_key, sales), (expenses_by_key, expenses)):
        for record in records:
            day = record_day(record)
            if day is None or (year is not None and day.year != year):
                continue
            bucket[_period_key(day, period)] += record_amount(record)

    if year is None:
        keys = sorted(set(sales_by_key) | set(expenses_by_key))
    elif period == "month":
        keys = [f"{year:04d}-{month:02d}" for month in range(1, 13)]
    else:
        keys = [f"{year:04d}"]

    return [
        PeriodSummary(
            period=key,
            total_sales=sales_by_key.get(key, 0),
            total_expenses=expenses_by_key.get(key, 0),
        )
        for key in keys
    ]


def monthly_summary(
    sales: Iterable[SaleRow], expenses: Iterable[ExpenseRow], *, year: Optional[int] = None
) -> list[PeriodSummary]:
    return rollup(sales, expenses, period="month", year=year)


def yearly_summary(sales: Iterable[SaleRow], expenses: Iterable[ExpenseRow]) -> list[PeriodSummary]:
    return rollup(sales, expenses, period="year")


def available_years(sales: Iterable[SaleRow], expenses: Iterable[ExpenseRow]) -> list[int]:
    """Return every year in which at least one well-dated record exists."""

    years = {day.year for day in map(record_day, [*sales, *expenses]) if day is not None}
    return sorted(years)


__all__ = [
    "PeriodSummary",
    "parse_day",
    "record_day",
    "record_amount",
    "in_range",
    "filter_on_date",
    "filter_in_range",
    "daily_totals",
    "rollup",
    "monthly_summary",
    "yearly_summary",
    "available_years",
]
