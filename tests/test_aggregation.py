"""Unit tests for date filters, daily totals and period rollups."""

from __future__ import annotations

import random
from datetime import date, datetime

import pytest

from clinic_ledger import aggregation
from clinic_ledger.constants import Category, DiscountTier, PaymentMethod
from clinic_ledger.data_manager import ExpenseRow, SaleRow


def _sale(sale_id: str, sale_date: str, final_price: int) -> SaleRow:
    return SaleRow(
        sale_id=sale_id,
        sale_date=sale_date,
        category=Category.RETAIL,
        product_name="Gatorade",
        staff_id=None,
        staff_role=None,
        discount=DiscountTier.NONE,
        payment_method=PaymentMethod.CASH,
        base_price=final_price,
        final_price=final_price,
    )


def _expense(expense_id: str, expense_date: str, amount: int) -> ExpenseRow:
    return ExpenseRow(expense_id, expense_date, "Acme Store", "1234", amount)


# ---------------------------------------------------------------------------
# Range checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2024-03-10", True),
        ("2024-03-01", True),
        ("2024-03-31", True),
        ("2024-02-29", False),
        ("2024-04-01", False),
    ],
)
def test_in_range_is_inclusive_on_both_ends(value, expected):
    assert aggregation.in_range(value, "2024-03-01", "2024-03-31") is expected


def test_in_range_ignores_time_of_day():
    assert aggregation.in_range(datetime(2024, 3, 31, 23, 59), date(2024, 3, 1), "2024-03-31T00:00")


@pytest.mark.parametrize(
    ("value", "start", "end"),
    [
        ("garbage", "2024-03-01", "2024-03-31"),
        ("2024-03-10", None, "2024-03-31"),
        ("2024-03-10", "2024-03-01", ""),
        ("2024-03-10", "2024-13-01", "2024-03-31"),
    ],
)
def test_in_range_fails_closed_on_unparseable_input(value, start, end):
    assert aggregation.in_range(value, start, end) is False


def test_parse_day_accepts_dates_datetimes_and_iso_text():
    assert aggregation.parse_day(date(2024, 3, 15)) == date(2024, 3, 15)
    assert aggregation.parse_day(datetime(2024, 3, 15, 9, 30)) == date(2024, 3, 15)
    assert aggregation.parse_day("2024-03-15") == date(2024, 3, 15)
    assert aggregation.parse_day("2024-03-15T18:30:00") == date(2024, 3, 15)
    assert aggregation.parse_day("15/03/2024") is None
    assert aggregation.parse_day(None) is None


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def test_filter_on_date_keeps_exact_day_only():
    sales = [_sale("S1", "2024-03-15", 10), _sale("S2", "2024-03-16", 20), _sale("S3", "2024-03-15", 30)]

    assert [sale.sale_id for sale in aggregation.filter_on_date(sales, "2024-03-15")] == ["S1", "S3"]
    assert aggregation.filter_on_date(sales, "not a date") == []


def test_filter_in_range_drops_malformed_records():
    expenses = [
        _expense("E1", "2024-03-01", 100),
        _expense("E2", "bad", 100),
        _expense("E3", "2024-04-01", 100),
    ]

    result = aggregation.filter_in_range(expenses, "2024-03-01", "2024-03-31")

    assert [expense.expense_id for expense in result] == ["E1"]


def test_filter_in_range_with_missing_bound_matches_nothing():
    sales = [_sale("S1", "2024-03-15", 10)]
    assert aggregation.filter_in_range(sales, "2024-03-01", None) == []


# ---------------------------------------------------------------------------
# Daily totals
# ---------------------------------------------------------------------------


def test_daily_totals_groups_by_day_in_date_order():
    sales = [
        _sale("S1", "2024-03-16", 20_000),
        _sale("S2", "2024-03-15", 10_000),
        _sale("S3", "2024-03-15", 5_000),
    ]

    assert aggregation.daily_totals(sales) == [
        (date(2024, 3, 15), 15_000),
        (date(2024, 3, 16), 20_000),
    ]


def test_daily_totals_independent_of_input_order():
    sales = [_sale(f"S{i}", f"2024-03-{(i % 5) + 1:02d}", 1_000 * i) for i in range(1, 20)]
    expected = aggregation.daily_totals(sales)

    shuffled = list(sales)
    random.Random(7).shuffle(shuffled)

    assert aggregation.daily_totals(shuffled) == expected


def test_daily_totals_use_discounted_price():
    sale = SaleRow(
        "S1",
        "2024-03-15",
        Category.EXAM,
        "Basic Exam",
        None,
        None,
        DiscountTier.TIER2,
        PaymentMethod.CARD,
        100_000,
        80_000,
    )
    assert aggregation.daily_totals([sale]) == [(date(2024, 3, 15), 80_000)]


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


def test_monthly_rollup_computes_profit():
    sales = [_sale("S1", "2024-03-02", 300_000), _sale("S2", "2024-03-20", 200_000)]
    expenses = [_expense("E1", "2024-03-05", 120_000)]

    (march,) = aggregation.rollup(sales, expenses, period="month")

    assert march.period == "2024-03"
    assert march.total_sales == 500_000
    assert march.total_expenses == 120_000
    assert march.profit == 380_000


def test_rollup_without_year_returns_observed_periods_sorted():
    sales = [_sale("S1", "2024-05-01", 1), _sale("S2", "2023-12-31", 2)]
    expenses = [_expense("E1", "2024-01-10", 3)]

    summaries = aggregation.rollup(sales, expenses)

    assert [summary.period for summary in summaries] == ["2023-12", "2024-01", "2024-05"]


def test_rollup_with_year_zero_fills_twelve_months():
    sales = [_sale("S1", "2024-05-01", 1_000), _sale("S2", "2023-05-01", 9_999)]

    summaries = aggregation.monthly_summary(sales, [], year=2024)

    assert len(summaries) == 12
    assert summaries[0].period == "2024-01"
    assert summaries[-1].period == "2024-12"
    assert summaries[4].total_sales == 1_000
    assert sum(summary.total_sales for summary in summaries) == 1_000


def test_yearly_rollup_sums_totals_per_year():
    sales = [_sale("S1", "2023-06-01", 100), _sale("S2", "2024-01-01", 200), _sale("S3", "2024-12-31", 300)]
    expenses = [_expense("E1", "2024-02-02", 50)]

    summaries = aggregation.yearly_summary(sales, expenses)

    assert [(s.period, s.total_sales, s.total_expenses, s.profit) for s in summaries] == [
        ("2023", 100, 0, 100),
        ("2024", 500, 50, 450),
    ]


def test_rollup_skips_malformed_dates():
    sales = [_sale("S1", "", 100), _sale("S2", "2024-01-01", 200)]

    (january,) = aggregation.rollup(sales, [])

    assert january.total_sales == 200


def test_rollup_rejects_unknown_period():
    with pytest.raises(ValueError):
        aggregation.rollup([], [], period="week")


def test_available_years_lists_years_with_records():
    sales = [_sale("S1", "2022-01-01", 1), _sale("S2", "bad", 1)]
    expenses = [_expense("E1", "2024-01-01", 1)]

    assert aggregation.available_years(sales, expenses) == [2022, 2024]
