"""Unit tests for unit-price resolution and discount arithmetic."""

from __future__ import annotations

import logging

import pytest

from clinic_ledger import pricing, seed_data
from clinic_ledger.constants import Category, DiscountTier, StaffRole
from clinic_ledger.data_manager import ProductRow


PT_SESSION = ProductRow(
    "PR1",
    Category.PERSONAL_TRAINING,
    "1 Session",
    80_000,
    senior_price=100_000,
    standard_price=80_000,
)
GROUP_CLASS = ProductRow(
    "PR2",
    Category.PERSONAL_TRAINING,
    "Group 1 Month",
    350_000,
    senior_price=500_000,
    standard_price=400_000,
    is_group=True,
)
BASIC_EXAM = ProductRow("PR3", Category.EXAM, "Basic Exam", 100_000)
CATALOG = [PT_SESSION, GROUP_CLASS, BASIC_EXAM]


@pytest.mark.parametrize(
    ("tier", "expected"),
    [
        (DiscountTier.NONE, 100_000),
        (DiscountTier.TIER1, 90_000),
        (DiscountTier.TIER2, 80_000),
        (DiscountTier.TIER3, 70_000),
    ],
)
def test_apply_discount_tiers(tier, expected):
    """Each tier removes its percentage from the base price."""

    assert pricing.apply_discount(100_000, tier) == expected


def test_apply_discount_rounds_half_away_from_zero():
    """4.5 must become 5, not the banker's 4."""

    assert pricing.apply_discount(5, DiscountTier.TIER1) == 5
    assert pricing.apply_discount(15, DiscountTier.TIER3) == 11


def test_apply_discount_accepts_stored_text():
    """Tier values read back from the workbook are plain strings."""

    assert pricing.apply_discount(50_000, "20%") == 40_000


def test_discount_never_exceeds_base_price():
    for base in (0, 1, 7, 999, 123_457):
        for tier in DiscountTier:
            final = pricing.apply_discount(base, tier)
            assert 0 <= final <= base


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (StaffRole.SENIOR, 100_000),
        (StaffRole.STANDARD, 80_000),
        (None, 80_000),
    ],
)
def test_select_price_uses_role_rate_for_individual_training(role, expected):
    assert pricing.select_price(PT_SESSION, role) == expected


def test_select_price_ignores_roles_for_group_classes():
    """Group classes always use the base price regardless of the trainer."""

    assert pricing.select_price(GROUP_CLASS, StaffRole.SENIOR) == 350_000
    assert pricing.select_price(GROUP_CLASS, StaffRole.STANDARD) == 350_000


def test_select_price_ignores_roles_outside_training():
    assert pricing.select_price(BASIC_EXAM, StaffRole.SENIOR) == 100_000


def test_select_price_falls_back_to_base_without_role_rate():
    product = ProductRow("PR9", Category.PERSONAL_TRAINING, "Trial", 30_000)
    assert pricing.select_price(product, StaffRole.SENIOR) == 30_000


def test_find_catalog_entry_matches_category_and_name():
    assert pricing.find_catalog_entry(CATALOG, Category.EXAM, "Basic Exam") is BASIC_EXAM
    assert pricing.find_catalog_entry(CATALOG, Category.RETAIL, "Basic Exam") is None


def test_resolve_unit_price_unknown_product_returns_zero(caplog):
    """Unknown products never raise; they resolve to zero with a warning."""

    with caplog.at_level(logging.WARNING, logger="clinic_ledger"):
        price = pricing.resolve_unit_price(Category.RETAIL, "Mystery Bar", None, CATALOG)

    assert price == 0
    assert "Mystery Bar" in caplog.text


def test_resolve_unit_price_consults_fallback_table_only_when_missing():
    fallback = seed_data.legacy_price_table()

    assert pricing.resolve_unit_price(Category.RETAIL, "Gatorade", None, CATALOG) == 0
    assert pricing.resolve_unit_price(Category.RETAIL, "Gatorade", None, CATALOG, fallback=fallback) == 2_000
    # Catalog entries win over the fallback table.
    assert (
        pricing.resolve_unit_price(Category.EXAM, "Basic Exam", None, [BASIC_EXAM], fallback={"Basic Exam": GROUP_CLASS})
        == 100_000
    )


def test_resolve_unit_price_fallback_applies_role_rule():
    fallback = seed_data.legacy_price_table()
    price = pricing.resolve_unit_price(
        Category.PERSONAL_TRAINING, "10 Sessions", StaffRole.SENIOR, [], fallback=fallback
    )
    assert price == 900_000


def test_price_sale_senior_session_with_ten_percent_discount():
    quote = pricing.price_sale(
        Category.PERSONAL_TRAINING, "1 Session", StaffRole.SENIOR, DiscountTier.TIER1, CATALOG
    )

    assert quote.base_price == 100_000
    assert quote.final_price == 90_000
    assert quote.discount is DiscountTier.TIER1
    assert quote.is_resolved


def test_price_sale_unknown_product_is_unresolved():
    quote = pricing.price_sale(Category.EXAM, "Unknown", None, DiscountTier.TIER2, CATALOG)

    assert quote.base_price == 0
    assert quote.final_price == 0
    assert not quote.is_resolved
