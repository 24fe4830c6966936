"""Reference price list used to seed a fresh catalog.

These rows mirror the clinic's printed price sheet. They are loaded into the
``Products`` sheet by ``clinic-setup`` / ``seed-catalog`` and, only when
``[Pricing] LegacyFallback`` is enabled, consulted by name for sales whose
product no longer has a catalog entry.
"""

from __future__ import annotations

from typing import Mapping

from .constants import Category
from .data_manager import ProductRow


def _exam(index: int, name: str, price: int) -> ProductRow:
    return ProductRow(f"SEED-EX-{index:02d}", Category.EXAM, name, price)


def _pt(index: int, name: str, senior: int, standard: int) -> ProductRow:
    # Without an assigned staff member the standard rate applies.
    return ProductRow(
        f"SEED-PT-{index:02d}",
        Category.PERSONAL_TRAINING,
        name,
        standard,
        senior_price=senior,
        standard_price=standard,
    )


def _group(index: int, name: str, price: int) -> ProductRow:
    return ProductRow(f"SEED-GR-{index:02d}", Category.PERSONAL_TRAINING, name, price, is_group=True)


def _retail(index: int, name: str, price: int) -> ProductRow:
    return ProductRow(f"SEED-RT-{index:02d}", Category.RETAIL, name, price)


SEED_PRODUCTS: tuple[ProductRow, ...] = (
    _exam(1, "Comprehensive Exam", 2_800_000),
    _exam(2, "Basic Exam", 100_000),
    _exam(3, "3D Motion Analysis", 400_000),
    _exam(4, "Medical Test", 650_000),
    _exam(5, "Exercise Stress Test", 400_000),
    _exam(6, "Isokinetic + Wingate", 350_000),
    _exam(7, "Isokinetic Muscle Function Test", 100_000),
    _exam(8, "Wingate", 50_000),
    _exam(9, "Gravity-Assisted Gait Test", 50_000),
    _exam(10, "Gravity-Assisted Gait Rehab", 150_000),
    _exam(11, "Rehab Exercise Program", 100_000),
    _pt(1, "1 Session", 100_000, 80_000),
    _pt(2, "10 Sessions", 900_000, 750_000),
    _pt(3, "20 Sessions", 1_700_000, 1_400_000),
    _pt(4, "30 Sessions", 2_400_000, 1_950_000),
    _group(1, "Group 1 Month", 350_000),
    _group(2, "Group 3 Months", 900_000),
    _group(3, "Group 5 Months", 1_250_000),
    _retail(1, "ZT", 55_000),
    _retail(2, "ZB", 346_000),
    _retail(3, "Protein Drink", 5_000),
    _retail(4, "Gatorade", 2_000),
)


def legacy_price_table() -> Mapping[str, ProductRow]:
    """Return the seed rows keyed by exact product name."""

    return {product.name: product for product in SEED_PRODUCTS}


__all__ = ["SEED_PRODUCTS", "legacy_price_table"]
