"""Enumerations shared across the clinic ledger modules.

The enum values are the text stored in the ledger workbook and accepted on
the command line, so they must not change once data exists.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class StaffRole(str, Enum):
    """Enumerate staff ranks; only personal-training pricing depends on them."""

    SENIOR = "senior"
    STANDARD = "standard"


class Category(str, Enum):
    """Enumerate the kinds of things the clinic sells."""

    EXAM = "exam"
    PERSONAL_TRAINING = "personal_training"
    RETAIL = "retail"


class DiscountTier(str, Enum):
    """Enumerate the discount levels offered at the front desk."""

    NONE = "none"
    TIER1 = "10%"
    TIER2 = "20%"
    TIER3 = "30%"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CARD = "card"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    STAFF = "Staff"
    PRODUCTS = "Products"
    SALES = "Sales"
    EXPENSES = "Expenses"


DISCOUNT_RATES: dict[DiscountTier, Decimal] = {
    DiscountTier.NONE: Decimal("0"),
    DiscountTier.TIER1: Decimal("0.10"),
    DiscountTier.TIER2: Decimal("0.20"),
    DiscountTier.TIER3: Decimal("0.30"),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "StaffRole",
    "Category",
    "DiscountTier",
    "PaymentMethod",
    "SheetName",
    "DISCOUNT_RATES",
]
