"""Unit price resolution and discount arithmetic.

Everything here is a pure function of its arguments plus the catalog snapshot
handed in by the caller. An unknown product never raises: it resolves to a
zero price and a warning, and the business layer refuses to record a sale at
that price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from . import log
from .constants import DISCOUNT_RATES, Category, DiscountTier, StaffRole
from .data_manager import ProductRow


@dataclass(frozen=True)
class PriceQuote:
    """Base and discounted price for one sale line."""

    base_price: int
    final_price: int
    discount: DiscountTier

    @property
    def is_resolved(self) -> bool:
        return self.base_price > 0


def discount_rate(tier: DiscountTier) -> Decimal:
    """Return the fractional reduction for ``tier``."""

    return DISCOUNT_RATES[DiscountTier(tier)]


def apply_discount(base_price: int, tier: DiscountTier) -> int:
    """Apply ``tier`` to ``base_price`` and round to a whole currency unit.

    Halves round away from zero, so ``apply_discount(5, TIER1)`` is ``5``
    (4.5 rounds up) rather than the banker's ``4``.
    """

    discounted = Decimal(base_price) * (Decimal("1") - discount_rate(tier))
    return int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def select_price(product: ProductRow, role: Optional[StaffRole]) -> int:
    """Pick the rate of ``product`` that applies to a staff member of ``role``.

    Only individual personal-training products carry role-specific rates;
    group classes and every other category always use the base price. A role
    without its own rate falls back to the base price as well.
    """

    if product.category is Category.PERSONAL_TRAINING and not product.is_group:
        if role is StaffRole.SENIOR and product.senior_price is not None:
            return product.senior_price
        if role is StaffRole.STANDARD and product.standard_price is not None:
            return product.standard_price
    return product.base_price


def find_catalog_entry(
    catalog: Iterable[ProductRow], category: Category, product_name: str
) -> Optional[ProductRow]:
    """Return the first catalog entry matching ``(category, product_name)``."""

    for product in catalog:
        if product.category is category and product.name == product_name:
            return product
    return None


def resolve_unit_price(
    category: Category,
    product_name: str,
    role: Optional[StaffRole],
    catalog: Iterable[ProductRow],
    *,
    fallback: Optional[Mapping[str, ProductRow]] = None,
) -> int:
    """Resolve the undiscounted unit price for a sale line.

    The catalog is consulted first. When it has no entry for the pair and a
    ``fallback`` table is supplied, the exact product name is looked up there
    and the same role rule applies.

    Args:
        category (Category): Category chosen on the sale.
        product_name (str): Product name chosen on the sale.
        role (StaffRole | None): Role of the assigned staff member, if any.
        catalog (Iterable[ProductRow]): Current catalog snapshot.
        fallback (Mapping[str, ProductRow] | None): Optional name-keyed legacy
            price table.

    Returns:
        int: The resolved price, or ``0`` when nothing matches.
    """

    category = Category(category)
    entry = find_catalog_entry(catalog, category, product_name)
    if entry is not None:
        return select_price(entry, role)

    if fallback is not None:
        legacy = fallback.get(product_name)
        if legacy is not None:
            log.info("Priced '%s' from the legacy price table", product_name)
            return select_price(legacy, role)

    log.warning(
        "No price found for %s product '%s'; resolving to 0",
        category.value,
        product_name,
    )
    return 0


def price_sale(
    category: Category,
    product_name: str,
    role: Optional[StaffRole],
    discount: DiscountTier,
    catalog: Iterable[ProductRow],
    *,
    fallback: Optional[Mapping[str, ProductRow]] = None,
) -> PriceQuote:
    """Resolve the base price and apply ``discount`` in one step."""

    base_price = resolve_unit_price(category, product_name, role, catalog, fallback=fallback)
    return PriceQuote(
        base_price=base_price,
        final_price=apply_discount(base_price, discount),
        discount=DiscountTier(discount),
    )


__all__ = [
    "PriceQuote",
    "discount_rate",
    "apply_discount",
    "select_price",
    "find_catalog_entry",
    "resolve_unit_price",
    "price_sale",
]
