"""Business logic layer for the clinic ledger.

This module holds the rules between the CLI and the ledger workbook. It
decides who may change data and how each sale is priced; all I/O goes
through the Data Access Layer (DAL).

Every mutating workflow takes an :class:`AccessContext` obtained from
:func:`authorize`. Mutations only touch the in-memory workbook; callers decide
when to :func:`persist_context`, so a failed workflow leaves the stored
ledger exactly as it was.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from openpyxl.workbook import Workbook

from . import aggregation, data_manager, expense_import, log, pricing, report_filler, seed_data
from .constants import EXPECTED_SCHEMA_VERSION, Category, DiscountTier, PaymentMethod, StaffRole
from .snapshot import LedgerSnapshot


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced staff member, product, sale or expense is unknown."""


class AuthorizationError(BusinessRuleViolation):
    """Raised when a mutating operation is attempted without admin access."""


class UnresolvedPriceError(BusinessRuleViolation):
    """Raised when a sale's product cannot be priced."""


@dataclass(frozen=True)
class RuntimeContext:
    """Settings plus the open ledger workbook, with per-collection read caches."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class AccessContext:
    """Authorization state for one request.

    The shared passcode only separates "may change data" from "view only";
    there is no user identity and no expiry.
    """

    is_admin: bool = False


VIEW_ONLY = AccessContext(is_admin=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording or correcting a sale."""

    sale_date: Union[date, str]
    category: Category
    product_name: str
    discount: DiscountTier = DiscountTier.NONE
    payment_method: PaymentMethod = PaymentMethod.CARD
    staff_id: Optional[str] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording a single expense by hand."""

    expense_date: Union[date, str]
    store_name: str
    amount: int
    card_last4: str = ""


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer keeps one bucket per collection (staff, products,
    sales, expenses) so repeated reads do not rescan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_staff_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "staff")
    if "all" not in bucket:
        all_staff = list(data_manager.iter_staff(context.workbook))
        bucket["all"] = all_staff
        bucket["by_id"] = {member.staff_id: member for member in all_staff}
        log.debug("Populated staff cache with %d entries", len(all_staff))
    return bucket


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales bucket, ordered by date (stable for equal dates)."""

    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = sorted(data_manager.iter_sales(context.workbook), key=lambda sale: sale.sale_date)
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the expenses bucket, ordered by date (stable for equal dates)."""

    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        all_expenses = sorted(
            data_manager.iter_expenses(context.workbook), key=lambda expense: expense.expense_date
        )
        bucket["all"] = all_expenses
        bucket["by_id"] = {expense.expense_id: expense for expense in all_expenses}
        log.debug("Populated expenses cache with %d entries", len(all_expenses))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Read ``config.ini`` and open the ledger it points at.

    Sheets missing from an older or hand-edited ledger are recreated empty
    (and logged) so every collection can be read straight away.

    Raises:
        FileNotFoundError: If neither ``config_path`` nor an ancestor
            ``config.ini`` exists, or the ledger workbook is missing.
        KeyError: When a required ``[System]`` or ``[Access]`` entry is absent.
    """
    settings = load_settings(config_path)
    workbook = data_manager.open_workbook(settings.data_file)
    created = data_manager.ensure_sheets(workbook)
    if created:
        log.warning("Ledger workbook was missing sheets: %s", ", ".join(created))
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def load_settings(config_path: Optional[Path] = None) -> data_manager.ConfigSettings:
    """Locate, read and parse ``config.ini`` without opening the workbook."""

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    return data_manager.parse_settings(parser, base_path=resolved_config.parent)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a ledger laid out for a different ``SchemaVersion``.

    Raises:
        RuntimeError: If ``[System] SchemaVersion`` is not
            ``EXPECTED_SCHEMA_VERSION``.
    """
    declared = context.settings.schema_version
    if declared != EXPECTED_SCHEMA_VERSION:
        log.error("Ledger schema %s is not supported (expected %s)", declared, EXPECTED_SCHEMA_VERSION)
        raise RuntimeError(f"Ledger schema {declared} is not supported; expected {EXPECTED_SCHEMA_VERSION}")

    log.debug("Ledger schema %s accepted", declared)


def authorize(settings: data_manager.ConfigSettings, passcode: Optional[str]) -> AccessContext:
    """Exchange a passcode for an :class:`AccessContext`.

    A wrong or missing passcode is not an error; it simply yields view-only
    access, mirroring how the front desk falls back to browsing mode.
    """

    if passcode and hmac.compare_digest(str(passcode).encode(), settings.passcode.encode()):
        log.info("Admin access granted")
        return AccessContext(is_admin=True)
    if passcode:
        log.warning("Rejected admin passcode; continuing in view-only mode")
    return VIEW_ONLY


def require_admin(access: AccessContext, action: str) -> None:
    """Raise :class:`AuthorizationError` unless ``access`` grants admin rights."""

    if not access.is_admin:
        log.warning("Blocked '%s' without admin access", action)
        raise AuthorizationError(f"Admin access is required to {action}")


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


def list_staff(context: RuntimeContext) -> List[data_manager.StaffRow]:
    """Return every staff member in sheet order."""

    return list(_ensure_staff_cache(context)["all"])


def get_staff(context: RuntimeContext, staff_id: str) -> data_manager.StaffRow:
    """Fetch a staff member by identifier.

    Raises:
        MissingReferenceError: If ``staff_id`` is unknown.
    """
    try:
        return _ensure_staff_cache(context)["by_id"][staff_id]
    except KeyError as exc:
        log.warning("Staff lookup failed for id '%s'", staff_id)
        raise MissingReferenceError(f"Unknown staff id: {staff_id}") from exc


def add_staff(
    context: RuntimeContext,
    access: AccessContext,
    *,
    name: str,
    role: StaffRole,
    when: Optional[datetime] = None,
) -> data_manager.StaffRow:
    """Register a new staff member.

    Raises:
        AuthorizationError: Without admin access.
        ValueError: If ``name`` is blank or ``role`` unknown.
    """
    require_admin(access, "add staff")
    name = require_text(name, "Staff name")
    record = data_manager.StaffRow(
        staff_id=generate_id(prefix="ST", when=when),
        name=name,
        role=StaffRole(role),
    )
    data_manager.append_staff(context.workbook, record)
    _invalidate_cache(context, "staff")
    log.info("Added staff '%s' (%s) as %s", record.name, record.role.value, record.staff_id)
    return record


def delete_staff(context: RuntimeContext, access: AccessContext, staff_id: str) -> int:
    """Remove a staff member and detach them from their sales.

    Sales are kept; their staff reference and role snapshot are cleared.

    Returns:
        int: Number of sales that were detached.

    Raises:
        AuthorizationError: Without admin access.
        MissingReferenceError: If ``staff_id`` is unknown.
    """
    require_admin(access, "delete staff")
    member = get_staff(context, staff_id)

    detached = 0
    for sale in _ensure_sales_cache(context)["all"]:
        if sale.staff_id == staff_id:
            data_manager.update_sale(
                context.workbook,
                sale.sale_id,
                field_values={"StaffID": None, "StaffRole": None},
            )
            detached += 1

    data_manager.delete_staff(context.workbook, staff_id)
    _invalidate_cache(context, "staff", "sales")
    log.info("Deleted staff '%s' (%s); detached %d sale(s)", member.name, staff_id, detached)
    return detached


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, category: Optional[Category] = None) -> List[data_manager.ProductRow]:
    """Return catalog entries, optionally restricted to one category."""

    products = _ensure_products_cache(context)["all"]
    if category is None:
        return list(products)
    category = Category(category)
    return [product for product in products if product.category is category]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Fetch a catalog entry by identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    try:
        return _ensure_products_cache(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def _validate_product(product: data_manager.ProductRow) -> None:
    require_text(product.name, "Product name")
    require_nonnegative_price(product.base_price)
    for optional in (product.senior_price, product.standard_price):
        if optional is not None:
            require_nonnegative_price(optional)


def _reject_duplicate_product(context: RuntimeContext, product: data_manager.ProductRow) -> None:
    others = [entry for entry in list_products(context) if entry.product_id != product.product_id]
    if pricing.find_catalog_entry(others, product.category, product.name) is not None:
        log.warning("Duplicate catalog entry %s/%s", product.category.value, product.name)
        raise BusinessRuleViolation(f"{product.category.value} product '{product.name}' already exists")


def add_product(
    context: RuntimeContext,
    access: AccessContext,
    *,
    category: Category,
    name: str,
    base_price: int,
    senior_price: Optional[int] = None,
    standard_price: Optional[int] = None,
    is_group: bool = False,
    when: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Add an entry to the catalog.

    Raises:
        AuthorizationError: Without admin access.
        BusinessRuleViolation: If the category already lists that name.
        ValueError: On blank names or negative prices.
    """
    require_admin(access, "add products")
    record = data_manager.ProductRow(
        product_id=generate_id(prefix="PR", when=when),
        category=Category(category),
        name=(name or "").strip(),
        base_price=base_price,
        senior_price=senior_price,
        standard_price=standard_price,
        is_group=is_group,
    )
    _validate_product(record)
    _reject_duplicate_product(context, record)

    data_manager.append_product(context.workbook, record)
    _invalidate_cache(context, "products")
    log.info(
        "Added %s product '%s' at %s as %s",
        record.category.value,
        record.name,
        record.base_price,
        record.product_id,
    )
    return record


PRODUCT_FIELD_COLUMNS = {
    "category": "Category",
    "name": "Name",
    "base_price": "BasePrice",
    "senior_price": "SeniorPrice",
    "standard_price": "StandardPrice",
    "is_group": "IsGroup",
}


def update_product(
    context: RuntimeContext, access: AccessContext, product_id: str, **changes: Any
) -> data_manager.ProductRow:
    """Change selected attributes of a catalog entry.

    Existing sales keep the prices they were recorded with.

    Raises:
        AuthorizationError: Without admin access.
        MissingReferenceError: If ``product_id`` is unknown.
        BusinessRuleViolation: If the change would duplicate another entry's
            category and name.
        KeyError: If ``changes`` names an unknown attribute.
    """
    require_admin(access, "update products")
    current = get_product(context, product_id)
    unknown = set(changes) - set(PRODUCT_FIELD_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown product field(s): {', '.join(sorted(unknown))}")
    if "category" in changes:
        changes["category"] = Category(changes["category"])
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()

    updated = replace(current, **changes)
    _validate_product(updated)
    _reject_duplicate_product(context, updated)
    data_manager.update_product(
        context.workbook,
        product_id,
        field_values={PRODUCT_FIELD_COLUMNS[key]: value for key, value in changes.items()},
    )
    _invalidate_cache(context, "products")
    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(changes)))
    return updated


def delete_product(context: RuntimeContext, access: AccessContext, product_id: str) -> None:
    """Remove a catalog entry. Recorded sales are unaffected."""

    require_admin(access, "delete products")
    product = get_product(context, product_id)
    data_manager.delete_product(context.workbook, product_id)
    _invalidate_cache(context, "products")
    log.info("Deleted product '%s' (%s)", product.name, product_id)


def seed_catalog(context: RuntimeContext, access: AccessContext) -> int:
    """Load the reference price list into the catalog.

    Entries whose category and name already exist are left alone.

    Returns:
        int: Number of entries added.
    """
    require_admin(access, "seed the catalog")
    existing = {(product.category, product.name) for product in list_products(context)}
    existing_ids = set(_ensure_products_cache(context)["by_id"])
    added = 0
    for product in seed_data.SEED_PRODUCTS:
        if (product.category, product.name) in existing or product.product_id in existing_ids:
            continue
        data_manager.append_product(context.workbook, product)
        added += 1
    _invalidate_cache(context, "products")
    log.info("Seeded %d catalog entries", added)
    return added


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def _fallback_table(context: RuntimeContext) -> Optional[Mapping[str, data_manager.ProductRow]]:
    if context.settings.legacy_fallback:
        return seed_data.legacy_price_table()
    return None


def _staff_for(context: RuntimeContext, staff_id: Optional[str]) -> Optional[data_manager.StaffRow]:
    if not staff_id:
        return None
    return get_staff(context, staff_id)


def quote_sale(context: RuntimeContext, command: SaleCommand) -> pricing.PriceQuote:
    """Price a prospective sale without recording it.

    Raises:
        MissingReferenceError: If the command names an unknown staff member.
    """
    staff = _staff_for(context, command.staff_id)
    return pricing.price_sale(
        Category(command.category),
        command.product_name,
        staff.role if staff else None,
        DiscountTier(command.discount),
        list_products(context),
        fallback=_fallback_table(context),
    )


def _build_sale(context: RuntimeContext, command: SaleCommand, *, sale_id: str) -> data_manager.SaleRow:
    sale_day = require_day(command.sale_date, "Sale date")
    product_name = require_text(command.product_name, "Product")
    command = replace(command, product_name=product_name)
    staff = _staff_for(context, command.staff_id)
    quote = quote_sale(context, command)
    if not quote.is_resolved:
        raise UnresolvedPriceError(
            f"No price found for {Category(command.category).value} product '{product_name}'"
        )

    return data_manager.SaleRow(
        sale_id=sale_id,
        sale_date=sale_day.isoformat(),
        category=Category(command.category),
        product_name=product_name,
        staff_id=staff.staff_id if staff else None,
        staff_role=staff.role if staff else None,
        discount=quote.discount,
        payment_method=PaymentMethod(command.payment_method),
        base_price=quote.base_price,
        final_price=quote.final_price,
    )


def record_sale(
    context: RuntimeContext,
    access: AccessContext,
    command: SaleCommand,
    *,
    when: Optional[datetime] = None,
) -> data_manager.SaleRow:
    """Price and append a sale.

    The assigned staff member's current role is copied onto the sale so later
    role changes or deletions do not alter history.

    Raises:
        AuthorizationError: Without admin access.
        ValueError: If the date or product name is missing or invalid.
        MissingReferenceError: If the staff member is unknown.
        UnresolvedPriceError: If the product cannot be priced.
    """
    require_admin(access, "record sales")
    sale = _build_sale(context, command, sale_id=generate_id(prefix="SL", when=when))
    data_manager.append_sale(context.workbook, sale)
    _invalidate_cache(context, "sales")
    log.info(
        "Recorded sale '%s' on %s: %s/%s base=%s final=%s",
        sale.sale_id,
        sale.sale_date,
        sale.category.value,
        sale.product_name,
        sale.base_price,
        sale.final_price,
    )
    return sale


def update_sale(
    context: RuntimeContext, access: AccessContext, sale_id: str, command: SaleCommand
) -> data_manager.SaleRow:
    """Replace a recorded sale with a re-priced version of ``command``.

    Raises:
        AuthorizationError: Without admin access.
        MissingReferenceError: If ``sale_id`` or the staff member is unknown.
        UnresolvedPriceError: If the product cannot be priced.
    """
    require_admin(access, "update sales")
    get_sale(context, sale_id)
    sale = _build_sale(context, command, sale_id=sale_id)
    columns = data_manager.SHEET_COLUMNS[data_manager.SALES_SHEET]
    data_manager.update_sale(
        context.workbook,
        sale_id,
        field_values=dict(zip(columns[1:], data_manager.serialize_sale(sale)[1:])),
    )
    _invalidate_cache(context, "sales")
    log.info("Updated sale '%s' (final=%s)", sale_id, sale.final_price)
    return sale


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Fetch a sale by identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is unknown.
    """
    try:
        return _ensure_sales_cache(context)["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


def delete_sale(context: RuntimeContext, access: AccessContext, sale_id: str) -> None:
    """Remove a sale."""

    require_admin(access, "delete sales")
    get_sale(context, sale_id)
    data_manager.delete_sale(context.workbook, sale_id)
    _invalidate_cache(context, "sales")
    log.info("Deleted sale '%s'", sale_id)


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return every sale ordered by date."""

    return list(_ensure_sales_cache(context)["all"])


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    """Return every expense ordered by date."""

    return list(_ensure_expenses_cache(context)["all"])


def get_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    """Fetch an expense by identifier.

    Raises:
        MissingReferenceError: If ``expense_id`` is unknown.
    """
    try:
        return _ensure_expenses_cache(context)["by_id"][expense_id]
    except KeyError as exc:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}") from exc


def record_expense(
    context: RuntimeContext,
    access: AccessContext,
    command: ExpenseCommand,
    *,
    when: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Append a manually entered expense.

    Raises:
        AuthorizationError: Without admin access.
        ValueError: If the date, payee or amount is missing or invalid.
    """
    require_admin(access, "record expenses")
    expense_day = require_day(command.expense_date, "Expense date")
    store_name = require_text(command.store_name, "Store name")
    require_positive_amount(command.amount)

    expense = data_manager.ExpenseRow(
        expense_id=generate_id(prefix="EX", when=when),
        expense_date=expense_day.isoformat(),
        store_name=store_name,
        card_last4=(command.card_last4 or "").strip(),
        amount=int(command.amount),
    )
    data_manager.append_expenses(context.workbook, [expense])
    _invalidate_cache(context, "expenses")
    log.info("Recorded expense '%s' on %s: %s %s", expense.expense_id, expense.expense_date, store_name, expense.amount)
    return expense


def import_expenses(
    context: RuntimeContext,
    access: AccessContext,
    source: Union[bytes, Path],
    *,
    when: Optional[datetime] = None,
) -> expense_import.ImportResult:
    """Import a card statement workbook as expenses.

    Malformed rows are skipped; the remaining rows are appended together.

    Raises:
        AuthorizationError: Without admin access.
        FileNotFoundError: If ``source`` is a missing path.
        ValueError: If ``source`` is not a readable workbook.
    """
    require_admin(access, "import expenses")
    batch_id = generate_id(prefix="EX", when=when)
    result = expense_import.read_expense_workbook(
        source,
        id_factory=lambda row_number: f"{batch_id}-{row_number:04d}",
    )
    if result.expenses:
        data_manager.append_expenses(context.workbook, result.expenses)
        _invalidate_cache(context, "expenses")
    log.info("Imported %d expense(s), skipped %d row(s)", len(result.expenses), result.skipped)
    return result


def delete_expense(context: RuntimeContext, access: AccessContext, expense_id: str) -> None:
    """Remove an expense."""

    require_admin(access, "delete expenses")
    get_expense(context, expense_id)
    data_manager.delete_expense(context.workbook, expense_id)
    _invalidate_cache(context, "expenses")
    log.info("Deleted expense '%s'", expense_id)


# ---------------------------------------------------------------------------
# Views and reports
# ---------------------------------------------------------------------------


def _filter(records, on, start, end):
    if on is not None:
        return aggregation.filter_on_date(records, on)
    if start is not None or end is not None:
        return aggregation.filter_in_range(records, start, end)
    return list(records)


def filter_sales(
    context: RuntimeContext,
    *,
    on: aggregation.DayLike = None,
    start: aggregation.DayLike = None,
    end: aggregation.DayLike = None,
) -> List[data_manager.SaleRow]:
    """Return sales for one day (``on``) or an inclusive range.

    A half-open range (only ``start`` or only ``end``) matches nothing, in
    line with the fail-closed range filter.
    """

    return _filter(list_sales(context), on, start, end)


def filter_expenses(
    context: RuntimeContext,
    *,
    on: aggregation.DayLike = None,
    start: aggregation.DayLike = None,
    end: aggregation.DayLike = None,
) -> List[data_manager.ExpenseRow]:
    """Return expenses for one day (``on``) or an inclusive range."""

    return _filter(list_expenses(context), on, start, end)


def summarize(
    context: RuntimeContext,
    *,
    period: aggregation.Period = "month",
    year: Optional[int] = None,
) -> List[aggregation.PeriodSummary]:
    """Compute profit-and-loss summaries from the full ledger."""

    return aggregation.rollup(list_sales(context), list_expenses(context), period=period, year=year)


def export_daily_report(
    context: RuntimeContext,
    access: AccessContext,
    target_day: aggregation.DayLike,
    *,
    template: Optional[bytes] = None,
    mapping: Optional[report_filler.ReportMapping] = None,
    abort_on_empty: Optional[bool] = None,
) -> bytes:
    """Fill the configured template with the figures for ``target_day``.

    ``template`` and ``mapping`` default to the files named in ``[Report]``;
    ``abort_on_empty`` defaults to ``[Report] AbortOnEmpty``.

    Raises:
        AuthorizationError: Without admin access.
        TemplateUnavailableError: If the template is missing or unreadable.
        EmptyReportError: If the day is empty and empty reports are refused.
        FileNotFoundError: If no mapping is supplied and the configured one is
            missing.
    """
    require_admin(access, "export reports")
    settings = context.settings
    if template is None:
        template = report_filler.load_template(settings.template_file)
    if mapping is None:
        if settings.mapping_file is None:
            raise report_filler.MappingError("No report mapping is configured")
        mapping = report_filler.load_mapping(settings.mapping_file)
    if abort_on_empty is None:
        abort_on_empty = settings.abort_on_empty

    return report_filler.fill_report(
        template,
        target_day,
        list_sales(context),
        list_expenses(context),
        mapping,
        abort_on_empty=abort_on_empty,
    )


def build_snapshot(context: RuntimeContext, *, when: Optional[datetime] = None) -> LedgerSnapshot:
    """Capture all four collections for the read-only snapshot cache."""

    return LedgerSnapshot(
        taken_at=_resolve_timestamp(when),
        staff=list_staff(context),
        products=list_products(context),
        sales=list_sales(context),
        expenses=list_expenses(context),
    )


def snapshot_max_age(settings: data_manager.ConfigSettings) -> timedelta:
    return timedelta(hours=settings.snapshot_max_age_hours)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, or raise if it is blank."""

    text = (value or "").strip()
    if not text:
        log.error("%s is required", label)
        raise ValueError(f"{label} is required")
    return text


def require_day(value: aggregation.DayLike, label: str) -> date:
    """Parse ``value`` into a date, or raise if it is missing or invalid."""

    day = aggregation.parse_day(value)
    if day is None:
        log.error("%s is missing or invalid: %r", label, value)
        raise ValueError(f"{label} is missing or invalid: {value!r}")
    return day


def require_nonnegative_price(price: Optional[int]) -> None:
    if price is None or isinstance(price, bool) or not isinstance(price, int) or price < 0:
        log.error("Price validation failed: %r", price)
        raise ValueError("Price must be a whole amount of zero or more")


def require_positive_amount(amount: Optional[int]) -> None:
    if amount is None or isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        log.error("Amount validation failed: %r", amount)
        raise ValueError("Amount must be a whole amount greater than zero")


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured ledger file."""

    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
