"""Data access layer for the clinic ledger.

This module provides low-level helpers that read from and write to the
ledger workbook, the row store that holds every staff member, catalog entry,
sale and expense. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and saving the Excel file, on disk or as an
   in-memory byte blob.
3. Sheet operations: loading structured records and appending, updating or
   deleting individual rows by identifier.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Category, DiscountTier, PaymentMethod, SheetName, StaffRole


CONFIG_FILE_NAME = "config.ini"
STAFF_SHEET = SheetName.STAFF.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
EXPENSES_SHEET = SheetName.EXPENSES.value

SHEET_COLUMNS: dict[str, tuple[str, ...]] = {
    STAFF_SHEET: ("StaffID", "Name", "Role"),
    PRODUCTS_SHEET: (
        "ProductID",
        "Category",
        "Name",
        "BasePrice",
        "SeniorPrice",
        "StandardPrice",
        "IsGroup",
    ),
    SALES_SHEET: (
        "SaleID",
        "Date",
        "Category",
        "ProductName",
        "StaffID",
        "StaffRole",
        "Discount",
        "PaymentMethod",
        "BasePrice",
        "FinalPrice",
    ),
    EXPENSES_SHEET: ("ExpenseID", "Date", "StoreName", "CardLast4", "Amount"),
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    clinic_name: str
    schema_version: str
    passcode: str
    template_file: Optional[Path] = None
    mapping_file: Optional[Path] = None
    abort_on_empty: bool = True
    legacy_fallback: bool = False
    snapshot_file: Optional[Path] = None
    snapshot_max_age_hours: float = 24.0


@dataclass(frozen=True)
class StaffRow:
    """In-memory view of a row from the ``Staff`` sheet."""

    staff_id: str
    name: str
    role: StaffRole


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet.

    ``senior_price`` and ``standard_price`` only matter for personal training
    sessions that are not group classes.
    """

    product_id: str
    category: Category
    name: str
    base_price: int
    senior_price: Optional[int] = None
    standard_price: Optional[int] = None
    is_group: bool = False


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet.

    ``sale_date`` keeps the ISO text stored in the workbook so a hand-edited,
    malformed cell never prevents the rest of the ledger from loading.
    """

    sale_id: str
    sale_date: str
    category: Category
    product_name: str
    staff_id: Optional[str]
    staff_role: Optional[StaffRole]
    discount: DiscountTier
    payment_method: PaymentMethod
    base_price: int
    final_price: int


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    expense_date: str
    store_name: str
    card_last4: str
    amount: int


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Return ``explicit_path`` or the nearest ``config.ini`` above the cwd.

    An explicit path is trusted as given; callers that need it to exist go
    through :func:`read_config`. Without one, the current directory and then
    each parent is checked in turn and the closest ledger configuration wins,
    so ``clinic-cli`` works from any folder inside a clinic's data directory.

    Raises:
        FileNotFoundError: If no directory up to the filesystem root holds a
            ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    start = Path.cwd()
    for folder in (start, *start.parents):
        candidate = folder / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate

    raise FileNotFoundError(f"No {CONFIG_FILE_NAME} found in {start} or any parent directory")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Parse the ledger configuration at ``config_path``.

    Raises:
        FileNotFoundError: If the file is missing.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.is_file():
        raise FileNotFoundError(f"Ledger configuration not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: Optional[str], base_path: Path) -> Optional[Path]:
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Access]`` entries are mandatory. ``[Report]``,
    ``[Pricing]`` and ``[Cache]`` are optional and fall back to defaults.
    Relative paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            paths. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If an optional boolean or numeric entry is malformed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        clinic_name = parser.get("System", "ClinicName")
        schema_version = parser.get("System", "SchemaVersion")
        passcode = parser.get("Access", "Passcode")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        clinic_name=clinic_name,
        schema_version=schema_version,
        passcode=passcode,
        template_file=_resolve_path(parser.get("Report", "TemplateFile", fallback=None), base_path),
        mapping_file=_resolve_path(parser.get("Report", "MappingFile", fallback=None), base_path),
        abort_on_empty=parser.getboolean("Report", "AbortOnEmpty", fallback=True),
        legacy_fallback=parser.getboolean("Pricing", "LegacyFallback", fallback=False),
        snapshot_file=_resolve_path(parser.get("Cache", "SnapshotFile", fallback=None), base_path),
        snapshot_max_age_hours=parser.getfloat("Cache", "MaxAgeHours", fallback=24.0),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Load the ledger workbook from ``data_file`` for reading and editing.

    Raises:
        FileNotFoundError: If there is no ledger at ``data_file``; the CLI
            treats this as the cue to try the snapshot for read-only commands.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Ledger workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Write ``workbook`` to ``destination``, creating missing folders."""

    target = Path(destination).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(target)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def load_workbook_bytes(blob: bytes) -> Workbook:
    """Load a workbook from an in-memory byte blob.

    The blob itself is never modified; ``openpyxl`` reads from a private
    :class:`io.BytesIO` copy.
    """

    return openpyxl.load_workbook(BytesIO(blob))


def workbook_to_bytes(workbook: Workbook) -> bytes:
    """Serialize ``workbook`` into ``.xlsx`` bytes without touching disk."""

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_staff(workbook: Workbook) -> Iterable[StaffRow]:
    """Iterate over the ``Staff`` worksheet and yield typed records.

    Args:
        workbook (Workbook): Workbook containing the ``Staff`` sheet.

    Yields:
        StaffRow: Structured representation of each populated row.
    """

    for raw in _iter_sheet(workbook, STAFF_SHEET):
        yield deserialize_staff(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over catalog records stored on the ``Products`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale records from the ``Sales`` worksheet in sheet order."""

    for raw in _iter_sheet(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    """Stream expense records from the ``Expenses`` worksheet in sheet order."""

    for raw in _iter_sheet(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def append_staff(workbook: Workbook, record: StaffRow) -> None:
    """Append a staff record to the ``Staff`` worksheet."""

    workbook[STAFF_SHEET].append(serialize_staff(record))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a catalog record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale record to the ``Sales`` worksheet."""

    workbook[SALES_SHEET].append(serialize_sale(record))


def append_expenses(workbook: Workbook, records: Sequence[ExpenseRow]) -> None:
    """Append one or more expense records to the ``Expenses`` worksheet.

    All rows are serialized before the first append so a malformed record
    cannot leave a partial batch behind.
    """

    rows = [serialize_expense(record) for record in records]
    sheet = workbook[EXPENSES_SHEET]
    for row in rows:
        sheet.append(row)


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: dict[str, Any],
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    unknown = [field for field in field_values if field not in header_map]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    for field, value in field_values.items():
        if isinstance(value, Enum):
            value = value.value
        # Worksheet.cell ignores value=None, so assign directly to allow clearing.
        sheet.cell(row=row_index, column=header_map[field]).value = value


def _delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing catalog entry.

    Only the specified fields are modified, leaving other columns untouched.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values)


def update_sale(workbook: Workbook, sale_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing sale.

    Raises:
        KeyError: If the sale or any referenced column is missing.
    """

    _update_row(workbook, SALES_SHEET, "SaleID", sale_id, field_values)


def delete_staff(workbook: Workbook, staff_id: str) -> None:
    """Remove the ``Staff`` row identified by ``staff_id``.

    Raises:
        KeyError: If no row carries ``staff_id``.
    """

    _delete_row(workbook, STAFF_SHEET, "StaffID", staff_id)


def delete_product(workbook: Workbook, product_id: str) -> None:
    """Remove the ``Products`` row identified by ``product_id``."""

    _delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    """Remove the ``Sales`` row identified by ``sale_id``."""

    _delete_row(workbook, SALES_SHEET, "SaleID", sale_id)


def delete_expense(workbook: Workbook, expense_id: str) -> None:
    """Remove the ``Expenses`` row identified by ``expense_id``."""

    _delete_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_staff(record: StaffRow) -> list[object]:
    """Convert a staff dataclass into ``[StaffID, Name, Role]``."""

    return [record.staff_id, record.name, record.role.value]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a catalog dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.category.value,
        record.name,
        record.base_price,
        record.senior_price,
        record.standard_price,
        record.is_group,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the ``Sales`` column ordering.

    Enumerations are stored by value so the workbook stays readable by hand.
    """

    return [
        record.sale_id,
        record.sale_date,
        record.category.value,
        record.product_name,
        record.staff_id,
        record.staff_role.value if record.staff_role is not None else None,
        record.discount.value,
        record.payment_method.value,
        record.base_price,
        record.final_price,
    ]


def serialize_expense(record: ExpenseRow) -> list[object]:
    """Convert an expense dataclass into the ``Expenses`` column ordering."""

    return [
        record.expense_id,
        record.expense_date,
        record.store_name,
        record.card_last4,
        record.amount,
    ]


def _to_int(raw: object, default: Optional[int] = 0) -> Optional[int]:
    if raw is None or raw == "":
        return default
    try:
        return int(Decimal(str(raw)))
    except InvalidOperation as exc:
        raise ValueError(f"Not a whole-number amount: {raw!r}") from exc


def _to_iso_day(raw: object) -> str:
    # Excel may turn typed dates into real date cells.
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return str(raw) if raw is not None else ""


def _to_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_staff(raw_row: Sequence[object]) -> StaffRow:
    """Convert a raw worksheet row into a strongly typed staff record."""

    staff_id, name, role = raw_row[:3]
    return StaffRow(staff_id=str(staff_id), name=str(name), role=StaffRole(str(role)))


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed catalog record.

    Prices are coerced to integers because Excel may hand back floats for
    numbers typed directly into the sheet.
    """

    product_id, category, name, base_raw, senior_raw, standard_raw, is_group = raw_row[:7]
    return ProductRow(
        product_id=str(product_id),
        category=Category(str(category)),
        name=str(name),
        base_price=_to_int(base_raw),
        senior_price=_to_int(senior_raw, default=None),
        standard_price=_to_int(standard_raw, default=None),
        is_group=bool(is_group),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale record.

    Optional staff columns remain ``None`` when blank so a sale whose staff
    member was deleted round-trips unchanged.
    """

    (
        sale_id,
        sale_date,
        category,
        product_name,
        staff_id,
        staff_role,
        discount,
        payment_method,
        base_raw,
        final_raw,
    ) = raw_row[:10]

    return SaleRow(
        sale_id=str(sale_id),
        sale_date=_to_iso_day(sale_date),
        category=Category(str(category)),
        product_name=str(product_name) if product_name is not None else "",
        staff_id=_to_text(staff_id),
        staff_role=StaffRole(str(staff_role)) if staff_role else None,
        discount=DiscountTier(str(discount)) if discount else DiscountTier.NONE,
        payment_method=PaymentMethod(str(payment_method)),
        base_price=_to_int(base_raw),
        final_price=_to_int(final_raw),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    """Convert a raw worksheet row into a strongly typed expense record."""

    expense_id, expense_date, store_name, card_last4, amount_raw = raw_row[:5]
    return ExpenseRow(
        expense_id=str(expense_id),
        expense_date=_to_iso_day(expense_date),
        store_name=str(store_name) if store_name is not None else "",
        card_last4=str(card_last4) if card_last4 is not None else "",
        amount=_to_int(amount_raw),
    )


def ensure_sheets(workbook: Workbook) -> list[str]:
    """Create any ledger sheet that is missing from ``workbook``.

    Returns:
        list[str]: Names of the sheets that had to be created.
    """

    created = []
    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name in workbook.sheetnames:
            continue
        sheet = workbook.create_sheet(title=sheet_name)
        sheet.append(list(columns))
        created.append(sheet_name)
        log.info("Created missing sheet '%s'", sheet_name)
    return created
