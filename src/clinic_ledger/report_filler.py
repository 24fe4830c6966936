"""Daily report generation on top of a formatted template workbook.

The clinic keeps its daily sales/expense sheet as a hand-formatted Excel
template. Rather than hard-coding where each figure goes, a versioned INI
mapping names the target cell of every field; :func:`fill_report` computes the
figures for one day, writes them into a copy of the template through
:func:`patch_cells`, and returns the new workbook as bytes. Cells the mapping
does not name keep their value and their formatting.

Example mapping::

    [Mapping]
    Version = 1

    [Header]
    DateCell = B2
    DateFormat = %Y-%m-%d
    WeekdayCell = F2

    [SalesLines]
    StartRow = 37
    Capacity = 12
    PaymentColumn = P
    CategoryColumn = Q
    ProductColumn = U
    AmountColumn = Z
    DateColumn = AD

    [DailyCounters]
    exam/Basic Exam = C10, D10
    personal_training/@senior = C20, D20
"""

from __future__ import annotations

import configparser
import zipfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.cell.cell import MergedCell
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string
from openpyxl.utils.exceptions import CellCoordinatesException, InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .aggregation import DayLike, filter_in_range, filter_on_date, parse_day
from .constants import Category, StaffRole
from .data_manager import ExpenseRow, SaleRow


SUPPORTED_MAPPING_VERSIONS = frozenset({"1"})
DEFAULT_WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
SKIP_CELL = "-"


class ReportError(Exception):
    """Base class for failures that abort report generation."""


class TemplateUnavailableError(ReportError):
    """Raised when the template workbook is missing or unreadable."""


class EmptyReportError(ReportError):
    """Raised when the requested day has neither sales nor expenses."""


class MappingError(ReportError):
    """Raised when a cell mapping file is malformed or of an unknown version."""


@dataclass(frozen=True)
class LineLayout:
    """Where sequential line items go: first row, row budget and columns."""

    start_row: int
    capacity: int
    columns: Mapping[str, str]

    def address(self, field_name: str, index: int) -> Optional[str]:
        column = self.columns.get(field_name)
        if column is None:
            return None
        return f"{column}{self.start_row + index}"


@dataclass(frozen=True)
class CounterCells:
    """Count and amount cells for one ``category/selector`` counter."""

    category: Category
    selector: str
    count_cell: Optional[str]
    amount_cell: Optional[str]

    def matches(self, sale: SaleRow) -> bool:
        if sale.category is not self.category:
            return False
        if self.selector == "*":
            return True
        if self.selector.startswith("@"):
            return sale.staff_role is not None and sale.staff_role.value == self.selector[1:]
        return sale.product_name == self.selector


@dataclass(frozen=True)
class ReportMapping:
    """Parsed, validated cell mapping."""

    version: str
    sheet: Optional[str] = None
    date_cell: Optional[str] = None
    date_format: str = "%Y-%m-%d"
    weekday_cell: Optional[str] = None
    weekday_labels: Sequence[str] = DEFAULT_WEEKDAY_LABELS
    sales_lines: Optional[LineLayout] = None
    expense_lines: Optional[LineLayout] = None
    daily_counters: Sequence[CounterCells] = field(default_factory=tuple)
    monthly_counters: Sequence[CounterCells] = field(default_factory=tuple)
    labels: Mapping[str, str] = field(default_factory=dict)

    def label(self, value: str) -> str:
        return self.labels.get(value, value)


SALES_LINE_FIELDS = {
    "PaymentColumn": "payment",
    "CategoryColumn": "category",
    "ProductColumn": "product",
    "AmountColumn": "amount",
    "DateColumn": "date",
}

EXPENSE_LINE_FIELDS = {
    "StoreColumn": "store",
    "DateColumn": "date",
    "CardColumn": "card",
    "AmountColumn": "amount",
}


def _cell(raw: Optional[str], where: str) -> Optional[str]:
    if raw is None:
        return None
    raw = raw.strip().upper()
    if not raw or raw == SKIP_CELL:
        return None
    try:
        coordinate_from_string(raw)
    except (CellCoordinatesException, ValueError) as exc:
        raise MappingError(f"Invalid cell address {raw!r} in {where}") from exc
    return raw


def _column(raw: str, where: str) -> str:
    raw = raw.strip().upper()
    try:
        column_index_from_string(raw)
    except ValueError as exc:
        raise MappingError(f"Invalid column {raw!r} in {where}") from exc
    return raw


def _line_layout(parser: configparser.ConfigParser, section: str, fields: Mapping[str, str]) -> Optional[LineLayout]:
    if not parser.has_section(section):
        return None
    try:
        start_row = parser.getint(section, "StartRow")
        capacity = parser.getint(section, "Capacity")
    except (configparser.NoOptionError, ValueError) as exc:
        raise MappingError(f"[{section}] needs integer StartRow and Capacity: {exc}") from exc
    if start_row < 1 or capacity < 0:
        raise MappingError(f"[{section}] StartRow must be >= 1 and Capacity >= 0")

    columns = {
        name: _column(parser.get(section, option), f"[{section}] {option}")
        for option, name in fields.items()
        if parser.has_option(section, option)
    }
    return LineLayout(start_row=start_row, capacity=capacity, columns=columns)


def _counters(parser: configparser.ConfigParser, section: str) -> tuple[CounterCells, ...]:
    if not parser.has_section(section):
        return ()
    counters = []
    for key, value in parser.items(section):
        category_text, sep, selector = key.partition("/")
        if not sep or not selector.strip():
            raise MappingError(f"[{section}] key {key!r} must look like 'category/product'")
        try:
            category = Category(category_text.strip())
        except ValueError as exc:
            raise MappingError(f"[{section}] unknown category in {key!r}") from exc
        selector = selector.strip()
        if selector.startswith("@") and selector[1:] not in {role.value for role in StaffRole}:
            raise MappingError(f"[{section}] unknown staff role in {key!r}")

        cells = [part.strip() for part in value.split(",")]
        if len(cells) != 2:
            raise MappingError(f"[{section}] {key!r} needs 'count_cell, amount_cell'")
        where = f"[{section}] {key}"
        counters.append(
            CounterCells(
                category=category,
                selector=selector,
                count_cell=_cell(cells[0], where),
                amount_cell=_cell(cells[1], where),
            )
        )
    return tuple(counters)


def parse_mapping(parser: configparser.ConfigParser) -> ReportMapping:
    """Build a :class:`ReportMapping` from an already parsed INI document.

    Raises:
        MappingError: If the version is missing or unsupported, or any cell,
            column or counter key is malformed.
    """

    version = parser.get("Mapping", "Version", fallback=None)
    if version is None:
        raise MappingError("Mapping file has no [Mapping] Version")
    if version not in SUPPORTED_MAPPING_VERSIONS:
        raise MappingError(
            f"Unsupported mapping version {version!r}; expected one of {sorted(SUPPORTED_MAPPING_VERSIONS)}"
        )

    weekday_labels = DEFAULT_WEEKDAY_LABELS
    raw_labels = parser.get("Header", "WeekdayLabels", fallback=None)
    if raw_labels:
        weekday_labels = tuple(label.strip() for label in raw_labels.split(","))
        if len(weekday_labels) != 7:
            raise MappingError("[Header] WeekdayLabels needs seven comma-separated labels")

    return ReportMapping(
        version=version,
        sheet=parser.get("Mapping", "Sheet", fallback=None) or None,
        date_cell=_cell(parser.get("Header", "DateCell", fallback=None), "[Header] DateCell"),
        date_format=parser.get("Header", "DateFormat", fallback="%Y-%m-%d"),
        weekday_cell=_cell(parser.get("Header", "WeekdayCell", fallback=None), "[Header] WeekdayCell"),
        weekday_labels=weekday_labels,
        sales_lines=_line_layout(parser, "SalesLines", SALES_LINE_FIELDS),
        expense_lines=_line_layout(parser, "ExpenseLines", EXPENSE_LINE_FIELDS),
        daily_counters=_counters(parser, "DailyCounters"),
        monthly_counters=_counters(parser, "MonthlyCounters"),
        labels=dict(parser.items("Labels")) if parser.has_section("Labels") else {},
    )


def _new_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None)
    # Counter keys carry product names, which are case sensitive.
    parser.optionxform = str
    return parser


def read_mapping_text(text: str) -> ReportMapping:
    """Parse a mapping from INI text."""

    parser = _new_parser()
    try:
        parser.read_string(text)
    except configparser.Error as exc:
        raise MappingError(f"Malformed mapping file: {exc}") from exc
    return parse_mapping(parser)


def load_mapping(path: Path) -> ReportMapping:
    """Load and validate a mapping file.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        MappingError: If the file is malformed.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Report mapping not found: {path}")
    mapping = read_mapping_text(path.read_text(encoding="utf-8"))
    log.debug("Loaded report mapping v%s from '%s'", mapping.version, path)
    return mapping


def load_template(path: Optional[Path]) -> bytes:
    """Read the template workbook into memory.

    Raises:
        TemplateUnavailableError: If no template is configured or it cannot
            be read.
    """

    if path is None:
        raise TemplateUnavailableError("No report template is configured")
    path = Path(path).expanduser().resolve()
    try:
        return path.read_bytes()
    except OSError as exc:
        raise TemplateUnavailableError(f"Report template unavailable: {path} ({exc})") from exc


def patch_cells(worksheet: Worksheet, values: Mapping[str, Any]) -> int:
    """Write ``values`` into ``worksheet`` by cell address, keeping styles.

    Only each cell's value is replaced; font, fill, border and number format
    stay as the template defines them. Addresses inside a merged range are
    redirected to the range's top-left cell, the only one Excel displays.

    Returns:
        int: Number of cells written.
    """

    written = 0
    for address, value in values.items():
        cell = worksheet[address]
        if isinstance(cell, MergedCell):
            for merged in worksheet.merged_cells.ranges:
                if address in merged:
                    cell = worksheet.cell(row=merged.min_row, column=merged.min_col)
                    break
        cell.value = value
        written += 1
    return written


def format_short_date(day: date) -> str:
    """Format ``day`` as ``M.DD`` (``2024-03-05`` becomes ``3.05``)."""

    return f"{day.month}.{day.day:02d}"


def _counter_values(counters: Iterable[CounterCells], sales: Sequence[SaleRow]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for counter in counters:
        matched = [sale for sale in sales if counter.matches(sale)]
        if counter.count_cell:
            values[counter.count_cell] = len(matched)
        if counter.amount_cell:
            values[counter.amount_cell] = sum(sale.final_price for sale in matched)
    return values


def _line_values(layout: Optional[LineLayout], rows: Sequence[Mapping[str, Any]], kind: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if layout is None:
        return values
    if len(rows) > layout.capacity:
        log.debug(
            "Truncating %s lines: %d rows, room for %d",
            kind,
            len(rows),
            layout.capacity,
        )
    for index, row in enumerate(rows[: layout.capacity]):
        for field_name, value in row.items():
            address = layout.address(field_name, index)
            if address is not None:
                values[address] = value
    return values


def build_cell_values(
    day: date,
    sales: Iterable[SaleRow],
    expenses: Iterable[ExpenseRow],
    mapping: ReportMapping,
) -> dict[str, Any]:
    """Compute every cell value the mapping asks for on ``day``.

    Daily counters cover ``day`` only; monthly counters cover the month to
    date, from the first of the month through ``day``. Line items keep the
    order of the input collections and stop silently at each layout's
    capacity.

    Returns:
        dict[str, Any]: Cell address to value.
    """

    sales = list(sales)
    expenses = list(expenses)
    day_sales = filter_on_date(sales, day)
    day_expenses = filter_on_date(expenses, day)
    month_sales = filter_in_range(sales, day.replace(day=1), day)
    short_date = format_short_date(day)

    values: dict[str, Any] = {}
    if mapping.date_cell:
        values[mapping.date_cell] = day.strftime(mapping.date_format)
    if mapping.weekday_cell:
        values[mapping.weekday_cell] = mapping.weekday_labels[day.weekday()]

    values.update(_counter_values(mapping.daily_counters, day_sales))
    values.update(_counter_values(mapping.monthly_counters, month_sales))

    sale_lines = [
        {
            "payment": mapping.label(sale.payment_method.value),
            "category": mapping.label(sale.category.value),
            "product": sale.product_name,
            "amount": sale.final_price,
            "date": short_date,
        }
        for sale in day_sales
    ]
    expense_lines = [
        {
            "store": expense.store_name,
            "date": short_date,
            "card": expense.card_last4,
            "amount": expense.amount,
        }
        for expense in day_expenses
    ]
    values.update(_line_values(mapping.sales_lines, sale_lines, "sales"))
    values.update(_line_values(mapping.expense_lines, expense_lines, "expense"))
    return values


def fill_report(
    template: bytes,
    target_day: DayLike,
    sales: Iterable[SaleRow],
    expenses: Iterable[ExpenseRow],
    mapping: ReportMapping,
    *,
    abort_on_empty: bool = True,
) -> bytes:
    """Produce the daily report workbook for ``target_day``.

    Args:
        template (bytes): Template workbook content; never modified.
        target_day (DayLike): Day the report covers.
        sales (Iterable[SaleRow]): Full sale collection.
        expenses (Iterable[ExpenseRow]): Full expense collection.
        mapping (ReportMapping): Field-to-cell mapping.
        abort_on_empty (bool): Refuse to generate a report for a day with no
            sales and no expenses.

    Returns:
        bytes: The filled workbook in ``.xlsx`` format.

    Raises:
        ValueError: If ``target_day`` is not a valid date.
        EmptyReportError: If the day is empty and ``abort_on_empty`` is set.
        TemplateUnavailableError: If ``template`` is not a readable workbook.
        MappingError: If the mapping names a sheet the template lacks.
    """

    day = parse_day(target_day)
    if day is None:
        raise ValueError(f"Invalid report date: {target_day!r}")

    sales = list(sales)
    expenses = list(expenses)
    if abort_on_empty and not filter_on_date(sales, day) and not filter_on_date(expenses, day):
        raise EmptyReportError(f"No sales or expenses recorded on {day.isoformat()}")

    if not template:
        raise TemplateUnavailableError("Report template is empty")
    try:
        workbook = data_manager.load_workbook_bytes(template)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise TemplateUnavailableError(f"Report template is not a readable workbook: {exc}") from exc

    if mapping.sheet:
        if mapping.sheet not in workbook.sheetnames:
            raise MappingError(f"Template has no sheet named {mapping.sheet!r}")
        worksheet = workbook[mapping.sheet]
    else:
        worksheet = workbook.worksheets[0]

    written = patch_cells(worksheet, build_cell_values(day, sales, expenses, mapping))
    log.info("Filled %d cell(s) for the %s report", written, day.isoformat())
    return data_manager.workbook_to_bytes(workbook)


def report_filename(day: date) -> str:
    return f"sales_expenses_{day.strftime('%Y%m%d')}.xlsx"


__all__ = [
    "ReportError",
    "TemplateUnavailableError",
    "EmptyReportError",
    "MappingError",
    "LineLayout",
    "CounterCells",
    "ReportMapping",
    "parse_mapping",
    "read_mapping_text",
    "load_mapping",
    "load_template",
    "patch_cells",
    "format_short_date",
    "build_cell_values",
    "fill_report",
    "report_filename",
]
