"""Card statement ingestion.

Card issuers export statements as spreadsheets whose first sheet holds one
transaction per row: the date in column A, the card or account number in
column C, the merchant in column D and the amount in column F. The first row
is a header. Rows that cannot be turned into a complete expense are skipped
as a whole and counted.
"""

from __future__ import annotations

import re
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from . import log
from .data_manager import ExpenseRow


DATE_COLUMN = 0  # A
CARD_COLUMN = 2  # C
DESCRIPTION_COLUMN = 3  # D
AMOUNT_COLUMN = 5  # F

_LAST4_PATTERN = re.compile(r"(\d{4})\D*$")
_DATE_SEPARATORS = re.compile(r"[./-]")


@dataclass(frozen=True)
class ImportResult:
    """Expenses parsed from a statement plus the number of rejected rows."""

    expenses: list[ExpenseRow] = field(default_factory=list)
    skipped: int = 0


def _default_expense_id(row_number: int) -> str:
    return f"EX{uuid.uuid4().hex[:16].upper()}"


def parse_statement_date(raw: object) -> Optional[date]:
    """Parse a statement date cell.

    Text cells look like ``24.03.15`` or ``24.03.15(Fri)``; two-digit years
    are read as 20YY and four-digit years are accepted as-is. Real date cells
    are used directly.
    """

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None

    text = raw.split("(")[0].strip()
    parts = _DATE_SEPARATORS.split(text)
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        return None

    year_text, month_text, day_text = parts
    if len(year_text) == 2:
        year = 2000 + int(year_text)
    elif len(year_text) == 4:
        year = int(year_text)
    else:
        return None

    try:
        return date(year, int(month_text), int(day_text))
    except ValueError:
        return None


def extract_last4(raw: object) -> str:
    """Return the last group of four digits in a card number, or ``""``."""

    match = _LAST4_PATTERN.search(str(raw or "").strip())
    return match.group(1) if match else ""


def parse_amount(raw: object) -> Optional[int]:
    """Parse a positive whole amount such as ``50000`` or ``"50,000"``.

    Fractional amounts are rejected; the clinic books whole won only.
    """

    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).replace(",", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0 or amount != amount.to_integral_value():
        return None
    return int(amount)


def parse_expense_row(
    row: Sequence[object], *, expense_id: str
) -> Optional[ExpenseRow]:
    """Turn one statement row into an :class:`ExpenseRow` or ``None``."""

    cells = list(row) + [None] * (AMOUNT_COLUMN + 1 - len(row))
    raw_date = cells[DATE_COLUMN]
    description = cells[DESCRIPTION_COLUMN]
    raw_amount = cells[AMOUNT_COLUMN]

    if raw_date in (None, "") or description in (None, "") or raw_amount in (None, ""):
        return None

    expense_date = parse_statement_date(raw_date)
    amount = parse_amount(raw_amount)
    if expense_date is None or amount is None:
        return None

    return ExpenseRow(
        expense_id=expense_id,
        expense_date=expense_date.isoformat(),
        store_name=str(description).strip(),
        card_last4=extract_last4(cells[CARD_COLUMN]),
        amount=amount,
    )


def parse_expense_rows(
    rows: Iterable[Sequence[object]],
    *,
    id_factory: Callable[[int], str] = _default_expense_id,
    skip_header: bool = True,
) -> ImportResult:
    """Parse statement rows into expenses.

    Args:
        rows (Iterable[Sequence[object]]): Raw cell values, header first.
        id_factory (Callable[[int], str]): Produces an identifier for the
            expense built from the given 1-based sheet row number.
        skip_header (bool): Whether the first row is a header.

    Returns:
        ImportResult: Parsed expenses in statement order and the number of
            non-empty rows that were rejected.
    """

    expenses: list[ExpenseRow] = []
    skipped = 0
    for row_number, row in enumerate(rows, start=1):
        if skip_header and row_number == 1:
            continue
        if not row or all(cell in (None, "") for cell in row):
            continue
        expense = parse_expense_row(row, expense_id=id_factory(row_number))
        if expense is None:
            skipped += 1
            log.debug("Skipped statement row %d: %r", row_number, row)
            continue
        expenses.append(expense)

    if skipped:
        log.warning("Skipped %d malformed statement row(s)", skipped)
    return ImportResult(expenses=expenses, skipped=skipped)


def read_expense_workbook(
    source: Union[bytes, Path],
    *,
    id_factory: Callable[[int], str] = _default_expense_id,
) -> ImportResult:
    """Read the first sheet of a statement workbook and parse its rows.

    Raises:
        FileNotFoundError: If ``source`` is a path that does not exist.
        ValueError: If the content is not a readable ``.xlsx`` workbook.
    """

    if isinstance(source, (bytes, bytearray)):
        handle = BytesIO(source)
        label = "<upload>"
    else:
        path = Path(source).expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Statement workbook not found: {path}")
        handle = path
        label = str(path)

    try:
        workbook = openpyxl.load_workbook(handle, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise ValueError(f"Unreadable statement workbook {label}: {exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        result = parse_expense_rows(sheet.iter_rows(values_only=True), id_factory=id_factory)
    finally:
        workbook.close()

    log.info("Parsed %d expense(s) from %s", len(result.expenses), label)
    return result


__all__ = [
    "ImportResult",
    "parse_statement_date",
    "extract_last4",
    "parse_amount",
    "parse_expense_row",
    "parse_expense_rows",
    "read_expense_workbook",
]
