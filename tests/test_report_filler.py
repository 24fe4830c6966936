"""Unit tests for the daily report template filler."""

from __future__ import annotations

from datetime import date
from io import BytesIO

import openpyxl
from openpyxl.styles import Font, PatternFill
import pytest

from clinic_ledger import report_filler
from clinic_ledger.constants import Category, DiscountTier, PaymentMethod, StaffRole
from clinic_ledger.data_manager import ExpenseRow, SaleRow


REPORT_DAY = date(2024, 3, 15)  # a Friday


def _sale(sale_id, sale_date, category, product, final_price, *, role=None, payment=PaymentMethod.CARD):
    return SaleRow(
        sale_id=sale_id,
        sale_date=sale_date,
        category=category,
        product_name=product,
        staff_id="ST1" if role else None,
        staff_role=role,
        discount=DiscountTier.NONE,
        payment_method=payment,
        base_price=final_price,
        final_price=final_price,
    )


SALES = [
    _sale("S1", "2024-03-15", Category.EXAM, "Basic Exam", 100_000),
    _sale("S2", "2024-03-15", Category.PERSONAL_TRAINING, "1 Session", 90_000, role=StaffRole.SENIOR),
    _sale("S3", "2024-03-15", Category.RETAIL, "Gatorade", 2_000, payment=PaymentMethod.CASH),
    _sale("S4", "2024-03-02", Category.EXAM, "Wingate", 50_000),
    _sale("S5", "2024-02-28", Category.EXAM, "Basic Exam", 100_000),
]
EXPENSES = [
    ExpenseRow("E1", "2024-03-15", "Acme Store", "5678", 50_000),
    ExpenseRow("E2", "2024-03-14", "Other Store", "5678", 9_000),
]


def _template_bytes(sheet_title: str = "Daily") -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet["A1"] = "Daily Sales Report"
    sheet["A1"].font = Font(bold=True, size=14)
    sheet["Z37"].fill = PatternFill(fill_type="solid", start_color="FFFF00", end_color="FFFF00")
    sheet.merge_cells("B2:D2")
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _load(content: bytes):
    return openpyxl.load_workbook(BytesIO(content))["Daily"]


# ---------------------------------------------------------------------------
# Mapping parsing
# ---------------------------------------------------------------------------


def test_read_mapping_text_parses_all_sections(report_mapping):
    assert report_mapping.version == "1"
    assert report_mapping.sheet == "Daily"
    assert report_mapping.date_cell == "B2"
    assert report_mapping.sales_lines.start_row == 37
    assert report_mapping.sales_lines.address("amount", 2) == "Z39"
    assert report_mapping.expense_lines.address("card", 0) == "V51"
    assert report_mapping.label("card") == "Card"
    assert report_mapping.label("exam") == "exam"

    counters = {(c.category, c.selector): c for c in report_mapping.daily_counters}
    assert counters[(Category.EXAM, "Basic Exam")].count_cell == "C7"
    assert counters[(Category.RETAIL, "*")].amount_cell is None


def test_read_mapping_text_rejects_unknown_version():
    with pytest.raises(report_filler.MappingError):
        report_filler.read_mapping_text("[Mapping]\nVersion = 2\n")


def test_read_mapping_text_requires_version():
    with pytest.raises(report_filler.MappingError):
        report_filler.read_mapping_text("[Header]\nDateCell = B2\n")


@pytest.mark.parametrize(
    "section",
    [
        "[DailyCounters]\nexam = C1, D1\n",
        "[DailyCounters]\nsauna/* = C1, D1\n",
        "[DailyCounters]\npersonal_training/@intern = C1, D1\n",
        "[DailyCounters]\nexam/* = C1\n",
        "[DailyCounters]\nexam/* = 1C, D1\n",
        "[SalesLines]\nStartRow = 0\nCapacity = 3\n",
        "[SalesLines]\nStartRow = 10\n",
    ],
)
def test_read_mapping_text_rejects_malformed_entries(section):
    with pytest.raises(report_filler.MappingError):
        report_filler.read_mapping_text("[Mapping]\nVersion = 1\n\n" + section)


def test_load_mapping_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        report_filler.load_mapping(tmp_path / "absent.ini")


def test_load_template_requires_configured_readable_file(tmp_path):
    with pytest.raises(report_filler.TemplateUnavailableError):
        report_filler.load_template(None)
    with pytest.raises(report_filler.TemplateUnavailableError):
        report_filler.load_template(tmp_path / "absent.xlsx")


# ---------------------------------------------------------------------------
# Cell computation
# ---------------------------------------------------------------------------


def test_format_short_date():
    assert report_filler.format_short_date(date(2024, 3, 5)) == "3.05"
    assert report_filler.format_short_date(date(2024, 12, 25)) == "12.25"


def test_build_cell_values_header_counters_and_lines(report_mapping):
    values = report_filler.build_cell_values(REPORT_DAY, SALES, EXPENSES, report_mapping)

    assert values["B2"] == "2024-03-15"
    assert values["F2"] == "Fri"

    assert values["C7"] == 1
    assert values["D7"] == 100_000
    assert values["C10"] == 1
    assert values["D10"] == 90_000
    assert values["C14"] == 1
    assert "D14" not in values

    # Month to date: both March exams, not February's.
    assert values["F6"] == 2
    assert values["G6"] == 150_000

    assert values["P37"] == "Card"
    assert values["Q37"] == "exam"
    assert values["U37"] == "Basic Exam"
    assert values["Z37"] == 100_000
    assert values["AD37"] == "3.15"
    assert values["P39"] == "Cash"

    assert values["P51"] == "Acme Store"
    assert values["T51"] == "3.15"
    assert values["V51"] == "5678"
    assert values["X51"] == 50_000
    assert "P52" not in values


def test_build_cell_values_truncates_at_capacity(report_mapping):
    many = [_sale(f"S{i}", "2024-03-15", Category.RETAIL, "ZT", 1_000) for i in range(5)]

    values = report_filler.build_cell_values(REPORT_DAY, many, [], report_mapping)

    assert "U39" in values
    assert "U40" not in values
    assert values["C14"] == 5


# ---------------------------------------------------------------------------
# Filling
# ---------------------------------------------------------------------------


def test_fill_report_writes_values_and_keeps_formatting(report_mapping):
    template = _template_bytes()

    content = report_filler.fill_report(template, REPORT_DAY, SALES, EXPENSES, report_mapping)
    sheet = _load(content)

    assert sheet["A1"].value == "Daily Sales Report"
    assert sheet["A1"].font.bold is True
    assert sheet["Z37"].value == 100_000
    assert sheet["Z37"].fill.start_color.rgb.endswith("FFFF00")
    assert sheet["B2"].value == "2024-03-15"


def test_fill_report_leaves_template_bytes_untouched(report_mapping):
    template = _template_bytes()
    original = bytes(template)

    report_filler.fill_report(template, REPORT_DAY, SALES, EXPENSES, report_mapping)

    assert template == original


def test_fill_report_aborts_on_empty_day(report_mapping):
    with pytest.raises(report_filler.EmptyReportError):
        report_filler.fill_report(_template_bytes(), "2024-01-01", SALES, EXPENSES, report_mapping)


def test_fill_report_can_produce_empty_report(report_mapping):
    content = report_filler.fill_report(
        _template_bytes(), "2024-01-01", SALES, EXPENSES, report_mapping, abort_on_empty=False
    )
    sheet = _load(content)

    assert sheet["B2"].value == "2024-01-01"
    assert sheet["C7"].value == 0
    assert sheet["P37"].value is None


def test_fill_report_rejects_missing_sheet(report_mapping):
    with pytest.raises(report_filler.MappingError):
        report_filler.fill_report(_template_bytes("Other"), REPORT_DAY, SALES, EXPENSES, report_mapping)


def test_fill_report_rejects_unreadable_template(report_mapping):
    with pytest.raises(report_filler.TemplateUnavailableError):
        report_filler.fill_report(b"", REPORT_DAY, SALES, EXPENSES, report_mapping)
    with pytest.raises(report_filler.TemplateUnavailableError):
        report_filler.fill_report(b"garbage", REPORT_DAY, SALES, EXPENSES, report_mapping)


def test_fill_report_rejects_invalid_date(report_mapping):
    with pytest.raises(ValueError):
        report_filler.fill_report(_template_bytes(), "someday", SALES, EXPENSES, report_mapping)


def test_patch_cells_redirects_merged_cells():
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.merge_cells("B2:D2")

    written = report_filler.patch_cells(sheet, {"C2": "inside", "A1": 5})

    assert written == 2
    assert sheet["B2"].value == "inside"
    assert sheet["A1"].value == 5


def test_report_filename():
    assert report_filler.report_filename(REPORT_DAY) == "sales_expenses_20240315.xlsx"
