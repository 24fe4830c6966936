"""Utility for initializing the clinic ledger workbook and report template.

The module doubles as a script (``clinic-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Border, Font, Side

from . import data_manager, report_filler
from .data_manager import ProductRow
from .seed_data import SEED_PRODUCTS

CONFIG_FILE = "config.ini"
DEFAULT_TEMPLATE_SHEET = "Daily"


@dataclass(frozen=True)
class SetupSettings:
    """Paths the setup script needs from ``config.ini``."""

    data_file: Path
    template_file: Optional[Path] = None
    mapping_file: Optional[Path] = None


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, the same way the CLI resolves them.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Ledger configuration not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"config.ini needs [System] DataFile: {exc}") from exc

    def resolve(raw: Optional[str]) -> Optional[Path]:
        if not raw:
            return None
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = (config_path.parent / path).resolve()
        return path

    return SetupSettings(
        data_file=resolve(data_file_raw),
        template_file=resolve(parser.get("Report", "TemplateFile", fallback=None)),
        mapping_file=resolve(parser.get("Report", "MappingFile", fallback=None)),
    )


def create_ledger_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    seed_products: Iterable[ProductRow] = SEED_PRODUCTS,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    Every sheet gets a bold header row and the catalog is pre-loaded with
    ``seed_products``; pass an empty sequence for a blank catalog. When
    ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Ledger sheets only; drop the blank default.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    for product in seed_products:
        data_manager.append_product(workbook, product)

    workbook.save(destination)
    return destination


def create_report_template(
    destination: Path,
    mapping: report_filler.ReportMapping,
    *,
    overwrite: bool = False,
) -> Path:
    """Create a blank, lightly formatted report template matching ``mapping``.

    Line-item regions receive a bold caption row just above their first row
    and thin borders on every slot, so filled reports show that formatting
    is preserved.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing report template: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = mapping.sheet or DEFAULT_TEMPLATE_SHEET

    bold_font = Font(bold=True)
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)

    for layout, captions in (
        (mapping.sales_lines, report_filler.SALES_LINE_FIELDS),
        (mapping.expense_lines, report_filler.EXPENSE_LINE_FIELDS),
    ):
        if layout is None:
            continue
        for option, field_name in captions.items():
            column = layout.columns.get(field_name)
            if column is None:
                continue
            if layout.start_row > 1:
                caption = worksheet[f"{column}{layout.start_row - 1}"]
                caption.value = option.removesuffix("Column")
                caption.font = bold_font
            for index in range(layout.capacity):
                worksheet[layout.address(field_name, index)].border = border

    for counter in (*mapping.daily_counters, *mapping.monthly_counters):
        for address in (counter.count_cell, counter.amount_cell):
            if address:
                worksheet[address].border = border

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, seed: bool = True) -> list[Path]:
    """Create the ledger and, when configured, the report template."""

    settings = load_settings(config_path)
    created = [
        create_ledger_workbook(
            settings.data_file,
            seed_products=SEED_PRODUCTS if seed else (),
            overwrite=overwrite,
        )
    ]
    if settings.template_file is not None and settings.mapping_file is not None:
        mapping = report_filler.load_mapping(settings.mapping_file)
        created.append(create_report_template(settings.template_file, mapping, overwrite=overwrite))
    return created


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse ``clinic-setup`` arguments."""

    parser = argparse.ArgumentParser(description="Initialize the clinic ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Ledger configuration to read (default: config.ini).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target files if they already exist.",
    )
    parser.add_argument(
        "--no-seed",
        dest="seed",
        action="store_false",
        help="Start with an empty catalog instead of the reference price list.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run ``clinic-setup`` and return a process exit code."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Clinic Ledger Setup ---")
    print(f"Reading {config_path}")

    try:
        created = run_from_config(config_path, overwrite=args.force, seed=args.seed)
    except (FileNotFoundError, KeyError, report_filler.MappingError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Pass --force to replace it, or point DataFile somewhere new.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Could not write ledger files: {exc}")
        return 1

    for path in created:
        print(f"[SUCCESS] Created '{path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
