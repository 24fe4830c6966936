"""``clinic-cli``: the command-line front end of the clinic ledger.

Each sub-command is a :class:`CommandSpec`. Executors translate arguments into
``core_logic`` calls and print the outcome; no pricing or ledger rule lives
here. Writes reach the workbook only after the executor succeeds.
"""

from __future__ import annotations

import argparse
import os
import zipfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from openpyxl.utils.exceptions import InvalidFileException

from . import core_logic, log, report_filler, snapshot
from .aggregation import daily_totals, parse_day
from .constants import Category, DiscountTier, PaymentMethod, StaffRole


PASSCODE_ENV = "CLINIC_PASSCODE"

# Failures to open the ledger itself; read-only commands may then use the snapshot.
LEDGER_LOAD_ERRORS = (OSError, zipfile.BadZipFile, InvalidFileException)

Executor = Callable[[core_logic.RuntimeContext, core_logic.AccessContext, argparse.Namespace], int]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Executor
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="clinic-cli",
        description="Command-line tools for the Clinic ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (default: nearest config.ini above the current directory).",
    )
    parser.add_argument(
        "--passcode",
        default=None,
        help=f"Admin passcode for commands that change data (or set {PASSCODE_ENV}).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    execute: Executor,
    *,
    mutates: bool = True,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def _date_argument(value: str) -> date:
    day = parse_day(value)
    if day is None:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value!r}")
    return day


def _whole_amount(value: str) -> int:
    try:
        return int(value.replace(",", ""))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid whole amount: {value!r}") from exc


def _add_sale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", type=_date_argument, default=None, help="Sale date (defaults to today).")
    parser.add_argument("--category", choices=[member.value for member in Category], required=True)
    parser.add_argument("--product", required=True)
    parser.add_argument("--staff-id", default=None)
    parser.add_argument(
        "--discount",
        choices=[member.value for member in DiscountTier],
        default=DiscountTier.NONE.value,
    )
    parser.add_argument(
        "--payment",
        choices=[member.value for member in PaymentMethod],
        default=PaymentMethod.CARD.value,
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", type=_date_argument, default=None, help="Show a single day.")
    parser.add_argument("--from", dest="start", type=_date_argument, default=None)
    parser.add_argument("--to", dest="end", type=_date_argument, default=None)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""

    def add_staff_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", choices=[member.value for member in StaffRole], default=StaffRole.STANDARD.value)

    def id_arg(option: str) -> Callable[[argparse.ArgumentParser], None]:
        def arguments(parser: argparse.ArgumentParser) -> None:
            parser.add_argument(option, required=True)
        return arguments

    def add_product_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--category", choices=[member.value for member in Category], required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--base-price", type=_whole_amount, required=True)
        parser.add_argument("--senior-price", type=_whole_amount, default=None)
        parser.add_argument("--standard-price", type=_whole_amount, default=None)
        parser.add_argument("--group", action="store_true", help="Mark a personal-training product as a group class.")

    def update_product_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--base-price", type=_whole_amount, default=None)
        for role in ("senior", "standard"):
            price = parser.add_mutually_exclusive_group()
            price.add_argument(f"--{role}-price", type=_whole_amount, default=None)
            price.add_argument(
                f"--clear-{role}-price",
                action="store_true",
                help=f"Remove the {role} rate so the base price applies.",
            )
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--group", dest="is_group", action="store_true", default=None)
        group.add_argument("--no-group", dest="is_group", action="store_false", default=None)

    def update_sale_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)
        _add_sale_arguments(parser)

    def expense_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", type=_date_argument, default=None, help="Expense date (defaults to today).")
        parser.add_argument("--store", required=True)
        parser.add_argument("--amount", type=_whole_amount, required=True)
        parser.add_argument("--card-last4", default="")

    def import_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("statement", type=Path, help="Card statement workbook (.xlsx).")

    specs = {
        "add-staff": _simple_spec("add-staff", "Register a staff member.", add_staff_args, run_add_staff),
        "delete-staff": _simple_spec(
            "delete-staff", "Delete a staff member, keeping their sales.", id_arg("--staff-id"), run_delete_staff
        ),
        "add-product": _simple_spec("add-product", "Add a catalog entry.", add_product_args, run_add_product),
        "update-product": _simple_spec(
            "update-product", "Change a catalog entry's name or prices.", update_product_args, run_update_product
        ),
        "delete-product": _simple_spec(
            "delete-product", "Delete a catalog entry.", id_arg("--product-id"), run_delete_product
        ),
        "seed-catalog": _simple_spec(
            "seed-catalog", "Load the reference price list into the catalog.", lambda parser: None, run_seed_catalog
        ),
        "sale": _simple_spec("sale", "Record a sale.", _add_sale_arguments, run_sale),
        "update-sale": _simple_spec("update-sale", "Re-price and replace a sale.", update_sale_args, run_update_sale),
        "delete-sale": _simple_spec("delete-sale", "Delete a sale.", id_arg("--sale-id"), run_delete_sale),
        "expense": _simple_spec("expense", "Record an expense by hand.", expense_args, run_expense),
        "import-expenses": _simple_spec(
            "import-expenses", "Import a card statement as expenses.", import_args, run_import_expenses
        ),
        "delete-expense": _simple_spec(
            "delete-expense", "Delete an expense.", id_arg("--expense-id"), run_delete_expense
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""

    def products_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--category", choices=[member.value for member in Category], default=None)

    def summary_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--period", choices=["month", "year"], default="month")
        parser.add_argument(
            "--year",
            type=int,
            default=None,
            help="Show all twelve months of this year, including empty ones.",
        )

    def export_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", type=_date_argument, default=None, help="Report date (defaults to today).")
        parser.add_argument("--output", type=Path, default=None, help="Destination .xlsx file.")
        empty = parser.add_mutually_exclusive_group()
        empty.add_argument("--allow-empty", dest="abort_on_empty", action="store_false", default=None)
        empty.add_argument("--abort-on-empty", dest="abort_on_empty", action="store_true", default=None)

    specs = {
        "staff": _simple_spec("staff", "List staff members.", lambda parser: None, run_list_staff, mutates=False),
        "products": _simple_spec("products", "List the catalog.", products_args, run_list_products, mutates=False),
        "sales": _simple_spec(
            "sales", "List sales for a day or date range.", _add_filter_arguments, run_list_sales, mutates=False
        ),
        "expenses": _simple_spec(
            "expenses", "List expenses for a day or date range.", _add_filter_arguments, run_list_expenses, mutates=False
        ),
        "summary": _simple_spec(
            "summary", "Display monthly or yearly profit and loss.", summary_args, run_summary, mutates=False
        ),
        "export-report": _simple_spec(
            "export-report", "Fill the daily report template.", export_args, run_export_report, mutates=False
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
    return core_logic.load_runtime_context(target)


def load_snapshot_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Build a read-only context from the snapshot cache.

    Raises:
        FileNotFoundError: If no snapshot is configured or present.
        StaleSnapshotError: If the snapshot is too old.
    """
    settings = core_logic.load_settings(Path(config_path) if config_path is not None else None)
    if settings.snapshot_file is None:
        raise FileNotFoundError("No snapshot cache is configured")
    cached = snapshot.read_snapshot(settings.snapshot_file, max_age=core_logic.snapshot_max_age(settings))
    return core_logic.RuntimeContext(settings=settings, workbook=snapshot.restore_workbook(cached))


def resolve_passcode(args: argparse.Namespace) -> Optional[str]:
    passcode = getattr(args, "passcode", None)
    return passcode if passcode else os.environ.get(PASSCODE_ENV)


def dispatch_command(
    context: core_logic.RuntimeContext,
    access: core_logic.AccessContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, access, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        sale_date=args.date or date.today(),
        category=Category(args.category),
        product_name=args.product,
        discount=DiscountTier(args.discount),
        payment_method=PaymentMethod(args.payment),
        staff_id=args.staff_id or None,
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        expense_date=args.date or date.today(),
        store_name=args.store,
        amount=args.amount,
        card_last4=args.card_last4,
    )


def translate_product_changes(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect only the product attributes the user asked to change."""
    changes: Dict[str, Any] = {}
    for option, field_name in (
        ("name", "name"),
        ("base_price", "base_price"),
        ("senior_price", "senior_price"),
        ("standard_price", "standard_price"),
        ("is_group", "is_group"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            changes[field_name] = value
    for field_name in ("senior_price", "standard_price"):
        if getattr(args, f"clear_{field_name}", False):
            changes[field_name] = None
    return changes


def _money(amount: int) -> str:
    return f"{amount:,}"


def run_add_staff(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    member = core_logic.add_staff(context, access, name=args.name, role=StaffRole(args.role))
    print(f"Added {member.name} ({member.role.value}) as {member.staff_id}")
    return 0


def run_delete_staff(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    detached = core_logic.delete_staff(context, access, args.staff_id)
    print(f"Deleted {args.staff_id}; {detached} sale(s) no longer reference them")
    return 0


def run_add_product(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    product = core_logic.add_product(
        context,
        access,
        category=Category(args.category),
        name=args.name,
        base_price=args.base_price,
        senior_price=args.senior_price,
        standard_price=args.standard_price,
        is_group=args.group,
    )
    print(f"Added {product.category.value}/{product.name} as {product.product_id}")
    return 0


def run_update_product(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    changes = translate_product_changes(args)
    if not changes:
        print("Nothing to update.")
        return 0
    core_logic.update_product(context, access, args.product_id, **changes)
    print(f"Updated {args.product_id}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, access, args.product_id)
    print(f"Deleted {args.product_id}")
    return 0


def run_seed_catalog(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    added = core_logic.seed_catalog(context, access)
    print(f"Added {added} catalog entr{'y' if added == 1 else 'ies'}")
    return 0


def run_sale(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    sale = core_logic.record_sale(context, access, translate_sale(args))
    print(f"Recorded {sale.sale_id}: {sale.product_name} {_money(sale.base_price)} -> {_money(sale.final_price)}")
    return 0


def run_update_sale(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    sale = core_logic.update_sale(context, access, args.sale_id, translate_sale(args))
    print(f"Updated {sale.sale_id}: {sale.product_name} {_money(sale.final_price)}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    core_logic.delete_sale(context, access, args.sale_id)
    print(f"Deleted {args.sale_id}")
    return 0


def run_expense(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    expense = core_logic.record_expense(context, access, translate_expense(args))
    print(f"Recorded {expense.expense_id}: {expense.store_name} {_money(expense.amount)}")
    return 0


def run_import_expenses(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    result = core_logic.import_expenses(context, access, args.statement)
    print(f"Imported {len(result.expenses)} expense(s); skipped {result.skipped} row(s)")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, access, args.expense_id)
    print(f"Deleted {args.expense_id}")
    return 0


def run_list_staff(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    for member in core_logic.list_staff(context):
        print(f"{member.staff_id}  {member.name:<20} {member.role.value}")
    return 0


def run_list_products(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    category = Category(args.category) if args.category else None
    for product in core_logic.list_products(context, category=category):
        extras = []
        if product.senior_price is not None:
            extras.append(f"senior {_money(product.senior_price)}")
        if product.standard_price is not None:
            extras.append(f"standard {_money(product.standard_price)}")
        if product.is_group:
            extras.append("group")
        suffix = f" ({', '.join(extras)})" if extras else ""
        print(f"{product.product_id}  {product.category.value:<18} {product.name:<32} {_money(product.base_price):>12}{suffix}")
    return 0


def _filter_kwargs(args: argparse.Namespace) -> Dict[str, Any]:
    if args.date is None and args.start is None and args.end is None:
        return {"on": date.today()}
    if args.date is not None:
        return {"on": args.date}
    return {"start": args.start, "end": args.end}


def _print_daily_totals(records: Sequence[Any]) -> None:
    for day, total in daily_totals(records):
        print(f"  {day.isoformat()}  {_money(total):>14}")


def run_list_sales(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    sales = core_logic.filter_sales(context, **_filter_kwargs(args))
    for sale in sales:
        print(
            f"{sale.sale_id}  {sale.sale_date}  {sale.category.value:<18} {sale.product_name:<28} "
            f"{sale.discount.value:<5} {sale.payment_method.value:<14} {_money(sale.final_price):>12}"
        )
    print("Daily totals:")
    _print_daily_totals(sales)
    return 0


def run_list_expenses(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    expenses = core_logic.filter_expenses(context, **_filter_kwargs(args))
    for expense in expenses:
        print(
            f"{expense.expense_id}  {expense.expense_date}  {expense.store_name:<28} "
            f"{expense.card_last4:<4} {_money(expense.amount):>12}"
        )
    print("Daily totals:")
    _print_daily_totals(expenses)
    return 0


def run_summary(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    summaries = core_logic.summarize(context, period=args.period, year=args.year)
    print(f"{'period':<8} {'sales':>14} {'expenses':>14} {'profit':>14}")
    for summary in summaries:
        print(
            f"{summary.period:<8} {_money(summary.total_sales):>14} "
            f"{_money(summary.total_expenses):>14} {_money(summary.profit):>14}"
        )
    return 0


def run_export_report(context: core_logic.RuntimeContext, access: core_logic.AccessContext, args: argparse.Namespace) -> int:
    target_day = args.date or date.today()
    content = core_logic.export_daily_report(context, access, target_day, abort_on_empty=args.abort_on_empty)
    output = args.output or Path.cwd() / report_filler.report_filename(target_day)
    output = Path(output).expanduser().resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(content)
    print(f"Wrote {output}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.BusinessRuleViolation, report_filler.ReportError)):
        log.error("%s", error)
        return 2
    if isinstance(error, (FileNotFoundError, snapshot.StaleSnapshotError)):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def refresh_snapshot(context: core_logic.RuntimeContext) -> None:
    """Write the snapshot cache if one is configured."""
    target = context.settings.snapshot_file
    if target is None:
        return
    try:
        snapshot.write_snapshot(target, core_logic.build_snapshot(context))
    except OSError as error:
        log.warning("Could not refresh snapshot '%s': %s", target, error)


def _open_context(config_path: Optional[Path], spec: CommandSpec) -> tuple[core_logic.RuntimeContext, bool]:
    try:
        return load_runtime_context(config_path), False
    except LEDGER_LOAD_ERRORS as error:
        if spec.mutates:
            raise
        log.warning("Ledger unavailable (%s); trying the snapshot cache", error)
        try:
            return load_snapshot_context(config_path), True
        except FileNotFoundError:
            raise error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        spec = command_table[args.command]
        context, from_snapshot = _open_context(getattr(args, "config", None), spec)
        core_logic.ensure_schema_version(context)
        access = core_logic.authorize(context.settings, resolve_passcode(args))
        exit_code = dispatch_command(context, access, args, command_table)
        if exit_code == 0 and not from_snapshot:
            if spec.mutates:
                persist_workbook(context)
            refresh_snapshot(context)
        return exit_code
    except Exception as error:  # every failure ends in an exit code
        return handle_cli_error(error)
