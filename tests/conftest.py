"""Shared pytest fixtures and utilities for clinic ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator, Optional
from unittest.mock import Mock

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from clinic_ledger import cli, constants, core_logic, data_manager, report_filler  # noqa: E402
from clinic_ledger.setup_excel import create_ledger_workbook, create_report_template  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_PASSCODE = "letmein"

MAPPING_TEXT = """\
[Mapping]
Version = 1
Sheet = Daily

[Header]
DateCell = B2
WeekdayCell = F2

[SalesLines]
StartRow = 37
Capacity = 3
PaymentColumn = P
CategoryColumn = Q
ProductColumn = U
AmountColumn = Z
DateColumn = AD

[ExpenseLines]
StartRow = 51
Capacity = 3
StoreColumn = P
DateColumn = T
CardColumn = V
AmountColumn = X

[DailyCounters]
exam/Basic Exam = C7, D7
personal_training/@senior = C10, D10
retail/* = C14, -

[MonthlyCounters]
exam/* = F6, G6

[Labels]
card = Card
cash = Cash
"""

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ClinicName = {clinic_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Access]\n"
    "Passcode = {passcode}\n\n"
    "[Report]\n"
    "TemplateFile = {template_file}\n"
    "MappingFile = {mapping_file}\n"
    "AbortOnEmpty = {abort_on_empty}\n\n"
    "[Pricing]\n"
    "LegacyFallback = {legacy_fallback}\n"
)

_CACHE_TEMPLATE = "\n[Cache]\nSnapshotFile = {snapshot_file}\nMaxAgeHours = {max_age_hours}\n"


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    template_path: Path
    mapping_path: Path
    snapshot_path: Optional[Path]
    passcode: str
    clinic_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def report_mapping() -> report_filler.ReportMapping:
    """Return the compact mapping used across report tests."""

    return report_filler.read_mapping_text(MAPPING_TEXT)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed: bool = False,
        filename: str = "ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        if seed:
            create_ledger_workbook(workbook_path, overwrite=True)
        else:
            create_ledger_workbook(workbook_path, seed_products=(), overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(
    tmp_path: Path,
    workbook_factory: Callable[..., Path],
    report_mapping: report_filler.ReportMapping,
) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        seed: bool = False,
        clinic_name: str = "Test Clinic",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        passcode: str = DEFAULT_PASSCODE,
        abort_on_empty: bool = True,
        legacy_fallback: bool = False,
        with_snapshot: bool = False,
        max_age_hours: float = 24.0,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir.name, seed=seed)
        mapping_path = bundle_dir / "report_mapping.ini"
        mapping_path.write_text(MAPPING_TEXT, encoding="utf-8")
        template_path = create_report_template(bundle_dir / "template.xlsx", report_mapping)
        snapshot_path = bundle_dir / "cache" / "snapshot.json" if with_snapshot else None

        def entry(path: Path) -> str:
            return path.name if make_relative else str(path)

        text = _CONFIG_TEMPLATE.format(
            data_file=entry(workbook_path),
            clinic_name=clinic_name,
            schema_version=schema_version,
            passcode=passcode,
            template_file=entry(template_path),
            mapping_file=entry(mapping_path),
            abort_on_empty="yes" if abort_on_empty else "no",
            legacy_fallback="yes" if legacy_fallback else "no",
        )
        if snapshot_path is not None:
            text += _CACHE_TEMPLATE.format(snapshot_file=snapshot_path, max_age_hours=max_age_hours)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(text, encoding="utf-8")
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            template_path=template_path,
            mapping_path=mapping_path,
            snapshot_path=snapshot_path,
            passcode=passcode,
            clinic_name=clinic_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def admin() -> core_logic.AccessContext:
    """Access granted by the correct passcode."""

    return core_logic.AccessContext(is_admin=True)


@pytest.fixture
def viewer() -> core_logic.AccessContext:
    """Access for anyone without the passcode."""

    return core_logic.VIEW_ONLY


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="clinic-cli", description="Clinic CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        clinic_name="Test Clinic",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        passcode=DEFAULT_PASSCODE,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def memory_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context backed by a real, unsaved in-memory ledger workbook."""

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    data_manager.ensure_sheets(workbook)
    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
