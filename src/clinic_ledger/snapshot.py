"""Cache-aside JSON snapshot of the ledger for read-only fallbacks.

After a successful load the CLI refreshes a snapshot of all four collections.
When the ledger workbook cannot be opened, read-only commands may serve that
snapshot instead, but only while it is younger than the configured maximum
age, and always with a warning naming its age. Writes never consult it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

from openpyxl import Workbook

from . import data_manager, log


SNAPSHOT_FORMAT = 1


class StaleSnapshotError(RuntimeError):
    """Raised when the only available snapshot is older than allowed."""


@dataclass(frozen=True)
class LedgerSnapshot:
    """All four collections as of ``taken_at``."""

    taken_at: datetime
    staff: list[data_manager.StaffRow] = field(default_factory=list)
    products: list[data_manager.ProductRow] = field(default_factory=list)
    sales: list[data_manager.SaleRow] = field(default_factory=list)
    expenses: list[data_manager.ExpenseRow] = field(default_factory=list)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or datetime.now(UTC)) - self.taken_at


def write_snapshot(path: Path, snapshot: LedgerSnapshot) -> None:
    """Serialize ``snapshot`` to ``path``, replacing any previous file.

    Rows are stored in their worksheet column order so the data layer's
    deserializers can restore them unchanged.
    """

    payload = {
        "format": SNAPSHOT_FORMAT,
        "taken_at": snapshot.taken_at.isoformat(),
        "staff": [data_manager.serialize_staff(row) for row in snapshot.staff],
        "products": [data_manager.serialize_product(row) for row in snapshot.products],
        "sales": [data_manager.serialize_sale(row) for row in snapshot.sales],
        "expenses": [data_manager.serialize_expense(row) for row in snapshot.expenses],
    }
    path = Path(path).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    tmp_path.replace(path)
    log.debug("Wrote ledger snapshot to '%s'", path)


def read_snapshot(path: Path, *, max_age: timedelta, now: Optional[datetime] = None) -> LedgerSnapshot:
    """Load a snapshot written by :func:`write_snapshot`.

    Args:
        path (Path): Snapshot file.
        max_age (timedelta): Oldest acceptable snapshot.
        now (datetime | None): Reference time, UTC now by default.

    Returns:
        LedgerSnapshot: The restored collections.

    Raises:
        FileNotFoundError: If no snapshot exists at ``path``.
        ValueError: If the file is not a snapshot this version understands.
        StaleSnapshotError: If the snapshot is older than ``max_age``.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if payload.get("format") != SNAPSHOT_FORMAT:
            raise ValueError(f"unsupported format {payload.get('format')!r}")
        snapshot = LedgerSnapshot(
            taken_at=datetime.fromisoformat(payload["taken_at"]),
            staff=[data_manager.deserialize_staff(row) for row in payload["staff"]],
            products=[data_manager.deserialize_product(row) for row in payload["products"]],
            sales=[data_manager.deserialize_sale(row) for row in payload["sales"]],
            expenses=[data_manager.deserialize_expense(row) for row in payload["expenses"]],
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Unreadable snapshot '{path}': {exc}") from exc

    age = snapshot.age(now)
    if age > max_age:
        raise StaleSnapshotError(
            f"Snapshot '{path}' is {age} old; the limit is {max_age}"
        )
    log.warning("Serving ledger snapshot from %s (%s old)", snapshot.taken_at.isoformat(), age)
    return snapshot


def restore_workbook(snapshot: LedgerSnapshot) -> Workbook:
    """Rebuild an in-memory ledger workbook holding the snapshot rows.

    The result lets read-only views run unchanged against cached data. It
    is never saved over the real ledger.
    """

    workbook = Workbook()
    workbook.remove(workbook.active)
    data_manager.ensure_sheets(workbook)
    for member in snapshot.staff:
        data_manager.append_staff(workbook, member)
    for product in snapshot.products:
        data_manager.append_product(workbook, product)
    for sale in snapshot.sales:
        data_manager.append_sale(workbook, sale)
    data_manager.append_expenses(workbook, snapshot.expenses)
    return workbook


__all__ = ["LedgerSnapshot", "StaleSnapshotError", "write_snapshot", "read_snapshot", "restore_workbook"]
