"""Clinic ledger: staff, catalog, sales and expenses for a sports clinic.

Importing the package configures the shared ``log`` used by every module.
State changes go to a rotating file under ``.logs/`` (or ``CLINIC_LOG_DIR``);
the terminal only sees warnings and errors unless ``CLINIC_LOG_LEVEL`` says
otherwise.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("CLINIC_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "clinic_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _console_level() -> int:
    level = logging.getLevelName(os.environ.get("CLINIC_LOG_LEVEL", "WARNING").upper())
    return level if isinstance(level, int) else logging.WARNING


def _configure_logging() -> logging.Logger:
    """Attach the ledger file handler and a quieter stderr handler once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        ledger_handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: clinic ledger log file unavailable at '{LOG_FILE}': {exc}", file=sys.stderr)
    else:
        ledger_handler.setLevel(logging.INFO)
        ledger_handler.setFormatter(formatter)
        logger.addHandler(ledger_handler)

    terminal_handler = logging.StreamHandler(sys.stderr)
    terminal_handler.setLevel(_console_level())
    terminal_handler.setFormatter(formatter)
    logger.addHandler(terminal_handler)

    return logger


log = _configure_logging()
log.debug("Clinic ledger %s logging to '%s'", __version__, LOG_FILE)
