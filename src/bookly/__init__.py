"""Bookly: sales reconciliation and bookkeeping for small online sellers.

Importing the package sets up the ``bookly`` logger. Records go to stderr and
to a rotating ``bookly.log`` under the project's ``.logs`` folder, or under
``$BOOKLY_LOG_DIR`` when that is set. ``$BOOKLY_LOG_LEVEL`` overrides the
INFO default.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5

_installed_handlers: List[logging.Handler] = []


def default_log_file() -> Path:
    override = os.environ.get("BOOKLY_LOG_DIR")
    directory = Path(override).expanduser() if override else Path(__file__).resolve().parents[2] / ".logs"
    return directory / "bookly.log"


def _level_from_environment(default: int = logging.INFO) -> int:
    name = os.environ.get("BOOKLY_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def _open_log_file(path: Path) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    except OSError as exc:
        print(f"bookly: cannot write log file '{path}', logging to stderr only: {exc}", file=sys.stderr)
        return None


def configure_logging(log_file: Optional[Path] = None, level: Optional[int] = None) -> logging.Logger:
    """Attach Bookly's file and stderr handlers to the ``bookly`` logger.

    Handlers installed by an earlier call are closed and replaced, so the log
    file can be redirected after import. Records still propagate to the root
    logger.
    """

    logger = logging.getLogger(__name__)
    while _installed_handlers:
        handler = _installed_handlers.pop()
        logger.removeHandler(handler)
        handler.close()

    resolved_level = _level_from_environment() if level is None else level
    logger.setLevel(resolved_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_handler = _open_log_file(Path(log_file) if log_file is not None else default_log_file())
    if file_handler is not None:
        handlers.insert(0, file_handler)
    for handler in handlers:
        handler.setLevel(resolved_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed_handlers.append(handler)
    return logger


log = configure_logging()
