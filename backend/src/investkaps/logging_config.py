"""Logging setup: console + combined.log + error.log"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from investkaps.config import settings

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

_configured = False


def setup_logging() -> None:
    """Configure root logging once"""
    global _configured
    if _configured:
        return

    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(
            log_dir / "combined.log",
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        combined.setFormatter(formatter)
        root.addHandler(combined)

        errors = RotatingFileHandler(
            log_dir / "error.log",
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        root.addHandler(errors)

    for noisy in ("httpx", "urllib3", "apscheduler", "telegram"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
