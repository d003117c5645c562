"""Logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_LOGGING_CONFIGURED = False
_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            format=_FORMAT,
        )
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


def set_level(level: str) -> None:
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


def configure_file_logging(log_dir: Path, log_name: str) -> Path:
    """Mirror all log records to ``<log_dir>/<log_name>.log``.

    The file is appended to, so repeated sessions for the same package keep
    one history.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{log_name}.log"
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file.resolve():
            return log_file
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    return log_file
