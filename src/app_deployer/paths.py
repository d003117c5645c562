"""Unified path constants for app-deployer.

Everything app-deployer writes lives under the .app-deployer directory:
- .app-deployer/logs/   # text logs and JSON session logs
"""

from pathlib import Path
from typing import Optional

BASE_DIR = Path(".app-deployer")

LOGS_DIR = BASE_DIR / "logs"


def get_logs_dir(override: Optional[str] = None) -> Path:
    """Log directory, created on demand."""
    logs_dir = Path(override) if override else LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
