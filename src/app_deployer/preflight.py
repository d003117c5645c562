"""Pre-flight probes of the target machine."""

from __future__ import annotations

from pathlib import Path

import psutil

from .errors import EngineFault


def free_disk_mb(path: str) -> int:
    """Free space in MiB on the volume holding ``path``.

    A path that does not exist yet is measured on its nearest existing parent.
    """
    candidate = Path(path).expanduser().resolve()
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    try:
        usage = psutil.disk_usage(str(candidate))
    except OSError as exc:
        raise EngineFault(f"Cannot read disk usage for {candidate}: {exc}") from exc
    return usage.free // (1024 * 1024)
