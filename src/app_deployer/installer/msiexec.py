"""Windows Installer (msiexec) backed invoker."""

from __future__ import annotations

import logging
import os
import platform
import re
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import EngineFault
from ..orchestrator.models import PackageAction
from .base import InstallerInvoker, InvocationResult

logger = logging.getLogger(__name__)

_UNINSTALL_KEYS = (
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
)
_GUID_RE = re.compile(r"^\{[0-9A-Fa-f-]{36}\}$")


class MsiexecInvoker(InstallerInvoker):
    """
    Runs ``msiexec`` for package steps and plain ``subprocess`` for executables.

    Relative installer, transform and patch paths are resolved against
    ``working_dir`` (the directory holding the deployment's ``Files``).
    """

    def __init__(
        self,
        msiexec_path: str = "msiexec.exe",
        working_dir: Optional[str] = None,
        log_dir: Optional[str] = None,
        timeout: Optional[int] = None,
        default_arguments: Sequence[str] = (),
    ) -> None:
        self.msiexec_path = msiexec_path
        self.working_dir = working_dir or os.getcwd()
        self.log_dir = Path(log_dir) if log_dir else None
        self.timeout = timeout
        self.default_arguments = tuple(default_arguments)
        self.is_windows = platform.system() == "Windows"

    def build_command(
        self,
        action: PackageAction,
        ref: str,
        transform: Optional[str] = None,
        patches: Optional[Sequence[str]] = None,
        silent: bool = True,
        arguments: Sequence[str] = (),
    ) -> List[str]:
        """Assemble the msiexec command line for one package operation."""
        patches = [self._resolve(p) for p in (patches or [])]
        command = [self.msiexec_path]

        if action == PackageAction.INSTALL:
            command += ["/i", self._resolve(ref)]
            if transform:
                command.append(f"TRANSFORMS={self._resolve(transform)}")
            if patches:
                command.append(f"PATCH={';'.join(patches)}")
        elif action == PackageAction.UNINSTALL:
            command += ["/x", self._resolve(ref)]
        elif action == PackageAction.PATCH:
            command += ["/p", ";".join(patches) if patches else self._resolve(ref)]
        else:
            raise ValueError(f"Unsupported installer action: {action}")

        # /qb-! shows basic progress without a cancel button
        command.append("/qn" if silent else "/qb-!")
        command.append("/norestart")

        if self.log_dir is not None:
            log_name = re.sub(r"[^A-Za-z0-9._-]", "", Path(ref).stem or ref) or "package"
            command += ["/L*v", str(self.log_dir / f"{log_name}_{action.value}.log")]

        command += list(self.default_arguments)
        command += list(arguments)
        return command

    def invoke(
        self,
        action: PackageAction,
        ref: str,
        transform: Optional[str] = None,
        patches: Optional[Sequence[str]] = None,
        silent: bool = True,
        arguments: Sequence[str] = (),
    ) -> InvocationResult:
        command = self.build_command(action, ref, transform, patches, silent, arguments)
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        return self._run(command)

    def execute(self, path: str, arguments: Sequence[str] = (), wait: bool = True) -> InvocationResult:
        command = [self._resolve(path)] + list(arguments)
        if wait:
            return self._run(command)

        logger.info("Starting (no wait): %s", " ".join(command))
        try:
            subprocess.Popen(command, cwd=self.working_dir)
        except OSError as exc:
            raise EngineFault(f"Cannot start {command[0]}: {exc}") from exc
        return InvocationResult(code=0, command=" ".join(command))

    def is_installed(self, product_key: str) -> bool:
        if not self.is_windows or not _GUID_RE.match(product_key):
            return True

        import winreg

        for hive in (winreg.HKEY_LOCAL_MACHINE, winreg.HKEY_CURRENT_USER):
            for base in _UNINSTALL_KEYS:
                try:
                    with winreg.OpenKey(hive, f"{base}\\{product_key}"):
                        return True
                except OSError:
                    continue
        return False

    def _run(self, command: List[str]) -> InvocationResult:
        display = " ".join(command)
        logger.info("Executing: %s", display)
        started = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.working_dir,
            )
        except subprocess.TimeoutExpired:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error("Command timed out after %s seconds: %s", self.timeout, display)
            return InvocationResult(
                code=-1,
                elapsed_ms=elapsed_ms,
                command=display,
                stderr=f"Command timed out after {self.timeout} seconds",
            )
        except OSError as exc:
            raise EngineFault(f"Cannot run {command[0]}: {exc}") from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug("Return code %d after %d ms", completed.returncode, elapsed_ms)
        if completed.stderr:
            logger.warning("stderr from %s:\n%s", command[0], completed.stderr.strip())
        return InvocationResult(
            code=completed.returncode,
            elapsed_ms=elapsed_ms,
            command=display,
            stdout=completed.stdout.strip(),
            stderr=completed.stderr.strip(),
        )

    def _resolve(self, ref: str) -> str:
        """Resolve relative artifact paths; product keys pass through unchanged."""
        if _GUID_RE.match(ref) or os.path.isabs(ref):
            return ref
        candidate = Path(self.working_dir) / ref
        return str(candidate) if candidate.exists() else ref
