"""Installer invoker interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from ..orchestrator.models import PackageAction


@dataclass
class InvocationResult:
    """Completion code and wall time of one installer or executable run."""
    code: int
    elapsed_ms: int = 0
    command: Optional[str] = None
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0


class InstallerInvoker(ABC):
    """Runs native installer operations on the target machine.

    Implementations raise :class:`~app_deployer.errors.EngineFault` when the
    installer subsystem itself cannot be reached; a failing install is
    reported through ``InvocationResult.code``.
    """

    @abstractmethod
    def invoke(
        self,
        action: PackageAction,
        ref: str,
        transform: Optional[str] = None,
        patches: Optional[Sequence[str]] = None,
        silent: bool = True,
        arguments: Sequence[str] = (),
    ) -> InvocationResult:
        """Install, uninstall or patch ``ref`` (a product key or installer path)."""

    @abstractmethod
    def execute(self, path: str, arguments: Sequence[str] = (), wait: bool = True) -> InvocationResult:
        """Run a plain executable. ``wait=False`` returns code 0 once started."""

    def is_installed(self, product_key: str) -> bool:
        """Whether ``product_key`` is registered as installed.

        The default answers ``True`` so that uninstall steps are always
        attempted when presence cannot be determined.
        """
        return True
