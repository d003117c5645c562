"""Installer invocation: the native install/uninstall/patch primitive."""

from .base import InstallerInvoker, InvocationResult
from .msiexec import MsiexecInvoker

__all__ = [
    "InstallerInvoker",
    "InvocationResult",
    "MsiexecInvoker",
]
