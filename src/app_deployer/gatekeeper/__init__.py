"""Blocking-process detection and closure negotiation."""

from .base import ProcessGatekeeper
from .process_gatekeeper import PsutilProcessGatekeeper

__all__ = [
    "ProcessGatekeeper",
    "PsutilProcessGatekeeper",
]
