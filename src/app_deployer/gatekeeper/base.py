"""Process gatekeeper interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AbstractSet

from ..orchestrator.models import ClosureOutcome, ClosurePolicy, DeployMode


class ProcessGatekeeper(ABC):
    """Negotiates closure of processes that would block an installer."""

    @abstractmethod
    def negotiate_closure(
        self,
        process_names: AbstractSet[str],
        policy: ClosurePolicy,
        deploy_mode: DeployMode,
        allow_defer: bool = True,
    ) -> ClosureOutcome:
        """
        Make sure none of ``process_names`` is running.

        Must return immediately (force-closing) unless ``deploy_mode`` is
        interactive.

        Raises:
            StepExecutionError: processes were still running after being
                closed (code 60011).
        """
