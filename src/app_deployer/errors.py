"""Exception taxonomy for deployment sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .orchestrator.models import SessionResult


class DeployerError(Exception):
    """Base class for all app-deployer errors."""


class ConfigurationError(DeployerError, ValueError):
    """Bad catalog, request or plan. Raised before any step runs."""


class StepExecutionError(DeployerError):
    """One step's external call failed.

    Caught at the step boundary by the session engine and recorded as the
    step's outcome; it never escapes ``run_session``.
    """

    def __init__(self, message: str, code: int) -> None:
        super().__init__(message)
        self.code = code


class EngineFault(DeployerError):
    """A collaborator (installer subsystem, process table...) is unreachable or crashed.

    Always fatal. When raised out of a session, ``result`` carries the
    finalized (aborted) session result.
    """

    def __init__(self, message: str, result: Optional["SessionResult"] = None) -> None:
        super().__init__(message)
        self.result = result
