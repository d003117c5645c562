"""psutil based process gatekeeper."""

from __future__ import annotations

import logging
from typing import AbstractSet, List, Optional, Set

import psutil

from ..errors import EngineFault, StepExecutionError
from ..interaction import (
    AutoResponseHandler,
    InteractionRequest,
    QuestionCategory,
    UserInteractionHandler,
)
from ..orchestrator.exit_codes import EXIT_PROCESS_CLOSE_FAILED
from ..orchestrator.models import ClosureMode, ClosureOutcome, ClosurePolicy, DeployMode
from .base import ProcessGatekeeper

logger = logging.getLogger(__name__)

OPTION_CLOSE = "Close programs and continue"
OPTION_CONTINUE = "Continue"
OPTION_DEFER = "Defer"


def _normalize(name: str) -> str:
    name = name.strip().lower()
    return name[:-4] if name.endswith(".exe") else name


class PsutilProcessGatekeeper(ProcessGatekeeper):
    """
    Finds blocking processes in the process table and closes them.

    In interactive sessions the user is asked first (with a countdown or
    until the programs are closed manually); otherwise processes are
    terminated straight away.
    """

    def __init__(
        self,
        interaction_handler: Optional[UserInteractionHandler] = None,
        terminate_timeout: float = 5.0,
        title: str = "Deployment",
    ) -> None:
        self.interaction_handler = interaction_handler or AutoResponseHandler()
        self.terminate_timeout = terminate_timeout
        self.title = title

    def find_running(self, process_names: AbstractSet[str]) -> List[psutil.Process]:
        wanted: Set[str] = {_normalize(n) for n in process_names if n.strip()}
        if not wanted:
            return []
        running = []
        try:
            for proc in psutil.process_iter(["name"]):
                name = proc.info.get("name") or ""
                if _normalize(name) in wanted:
                    running.append(proc)
        except psutil.Error as exc:
            raise EngineFault(f"Cannot enumerate processes: {exc}") from exc
        return running

    def close(self, processes: List[psutil.Process]) -> None:
        """Terminate ``processes``, killing any that outlive the grace period."""
        for proc in processes:
            try:
                logger.info("Closing %s (pid %d)", proc.info.get("name"), proc.pid)
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as exc:
                logger.warning("Access denied terminating pid %d: %s", proc.pid, exc)

        _, alive = psutil.wait_procs(processes, timeout=self.terminate_timeout)
        for proc in alive:
            try:
                logger.warning("Killing pid %d after %.0fs grace period", proc.pid, self.terminate_timeout)
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as exc:
                logger.error("Access denied killing pid %d: %s", proc.pid, exc)

    def _close_and_verify(self, running: List[psutil.Process], process_names: AbstractSet[str]) -> None:
        """Close ``running`` and fail the step if any blocking process survived."""
        self.close(running)
        survivors = self.find_running(process_names)
        if survivors:
            names = ", ".join(sorted(f"{p.info.get('name')} (pid {p.pid})" for p in survivors))
            raise StepExecutionError(f"Could not close blocking processes: {names}", EXIT_PROCESS_CLOSE_FAILED)

    def negotiate_closure(
        self,
        process_names: AbstractSet[str],
        policy: ClosurePolicy,
        deploy_mode: DeployMode,
        allow_defer: bool = True,
    ) -> ClosureOutcome:
        running = self.find_running(process_names)
        if not running:
            logger.info("No blocking processes running")
            return ClosureOutcome.PROCEED

        names = sorted({p.info.get("name") or str(p.pid) for p in running})
        logger.info("Blocking processes running: %s", ", ".join(names))

        if deploy_mode != DeployMode.INTERACTIVE or policy.mode == ClosureMode.CLOSE_IMMEDIATE:
            self._close_and_verify(running, process_names)
            return ClosureOutcome.TIMED_OUT_CLOSED

        if policy.mode == ClosureMode.PERSIST_UNTIL_MANUAL:
            return self._persist_until_closed(process_names, names, allow_defer)
        return self._countdown(process_names, running, names, policy.countdown_seconds, allow_defer)

    def _countdown(
        self,
        process_names: AbstractSet[str],
        running: List[psutil.Process],
        names: List[str],
        seconds: int,
        allow_defer: bool,
    ) -> ClosureOutcome:
        options = [OPTION_CLOSE] + ([OPTION_DEFER] if allow_defer else [])
        response = self.interaction_handler.ask(
            InteractionRequest(
                question="The following programs must be closed before the deployment can continue.",
                context=", ".join(names),
                options=options,
                category=QuestionCategory.CLOSE_APPS,
                title=self.title,
                default=OPTION_CLOSE,
                timeout=seconds or None,
            )
        )
        if response.timed_out:
            logger.info("Closure countdown of %ss expired, closing programs", seconds)
            self._close_and_verify(running, process_names)
            return ClosureOutcome.TIMED_OUT_CLOSED
        if response.cancelled or response.value == OPTION_DEFER:
            return ClosureOutcome.DEFERRED
        self._close_and_verify(running, process_names)
        return ClosureOutcome.PROCEED

    def _persist_until_closed(
        self,
        process_names: AbstractSet[str],
        names: List[str],
        allow_defer: bool,
    ) -> ClosureOutcome:
        options = [OPTION_CONTINUE] + ([OPTION_DEFER] if allow_defer else [])
        while True:
            response = self.interaction_handler.ask(
                InteractionRequest(
                    question="Please save your work and close the following programs, then select Continue.",
                    context=", ".join(names),
                    options=options,
                    category=QuestionCategory.CLOSE_APPS,
                    title=self.title,
                )
            )
            if response.cancelled or response.value == OPTION_DEFER:
                return ClosureOutcome.DEFERRED
            still_running = self.find_running(process_names)
            if not still_running:
                return ClosureOutcome.PROCEED
            names = sorted({p.info.get("name") or str(p.pid) for p in still_running})
