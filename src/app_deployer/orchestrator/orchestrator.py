"""Deployment orchestrator: runs a deployment plan phase by phase."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, TYPE_CHECKING

from ..errors import EngineFault
from .exit_codes import EXIT_ENGINE_FAULT, compute_exit_code, describe_exit_code
from .models import (
    DeploymentPlan,
    OutcomeClass,
    Phase,
    SessionResult,
    SessionState,
    Step,
    StepOutcome,
)
from .step_executor import StepExecutor

if TYPE_CHECKING:
    from ..gatekeeper import ProcessGatekeeper
    from ..installer import InstallerInvoker
    from ..interaction import UserInteractionHandler

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """
    Session engine.

    Executes the plan's phases in the fixed order Pre -> Main -> Post and the
    steps of each phase in plan order. The first hard failure aborts the rest
    of the session; steps that already changed the machine are not rolled
    back.
    """

    def __init__(
        self,
        invoker: "InstallerInvoker",
        gatekeeper: "ProcessGatekeeper",
        interaction_handler: Optional["UserInteractionHandler"] = None,
        benign_codes: Iterable[int] = (),
        max_deferrals: int = 3,
        log_dir: Optional[str] = None,
        log_name: str = "deployment",
        disk_probe=None,
    ):
        self.invoker = invoker
        self.gatekeeper = gatekeeper
        self.interaction_handler = interaction_handler
        self.benign_codes = tuple(benign_codes)
        self.max_deferrals = max_deferrals
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_name = log_name
        self.disk_probe = disk_probe

        self.session_log: dict = {}
        self.current_log_file: Optional[Path] = None

    def run(self, plan: DeploymentPlan) -> SessionResult:
        """
        Execute ``plan``.

        Returns:
            The finalized SessionResult, whether the session completed or
            aborted.

        Raises:
            EngineFault: a collaborator failed; ``exc.result`` holds the
                finalized, aborted result.
        """
        request = plan.request
        executor = StepExecutor(
            invoker=self.invoker,
            gatekeeper=self.gatekeeper,
            request=request,
            interaction_handler=self.interaction_handler if request.interactive else None,
            benign_codes=self.benign_codes,
            max_deferrals=self.max_deferrals,
            disk_probe=self.disk_probe,
        )
        result = SessionResult()

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 %s: %s (%s)", request.deployment_type.value.upper(), plan.title, request.deploy_mode.value)
        logger.info("=" * 60)

        failure: Optional[StepOutcome] = None
        phase: Optional[Phase] = None
        pending: Optional[Step] = None
        try:
            if not request.disable_logging:
                self._init_log(plan)
            for phase, steps in plan.phases:
                result.start_phase(phase)
                logger.info("📍 Phase %s (%d steps)", phase.value, len(steps))
                for step in steps:
                    pending = step
                    outcome = executor.execute(step, phase, result.reboot_required)
                    result.record(outcome)
                    pending = None
                    self._log_step_result(outcome)
                    if outcome.hard_failure:
                        failure = outcome
                        break
                if failure is not None:
                    break
        except EngineFault as exc:
            logger.error("💥 Engine fault: %s", exc)
            if phase is not None and pending is not None:
                outcome = StepOutcome(
                    step=pending,
                    phase=phase,
                    code=EXIT_ENGINE_FAULT,
                    classification=OutcomeClass.HARD_FAILURE,
                    message=str(exc),
                )
                result.record(outcome)
                self._log_step_result_quietly(outcome)
            result.engine_fault = str(exc)
            self._run_cleanup(plan, executor, result)
            result.finalize(SessionState.ABORTED, compute_exit_code(result, request.allow_reboot_passthru))
            self._report_failure(plan, result, str(exc))
            exc.result = result
            raise

        self._run_cleanup(plan, executor, result)
        state = SessionState.ABORTED if failure is not None else SessionState.COMPLETED
        result.finalize(state, compute_exit_code(result, request.allow_reboot_passthru))

        if failure is not None:
            self._report_failure(plan, result, failure.message or failure.step.describe())
        else:
            logger.info("=" * 60)
            logger.info("🎉 %s completed (exit code %d)", plan.title, result.final_exit_code)
            if result.reboot_required:
                logger.info("🔄 A reboot is required%s",
                            "" if request.allow_reboot_passthru else " (exit code 3010 suppressed)")
            logger.info("=" * 60)
            self._finalize_log(result)
        return result

    def _run_cleanup(self, plan: DeploymentPlan, executor: StepExecutor, result: SessionResult) -> None:
        """Run the plan's cleanup steps. Their failures are logged, never raised."""
        if not plan.cleanup:
            return
        logger.info("🧹 Cleanup (%d steps)", len(plan.cleanup))
        for step in plan.cleanup:
            try:
                outcome = executor.execute(step, Phase.POST, result.reboot_required)
            except EngineFault as exc:
                logger.error("💥 Cleanup step %s failed: %s", step.describe(), exc)
                outcome = StepOutcome(
                    step=step,
                    phase=Phase.POST,
                    code=EXIT_ENGINE_FAULT,
                    classification=OutcomeClass.SOFT_FAILURE,
                    message=str(exc),
                )
            if outcome.hard_failure:
                outcome.classification = OutcomeClass.SOFT_FAILURE
            result.record_cleanup(outcome)
            self._log_step_result_quietly(outcome)

    def _report_failure(self, plan: DeploymentPlan, result: SessionResult, reason: str) -> None:
        code = result.final_exit_code
        logger.error("=" * 60)
        logger.error("❌ %s aborted in %s phase: %s", plan.title, result.phase_outcomes[-1].phase.value
                     if result.phase_outcomes else "-", reason)
        logger.error("   Exit code %s (%s)", code, describe_exit_code(code))
        logger.error("=" * 60)
        # No blocking UI outside interactive mode
        if plan.request.interactive and self.interaction_handler is not None:
            self.interaction_handler.notify(
                f"{plan.title} failed: {reason}\nExit code: {code}", "error"
            )
        self._finalize_log(result)

    def _init_log(self, plan: DeploymentPlan) -> None:
        """Create the JSON session log for this run."""
        if self.log_dir is None:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EngineFault(f"Cannot create log directory {self.log_dir}: {exc}") from exc
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        request = plan.request
        filename = f"deploy_{self.log_name}_{request.deployment_type.value}_{timestamp}.json"
        self.current_log_file = self.log_dir / filename

        self.session_log = {
            "version": "1.0",
            "title": plan.title,
            "deployment_type": request.deployment_type.value,
            "deploy_mode": request.deploy_mode.value,
            "allow_reboot_passthru": request.allow_reboot_passthru,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "plan": plan.to_dict(),
            "steps": [],
        }
        self._save_log()
        logger.info("📝 Session log: %s", self.current_log_file)

    def _log_step_result(self, outcome: StepOutcome) -> None:
        if not self.current_log_file:
            return
        entry = outcome.to_dict()
        entry["timestamp"] = datetime.now().isoformat()
        self.session_log["steps"].append(entry)
        self._save_log()

    def _log_step_result_quietly(self, outcome: StepOutcome) -> None:
        """Like ``_log_step_result`` but only logs a write failure; used once the session is failing."""
        try:
            self._log_step_result(outcome)
        except EngineFault as exc:
            logger.error("📝 %s", exc)

    def _finalize_log(self, result: SessionResult) -> None:
        """Write final status and summary to the session log."""
        if not self.current_log_file:
            return
        self.session_log["end_time"] = datetime.now().isoformat()
        self.session_log["status"] = result.state.value
        self.session_log["result"] = result.to_dict()

        steps = self.session_log.get("steps", [])
        self.session_log["summary"] = {
            "total_steps": len(steps),
            "failed_steps": sum(1 for s in steps if s.get("classification") in ("soft_failure", "hard_failure")),
            "reboot_required": result.reboot_required,
            "exit_code": result.final_exit_code,
            "duration_seconds": self._calculate_duration(),
        }
        # the result is already final; a write failure here cannot change it
        try:
            self._save_log()
        except EngineFault as exc:
            logger.error("📝 %s", exc)
            return
        logger.info("📄 Log saved to: %s", self.current_log_file)

    def _calculate_duration(self) -> float:
        try:
            start = datetime.fromisoformat(self.session_log["start_time"])
            end = datetime.fromisoformat(self.session_log["end_time"])
        except (KeyError, TypeError, ValueError):
            return 0.0
        return (end - start).total_seconds()

    def _save_log(self) -> None:
        """Rewrite the session log. A write failure stops further log writes."""
        if not self.current_log_file:
            return
        try:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.session_log, f, indent=2, ensure_ascii=False)
        except OSError as exc:
            log_file, self.current_log_file = self.current_log_file, None
            raise EngineFault(f"Cannot write session log {log_file}: {exc}") from exc


def run_session(
    plan: DeploymentPlan,
    invoker: "InstallerInvoker",
    gatekeeper: "ProcessGatekeeper",
    **kwargs,
) -> SessionResult:
    """Run ``plan`` with a one-off :class:`DeploymentOrchestrator`."""
    return DeploymentOrchestrator(invoker, gatekeeper, **kwargs).run(plan)
