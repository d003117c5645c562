"""Step executor: runs a single plan step against the external collaborators."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Set, TYPE_CHECKING

from ..errors import EngineFault, StepExecutionError
from ..interaction import AutoResponseHandler, InteractionRequest, QuestionCategory
from .exit_codes import (
    EXIT_INSUFFICIENT_DISK_SPACE,
    EXIT_USER_DEFERRED,
    classify_code,
)
from .models import (
    CheckDiskSpace,
    CheckPriorVersionPresent,
    CloseBlockingProcesses,
    ClosureOutcome,
    DeploymentRequest,
    InstallPackage,
    OutcomeClass,
    PACKAGE_STEP_TYPES,
    PackageAction,
    PatchPackage,
    Phase,
    PromptKind,
    RunExecutable,
    ShowPrompt,
    Step,
    StepOutcome,
    UninstallPackage,
)

if TYPE_CHECKING:
    from ..gatekeeper import ProcessGatekeeper
    from ..installer import InstallerInvoker
    from ..interaction import UserInteractionHandler

logger = logging.getLogger(__name__)

OPTION_CONTINUE = "Continue"
OPTION_DEFER = "Defer"


class StepExecutor:
    """
    Executes one step at a time and turns whatever happens into a StepOutcome.

    Per-session state (deferral count, products found absent) lives here, so
    a fresh executor is needed for every session.
    """

    def __init__(
        self,
        invoker: "InstallerInvoker",
        gatekeeper: "ProcessGatekeeper",
        request: DeploymentRequest,
        interaction_handler: Optional["UserInteractionHandler"] = None,
        benign_codes: Iterable[int] = (),
        max_deferrals: int = 3,
        disk_probe: Optional[Callable[[str], int]] = None,
    ):
        self.invoker = invoker
        self.gatekeeper = gatekeeper
        self.request = request
        self.interaction_handler = interaction_handler or AutoResponseHandler()
        self.benign_codes = frozenset(benign_codes)
        self.max_deferrals = max_deferrals
        if disk_probe is None:
            from ..preflight import free_disk_mb
            disk_probe = free_disk_mb
        self.disk_probe = disk_probe

        self.deferrals = 0
        self.absent_products: Set[str] = set()

    def execute(self, step: Step, phase: Phase, reboot_required: bool = False) -> StepOutcome:
        """
        Run ``step`` and classify the result.

        Step failures are captured in the returned outcome. Collaborator
        faults are raised as :class:`EngineFault`.
        """
        logger.info("   ▶ %s", step.describe())
        started = time.monotonic()
        try:
            outcome = self._dispatch(step, phase, reboot_required)
        except StepExecutionError as exc:
            soft = getattr(step, "soft_fail", False)
            outcome = StepOutcome(
                step=step,
                phase=phase,
                code=exc.code,
                classification=OutcomeClass.SOFT_FAILURE if soft else OutcomeClass.HARD_FAILURE,
                message=str(exc),
            )
        except EngineFault:
            raise
        except Exception as exc:
            raise EngineFault(f"{step.describe()} crashed: {exc}") from exc

        if not outcome.duration_ms:
            outcome.duration_ms = int((time.monotonic() - started) * 1000)
        self._log_outcome(outcome)
        return outcome

    def _dispatch(self, step: Step, phase: Phase, reboot_required: bool) -> StepOutcome:
        if isinstance(step, PACKAGE_STEP_TYPES):
            return self._run_package(step, phase)
        if isinstance(step, RunExecutable):
            return self._run_executable(step, phase)
        if isinstance(step, CheckDiskSpace):
            return self._check_disk_space(step, phase)
        if isinstance(step, CheckPriorVersionPresent):
            return self._check_prior_version(step, phase)
        if isinstance(step, ShowPrompt):
            return self._show_prompt(step, phase, reboot_required)
        if isinstance(step, CloseBlockingProcesses):
            return self._close_processes(step, phase)
        raise EngineFault(f"No handler for step type {step.kind}")

    # --- package and executable steps ------------------------------------

    def _run_package(self, step, phase: Phase) -> StepOutcome:
        if isinstance(step, UninstallPackage) and step.product_key.upper() in self.absent_products:
            return StepOutcome(
                step=step,
                phase=phase,
                code=0,
                classification=OutcomeClass.SUCCESS,
                message="Not installed, nothing to remove",
                skipped=True,
            )

        if isinstance(step, InstallPackage):
            action, transform, patches = PackageAction.INSTALL, step.transform, step.patches
        elif isinstance(step, PatchPackage):
            action, transform, patches = PackageAction.PATCH, None, step.patches
        else:
            action, transform, patches = PackageAction.UNINSTALL, None, ()

        result = self.invoker.invoke(
            action,
            step.reference,
            transform=transform,
            patches=list(patches) or None,
            silent=self.request.silent,
            arguments=step.arguments,
        )
        return StepOutcome(
            step=step,
            phase=phase,
            code=result.code,
            classification=classify_code(result.code, self.benign_codes, step.soft_fail),
            duration_ms=result.elapsed_ms,
            message=result.stderr or None,
        )

    def _run_executable(self, step: RunExecutable, phase: Phase) -> StepOutcome:
        result = self.invoker.execute(step.path, step.arguments, wait=step.wait)
        benign = self.benign_codes | set(step.ignore_exit_codes)
        return StepOutcome(
            step=step,
            phase=phase,
            code=result.code,
            classification=classify_code(result.code, benign, step.soft_fail),
            duration_ms=result.elapsed_ms,
            message=result.stderr or None,
        )

    # --- checks ----------------------------------------------------------

    def _check_disk_space(self, step: CheckDiskSpace, phase: Phase) -> StepOutcome:
        free_mb = self.disk_probe(step.path)
        if free_mb < step.required_mb:
            raise StepExecutionError(
                f"Insufficient disk space on {step.path}: {free_mb} MB free, {step.required_mb} MB required",
                EXIT_INSUFFICIENT_DISK_SPACE,
            )
        return StepOutcome(
            step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS,
            message=f"{free_mb} MB free",
        )

    def _check_prior_version(self, step: CheckPriorVersionPresent, phase: Phase) -> StepOutcome:
        if step.marker_path:
            present = Path(step.marker_path).expanduser().exists()
        else:
            present = self.invoker.is_installed(step.product_key)
        if not present:
            self.absent_products.add(step.product_key.upper())
        return StepOutcome(
            step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS,
            message="present" if present else "absent",
        )

    # --- user interaction ------------------------------------------------

    def _show_prompt(self, step: ShowPrompt, phase: Phase, reboot_required: bool) -> StepOutcome:
        if step.only_if_reboot_required and not reboot_required:
            return StepOutcome(
                step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS,
                message="No restart required", skipped=True,
            )

        if not self.request.interactive:
            logger.info("   %s", step.message)
            return StepOutcome(step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS)

        if step.allow_defer and self.max_deferrals > 0:
            while True:
                response = self.interaction_handler.ask(
                    InteractionRequest(
                        question=step.message,
                        title=step.title,
                        options=[OPTION_CONTINUE, OPTION_DEFER],
                        category=QuestionCategory.DEFERRAL,
                        context=self._deferrals_left_text(),
                        default=OPTION_CONTINUE,
                    )
                )
                if not (response.cancelled or response.value == OPTION_DEFER):
                    break
                self._register_deferral()
        else:
            level = "warning" if step.prompt_kind == PromptKind.RESTART else "info"
            self.interaction_handler.notify(step.message, level)

        return StepOutcome(step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS)

    def _close_processes(self, step: CloseBlockingProcesses, phase: Phase) -> StepOutcome:
        while True:
            result = self.gatekeeper.negotiate_closure(
                step.process_names,
                step.policy,
                self.request.deploy_mode,
                allow_defer=step.allow_defer and self.max_deferrals > 0,
            )
            if result != ClosureOutcome.DEFERRED:
                return StepOutcome(
                    step=step, phase=phase, code=0, classification=OutcomeClass.SUCCESS,
                    message=result.value,
                )
            self._register_deferral()

    def _register_deferral(self) -> None:
        self.deferrals += 1
        if self.deferrals > self.max_deferrals:
            raise StepExecutionError(
                f"Deployment deferred {self.deferrals} times (limit {self.max_deferrals}), treating as declined",
                EXIT_USER_DEFERRED,
            )
        logger.info("   User deferred (%d/%d)", self.deferrals, self.max_deferrals)
        if self.request.interactive:
            self.interaction_handler.notify(self._deferrals_left_text(), "warning")

    def _deferrals_left_text(self) -> str:
        remaining = max(self.max_deferrals - self.deferrals, 0)
        return f"You may defer {remaining} more time(s)."

    def _log_outcome(self, outcome: StepOutcome) -> None:
        icon = {
            OutcomeClass.SUCCESS: "✅",
            OutcomeClass.SUCCESS_REBOOT_REQUIRED: "🔄",
            OutcomeClass.SOFT_FAILURE: "⚠️",
            OutcomeClass.HARD_FAILURE: "❌",
        }[outcome.classification]
        suffix = " (skipped)" if outcome.skipped else ""
        log = logger.error if outcome.hard_failure else logger.info
        log("   %s code %d in %d ms%s%s", icon, outcome.code, outcome.duration_ms, suffix,
            f": {outcome.message}" if outcome.message else "")
