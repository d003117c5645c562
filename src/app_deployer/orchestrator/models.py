"""Data models for the orchestrator module."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Tuple, Dict, Any, FrozenSet

from ..errors import ConfigurationError


class _ParsableEnum(Enum):
    """Enum that parses its values case-insensitively."""

    @classmethod
    def parse(cls, value: Any) -> Any:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        choices = ", ".join(m.value for m in cls)
        raise ConfigurationError(f"Unrecognized {cls.__name__} '{value}' (expected one of: {choices})")


class DeploymentType(_ParsableEnum):
    """Requested session action"""
    INSTALL = "Install"
    UNINSTALL = "Uninstall"


class DeployMode(_ParsableEnum):
    """How much the session may interact with the logged-on user"""
    INTERACTIVE = "Interactive"
    SILENT = "Silent"
    NON_INTERACTIVE = "NonInteractive"


class PackageAction(_ParsableEnum):
    """Installer action of one catalog entry"""
    INSTALL = "Install"
    UNINSTALL = "Uninstall"
    PATCH = "Patch"


class Phase(_ParsableEnum):
    """Plan phases, in execution order"""
    PRE = "Pre"
    MAIN = "Main"
    POST = "Post"


class SessionState(Enum):
    """Session engine states"""
    IDLE = "idle"
    PRE_INSTALL = "pre_install"
    MAIN = "main"
    POST_INSTALL = "post_install"
    COMPLETED = "completed"
    ABORTED = "aborted"


PHASE_STATES = {
    Phase.PRE: SessionState.PRE_INSTALL,
    Phase.MAIN: SessionState.MAIN,
    Phase.POST: SessionState.POST_INSTALL,
}


class OutcomeClass(Enum):
    """Classification of a step's completion code"""
    SUCCESS = "success"
    SUCCESS_REBOOT_REQUIRED = "success_reboot_required"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


class ClosureMode(_ParsableEnum):
    """How blocking processes are dealt with"""
    CLOSE_IMMEDIATE = "CloseImmediate"
    COUNTDOWN = "Countdown"
    PERSIST_UNTIL_MANUAL = "PersistUntilManual"


class ClosureOutcome(Enum):
    """Result of a process-closure negotiation"""
    PROCEED = "proceed"
    DEFERRED = "deferred"
    TIMED_OUT_CLOSED = "timed_out_closed"


class PromptKind(Enum):
    """What a ShowPrompt step is for"""
    WELCOME = "welcome"
    PROGRESS = "progress"
    INFORMATION = "information"
    RESTART = "restart"


@dataclass(frozen=True)
class ClosurePolicy:
    """Closure mode plus the countdown length used by ``ClosureMode.COUNTDOWN``."""
    mode: ClosureMode = ClosureMode.COUNTDOWN
    countdown_seconds: int = 60


@dataclass(frozen=True)
class DeploymentRequest:
    """Immutable input to plan building, captured once before the session starts."""

    deployment_type: DeploymentType = DeploymentType.INSTALL
    deploy_mode: DeployMode = DeployMode.INTERACTIVE
    allow_reboot_passthru: bool = False
    blocking_process_names: FrozenSet[str] = frozenset()
    terminal_server_mode: bool = False
    disable_logging: bool = False
    closure_policy: ClosurePolicy = field(default_factory=ClosurePolicy)

    @property
    def interactive(self) -> bool:
        return self.deploy_mode == DeployMode.INTERACTIVE

    @property
    def silent(self) -> bool:
        return self.deploy_mode != DeployMode.INTERACTIVE


# --- Step variants -------------------------------------------------------


@dataclass(frozen=True)
class Step:
    """Base of all plan steps. Steps are pure data."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    def describe(self) -> str:
        return self.kind

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.kind
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
            elif isinstance(value, (tuple, frozenset)):
                data[key] = sorted(value) if isinstance(value, frozenset) else list(value)
        return data


@dataclass(frozen=True)
class _PackageStep(Step):
    product_key: str = ""
    display_name: str = ""
    installer: Optional[str] = None
    arguments: Tuple[str, ...] = ()
    soft_fail: bool = False

    @property
    def reference(self) -> str:
        """Installer file when bundled, the product key otherwise."""
        return self.installer or self.product_key

    def describe(self) -> str:
        label = self.display_name or self.product_key
        return f"{self.kind} {label} [{self.product_key}]"


@dataclass(frozen=True)
class InstallPackage(_PackageStep):
    transform: Optional[str] = None
    patches: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UninstallPackage(_PackageStep):
    pass


@dataclass(frozen=True)
class PatchPackage(_PackageStep):
    patches: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RunExecutable(Step):
    path: str = ""
    arguments: Tuple[str, ...] = ()
    wait: bool = True
    ignore_exit_codes: Tuple[int, ...] = ()
    soft_fail: bool = False

    def describe(self) -> str:
        return f"RunExecutable {' '.join((self.path,) + self.arguments)}"


@dataclass(frozen=True)
class CheckDiskSpace(Step):
    path: str = "."
    required_mb: int = 0

    def describe(self) -> str:
        return f"CheckDiskSpace {self.required_mb} MB on {self.path}"


@dataclass(frozen=True)
class CheckPriorVersionPresent(Step):
    product_key: str = ""
    marker_path: Optional[str] = None

    def describe(self) -> str:
        return f"CheckPriorVersionPresent [{self.product_key}]"


@dataclass(frozen=True)
class ShowPrompt(Step):
    message: str = ""
    title: str = ""
    prompt_kind: PromptKind = PromptKind.INFORMATION
    allow_defer: bool = False
    only_if_reboot_required: bool = False

    def describe(self) -> str:
        return f"ShowPrompt ({self.prompt_kind.value}) {self.message}"


@dataclass(frozen=True)
class CloseBlockingProcesses(Step):
    process_names: FrozenSet[str] = frozenset()
    policy: ClosurePolicy = field(default_factory=ClosurePolicy)
    allow_defer: bool = True

    def describe(self) -> str:
        return f"CloseBlockingProcesses {', '.join(sorted(self.process_names))}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "process_names": sorted(self.process_names),
            "mode": self.policy.mode.value,
            "countdown_seconds": self.policy.countdown_seconds,
            "allow_defer": self.allow_defer,
        }


PACKAGE_STEP_TYPES = (InstallPackage, UninstallPackage, PatchPackage)


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered steps grouped by phase.

    ``cleanup`` steps restore machine state and run after the session ends,
    whether it completed or aborted.
    """

    request: DeploymentRequest
    pre: Tuple[Step, ...] = ()
    main: Tuple[Step, ...] = ()
    post: Tuple[Step, ...] = ()
    title: str = ""
    cleanup: Tuple[Step, ...] = ()

    @property
    def phases(self) -> List[Tuple[Phase, Tuple[Step, ...]]]:
        return [(Phase.PRE, self.pre), (Phase.MAIN, self.main), (Phase.POST, self.post)]

    def steps(self, phase: Phase) -> Tuple[Step, ...]:
        return dict(self.phases)[phase]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "deployment_type": self.request.deployment_type.value,
            "deploy_mode": self.request.deploy_mode.value,
            "phases": {
                phase.value: [step.to_dict() for step in steps]
                for phase, steps in self.phases
            },
            "cleanup": [step.to_dict() for step in self.cleanup],
        }


# --- Outcomes --------------------------------------------------------------


@dataclass
class StepOutcome:
    """Result of executing one step"""
    step: Step
    phase: Phase
    code: int
    classification: OutcomeClass
    duration_ms: int = 0
    message: Optional[str] = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.classification in (OutcomeClass.SOFT_FAILURE, OutcomeClass.HARD_FAILURE)

    @property
    def hard_failure(self) -> bool:
        return self.classification == OutcomeClass.HARD_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.describe(),
            "phase": self.phase.value,
            "code": self.code,
            "classification": self.classification.value,
            "duration_ms": self.duration_ms,
            "message": self.message,
            "skipped": self.skipped,
        }


@dataclass
class PhaseOutcome:
    phase: Phase
    outcomes: List[StepOutcome] = field(default_factory=list)


@dataclass
class SessionResult:
    """Aggregate of one session.

    Appended to as each step completes and frozen by ``finalize``.
    """
    phase_outcomes: List[PhaseOutcome] = field(default_factory=list)
    reboot_required: bool = False
    final_exit_code: Optional[int] = None
    state: SessionState = SessionState.IDLE
    engine_fault: Optional[str] = None
    cleanup_outcomes: List[StepOutcome] = field(default_factory=list)
    _finalized: bool = field(default=False, repr=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def outcomes(self) -> List[StepOutcome]:
        return [o for po in self.phase_outcomes for o in po.outcomes]

    @property
    def first_hard_failure(self) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.hard_failure:
                return outcome
        return None

    def phases_visited(self) -> List[Phase]:
        return [po.phase for po in self.phase_outcomes]

    def start_phase(self, phase: Phase) -> None:
        self._check_open()
        self.phase_outcomes.append(PhaseOutcome(phase=phase))
        self.state = PHASE_STATES[phase]

    def record(self, outcome: StepOutcome) -> None:
        self._check_open()
        if not self.phase_outcomes or self.phase_outcomes[-1].phase != outcome.phase:
            raise RuntimeError(f"Phase {outcome.phase.value} has not been started")
        self.phase_outcomes[-1].outcomes.append(outcome)
        if outcome.classification == OutcomeClass.SUCCESS_REBOOT_REQUIRED:
            self.reboot_required = True

    def record_cleanup(self, outcome: StepOutcome) -> None:
        """Cleanup outcomes are kept apart and never decide the exit code."""
        self._check_open()
        self.cleanup_outcomes.append(outcome)

    def finalize(self, state: SessionState, exit_code: int) -> None:
        self._check_open()
        self.state = state
        self.final_exit_code = exit_code
        self._finalized = True

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("Session result is finalized")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reboot_required": self.reboot_required,
            "final_exit_code": self.final_exit_code,
            "engine_fault": self.engine_fault,
            "phases": [
                {"phase": po.phase.value, "outcomes": [o.to_dict() for o in po.outcomes]}
                for po in self.phase_outcomes
            ],
            "cleanup": [o.to_dict() for o in self.cleanup_outcomes],
        }
