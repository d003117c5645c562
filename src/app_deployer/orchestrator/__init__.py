"""Orchestrator module for phased deployment sessions.

- build_plan: resolves a DeploymentPlan from a catalog and a request
- DeploymentOrchestrator / run_session: the session engine
- StepExecutor: executes and classifies individual steps
- compute_exit_code: the exit code contract
"""

from .models import (
    DeploymentType,
    DeployMode,
    PackageAction,
    Phase,
    SessionState,
    OutcomeClass,
    ClosureMode,
    ClosureOutcome,
    ClosurePolicy,
    PromptKind,
    DeploymentRequest,
    Step,
    InstallPackage,
    UninstallPackage,
    PatchPackage,
    RunExecutable,
    CheckDiskSpace,
    CheckPriorVersionPresent,
    ShowPrompt,
    CloseBlockingProcesses,
    DeploymentPlan,
    StepOutcome,
    PhaseOutcome,
    SessionResult,
)
from .planner import build_plan
from .exit_codes import classify_code, compute_exit_code
from .step_executor import StepExecutor
from .orchestrator import DeploymentOrchestrator, run_session

__all__ = [
    "DeploymentType",
    "DeployMode",
    "PackageAction",
    "Phase",
    "SessionState",
    "OutcomeClass",
    "ClosureMode",
    "ClosureOutcome",
    "ClosurePolicy",
    "PromptKind",
    "DeploymentRequest",
    "Step",
    "InstallPackage",
    "UninstallPackage",
    "PatchPackage",
    "RunExecutable",
    "CheckDiskSpace",
    "CheckPriorVersionPresent",
    "ShowPrompt",
    "CloseBlockingProcesses",
    "DeploymentPlan",
    "StepOutcome",
    "PhaseOutcome",
    "SessionResult",
    "build_plan",
    "classify_code",
    "compute_exit_code",
    "StepExecutor",
    "DeploymentOrchestrator",
    "run_session",
]
