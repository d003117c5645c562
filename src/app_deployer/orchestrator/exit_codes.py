"""Exit code contract consumed by the upstream management system.

=============  ==============================================
Code / range   Meaning
=============  ==============================================
0              Success
3010           Success, reboot required (only if passed through)
60000-68999    Built-in engine failure codes
69000-69999    Deployment-specific custom codes
70000-79999    Extension-layer custom codes
=============  ==============================================
"""

from __future__ import annotations

from typing import Iterable

from .models import OutcomeClass, RunExecutable, SessionResult

EXIT_SUCCESS = 0
EXIT_REBOOT_REQUIRED = 3010
# MSI "reboot initiated"; classified like 3010
EXIT_REBOOT_INITIATED = 1641

EXIT_GENERIC_FAILURE = 60001
EXIT_ENGINE_FAULT = 60001
EXIT_EXECUTABLE_FAILED = 60002
EXIT_CONFIGURATION_ERROR = 60008
EXIT_INSUFFICIENT_DISK_SPACE = 60010
EXIT_PROCESS_CLOSE_FAILED = 60011
EXIT_USER_DEFERRED = 60012

BUILTIN_RANGE = range(60000, 69000)
DEPLOYMENT_CUSTOM_RANGE = range(69000, 70000)
EXTENSION_CUSTOM_RANGE = range(70000, 80000)


def is_builtin_code(code: int) -> bool:
    return code in BUILTIN_RANGE


def is_custom_code(code: int) -> bool:
    return code in DEPLOYMENT_CUSTOM_RANGE or code in EXTENSION_CUSTOM_RANGE


def classify_code(code: int, benign_codes: Iterable[int] = (), soft_fail: bool = False) -> OutcomeClass:
    """Map a completion code to an outcome class."""
    if code == EXIT_SUCCESS:
        return OutcomeClass.SUCCESS
    if code in (EXIT_REBOOT_REQUIRED, EXIT_REBOOT_INITIATED):
        return OutcomeClass.SUCCESS_REBOOT_REQUIRED
    if code in set(benign_codes):
        return OutcomeClass.SUCCESS
    return OutcomeClass.SOFT_FAILURE if soft_fail else OutcomeClass.HARD_FAILURE


def compute_exit_code(result: SessionResult, allow_reboot_passthru: bool) -> int:
    """Final process exit code for ``result``. Pure."""
    if result.engine_fault:
        return EXIT_ENGINE_FAULT

    failure = result.first_hard_failure
    if failure is not None:
        if is_custom_code(failure.code) or is_builtin_code(failure.code):
            return failure.code
        if isinstance(failure.step, RunExecutable):
            return EXIT_EXECUTABLE_FAILED
        return EXIT_GENERIC_FAILURE

    if result.reboot_required and allow_reboot_passthru:
        return EXIT_REBOOT_REQUIRED
    return EXIT_SUCCESS


def describe_exit_code(code: int) -> str:
    if code == EXIT_SUCCESS:
        return "success"
    if code == EXIT_REBOOT_REQUIRED:
        return "success, reboot required"
    if code in DEPLOYMENT_CUSTOM_RANGE:
        return "deployment-specific failure"
    if code in EXTENSION_CUSTOM_RANGE:
        return "extension failure"
    return {
        EXIT_GENERIC_FAILURE: "deployment failed",
        EXIT_EXECUTABLE_FAILED: "executable failed",
        EXIT_CONFIGURATION_ERROR: "configuration error",
        EXIT_INSUFFICIENT_DISK_SPACE: "insufficient disk space",
        EXIT_PROCESS_CLOSE_FAILED: "blocking processes could not be closed",
        EXIT_USER_DEFERRED: "deferred or declined by user",
    }.get(code, "built-in failure" if is_builtin_code(code) else "unknown")
