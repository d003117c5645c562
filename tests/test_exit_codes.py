"""Tests for completion code classification and the final exit code."""

import pytest

from app_deployer.orchestrator import (
    InstallPackage,
    OutcomeClass,
    Phase,
    RunExecutable,
    SessionResult,
    StepOutcome,
    classify_code,
    compute_exit_code,
)
from app_deployer.orchestrator.exit_codes import describe_exit_code, is_custom_code


def _result(*outcomes):
    result = SessionResult()
    result.start_phase(Phase.MAIN)
    for outcome in outcomes:
        result.record(outcome)
    return result


def _outcome(code, classification, step=None):
    return StepOutcome(
        step=step or InstallPackage(product_key="P1"),
        phase=Phase.MAIN,
        code=code,
        classification=classification,
    )


class TestClassifyCode:
    @pytest.mark.parametrize("code, expected", [
        (0, OutcomeClass.SUCCESS),
        (3010, OutcomeClass.SUCCESS_REBOOT_REQUIRED),
        (1641, OutcomeClass.SUCCESS_REBOOT_REQUIRED),
        (1603, OutcomeClass.HARD_FAILURE),
        (-1, OutcomeClass.HARD_FAILURE),
    ])
    def test_default_policy(self, code, expected):
        assert classify_code(code) == expected

    def test_benign_codes(self):
        assert classify_code(1638, benign_codes=[1638]) == OutcomeClass.SUCCESS

    def test_soft_fail(self):
        assert classify_code(1603, soft_fail=True) == OutcomeClass.SOFT_FAILURE


class TestComputeExitCode:
    def test_success(self):
        result = _result(_outcome(0, OutcomeClass.SUCCESS))
        assert compute_exit_code(result, allow_reboot_passthru=True) == 0

    def test_reboot_passthru(self):
        result = _result(_outcome(3010, OutcomeClass.SUCCESS_REBOOT_REQUIRED))
        assert compute_exit_code(result, allow_reboot_passthru=True) == 3010
        assert compute_exit_code(result, allow_reboot_passthru=False) == 0

    def test_first_hard_failure_wins(self):
        result = _result(
            _outcome(69005, OutcomeClass.HARD_FAILURE),
            _outcome(70001, OutcomeClass.HARD_FAILURE),
        )
        assert compute_exit_code(result, allow_reboot_passthru=False) == 69005

    def test_failure_beats_reboot(self):
        result = _result(
            _outcome(3010, OutcomeClass.SUCCESS_REBOOT_REQUIRED),
            _outcome(1603, OutcomeClass.HARD_FAILURE),
        )
        assert compute_exit_code(result, allow_reboot_passthru=True) == 60001

    def test_executable_failure(self):
        result = _result(_outcome(5, OutcomeClass.HARD_FAILURE, step=RunExecutable(path="setup.exe")))
        assert compute_exit_code(result, allow_reboot_passthru=False) == 60002

    def test_soft_failure_is_ignored(self):
        result = _result(_outcome(1603, OutcomeClass.SOFT_FAILURE))
        assert compute_exit_code(result, allow_reboot_passthru=False) == 0

    def test_engine_fault(self):
        result = _result(_outcome(0, OutcomeClass.SUCCESS))
        result.engine_fault = "installer service unavailable"
        assert compute_exit_code(result, allow_reboot_passthru=False) == 60001


def test_custom_ranges():
    assert is_custom_code(69000)
    assert is_custom_code(79999)
    assert not is_custom_code(68999)
    assert not is_custom_code(80000)


def test_describe_exit_code():
    assert describe_exit_code(0) == "success"
    assert describe_exit_code(3010) == "success, reboot required"
