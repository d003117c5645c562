"""Tests for the psutil process gatekeeper."""

import psutil
import pytest

from app_deployer.errors import EngineFault, StepExecutionError
from app_deployer.gatekeeper import PsutilProcessGatekeeper
from app_deployer.gatekeeper.process_gatekeeper import OPTION_CLOSE, OPTION_CONTINUE, OPTION_DEFER
from app_deployer.interaction import CallbackInteractionHandler, InteractionResponse
from app_deployer.orchestrator import ClosureMode, ClosureOutcome, ClosurePolicy, DeployMode


class FakeProcess:
    def __init__(self, name, pid, table, ignores_terminate=False, protected=False):
        self.info = {"name": name}
        self.pid = pid
        self.table = table
        self.ignores_terminate = ignores_terminate
        self.protected = protected
        self.terminated = False
        self.killed = False
        table.append(self)

    def terminate(self):
        if self.protected:
            raise psutil.AccessDenied(pid=self.pid)
        self.terminated = True
        if not self.ignores_terminate:
            self._exit()

    def kill(self):
        if self.protected:
            raise psutil.AccessDenied(pid=self.pid)
        self.killed = True
        self._exit()

    def _exit(self):
        if self in self.table:
            self.table.remove(self)


@pytest.fixture
def process_table(monkeypatch):
    """Patch psutil so the gatekeeper sees a controllable process list.

    A process is alive while it is in the table.
    """
    table = []

    monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: list(table))

    def fake_wait_procs(procs, timeout=None):
        alive = [p for p in procs if p in table]
        gone = [p for p in procs if p not in alive]
        return gone, alive

    monkeypatch.setattr(psutil, "wait_procs", fake_wait_procs)
    return table


def _handler(*answers):
    queue = list(answers)
    asked = []

    def ask(request):
        asked.append(request)
        return queue.pop(0)

    return CallbackInteractionHandler(ask_callback=ask, notify_callback=lambda m, l: None), asked


COUNTDOWN = ClosurePolicy(mode=ClosureMode.COUNTDOWN, countdown_seconds=30)


class TestFindRunning:
    def test_matches_names_case_insensitively(self, process_table):
        table = process_table
        FakeProcess("WINWORD.EXE", 10, table)
        FakeProcess("explorer.exe", 11, table)
        gatekeeper = PsutilProcessGatekeeper()

        running = gatekeeper.find_running({"winword"})
        assert [p.pid for p in running] == [10]

    def test_enumeration_error_is_engine_fault(self, monkeypatch):
        def broken(attrs=None):
            raise psutil.AccessDenied()

        monkeypatch.setattr(psutil, "process_iter", broken)
        with pytest.raises(EngineFault):
            PsutilProcessGatekeeper().find_running({"winword"})


class TestNegotiateClosure:
    def test_nothing_running_proceeds(self, process_table):
        handler, asked = _handler()
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE)
        assert outcome == ClosureOutcome.PROCEED
        assert asked == []

    def test_non_interactive_closes_without_asking(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table)
        handler, asked = _handler()
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.SILENT)
        assert outcome == ClosureOutcome.TIMED_OUT_CLOSED
        assert word.terminated is True
        assert asked == []

    def test_survivors_are_killed(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table, ignores_terminate=True)
        gatekeeper = PsutilProcessGatekeeper(terminate_timeout=0.1)

        gatekeeper.negotiate_closure(
            {"winword"}, ClosurePolicy(mode=ClosureMode.CLOSE_IMMEDIATE), DeployMode.INTERACTIVE
        )
        assert word.killed is True
        assert table == []

    def test_protected_process_fails_closure(self, process_table):
        table = process_table
        FakeProcess("winword.exe", 42, table, protected=True)
        gatekeeper = PsutilProcessGatekeeper(terminate_timeout=0.1)

        with pytest.raises(StepExecutionError) as excinfo:
            gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.SILENT)
        assert excinfo.value.code == 60011
        assert "pid 42" in str(excinfo.value)

    def test_protected_process_fails_after_user_agrees_to_close(self, process_table):
        table = process_table
        FakeProcess("winword.exe", 42, table, protected=True)
        handler, _ = _handler(InteractionResponse(value=OPTION_CLOSE))
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler, terminate_timeout=0.1)

        with pytest.raises(StepExecutionError) as excinfo:
            gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE)
        assert excinfo.value.code == 60011

    def test_countdown_user_closes(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table)
        handler, asked = _handler(InteractionResponse(value=OPTION_CLOSE))
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE)
        assert outcome == ClosureOutcome.PROCEED
        assert word.terminated is True
        assert asked[0].timeout == 30
        assert OPTION_DEFER in asked[0].options
        assert asked[0].default == OPTION_CLOSE

    def test_countdown_expiry_closes(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table)
        handler, _ = _handler(InteractionResponse.timeout_response())
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE)
        assert outcome == ClosureOutcome.TIMED_OUT_CLOSED
        assert word.terminated is True

    def test_countdown_defer(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table)
        handler, _ = _handler(InteractionResponse(value=OPTION_DEFER))
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE)
        assert outcome == ClosureOutcome.DEFERRED
        assert word.terminated is False

    def test_defer_option_hidden_when_not_allowed(self, process_table):
        table = process_table
        FakeProcess("winword.exe", 10, table)
        handler, asked = _handler(InteractionResponse(value=OPTION_CLOSE))
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        gatekeeper.negotiate_closure({"winword"}, COUNTDOWN, DeployMode.INTERACTIVE, allow_defer=False)
        assert asked[0].options == [OPTION_CLOSE]

    def test_persist_until_manual_waits_for_user(self, process_table):
        table = process_table
        word = FakeProcess("winword.exe", 10, table)

        def ask(request):
            asked.append(request)
            if len(asked) == 2:
                table.clear()
            return InteractionResponse(value=OPTION_CONTINUE)

        asked = []
        handler = CallbackInteractionHandler(ask_callback=ask, notify_callback=lambda m, l: None)
        gatekeeper = PsutilProcessGatekeeper(interaction_handler=handler)

        outcome = gatekeeper.negotiate_closure(
            {"winword"}, ClosurePolicy(mode=ClosureMode.PERSIST_UNTIL_MANUAL), DeployMode.INTERACTIVE
        )
        assert outcome == ClosureOutcome.PROCEED
        assert len(asked) == 2
        assert word.terminated is False
