"""Tests for the msiexec invoker."""

import subprocess
from types import SimpleNamespace

import pytest

from app_deployer.errors import EngineFault
from app_deployer.installer import MsiexecInvoker
from app_deployer.orchestrator import PackageAction

GUID = "{12345678-1234-1234-1234-123456789ABC}"


class TestBuildCommand:
    def test_install_with_transform_and_patches(self, tmp_path):
        (tmp_path / "widget.msi").write_text("")
        invoker = MsiexecInvoker(working_dir=str(tmp_path))

        command = invoker.build_command(
            PackageAction.INSTALL, "widget.msi", transform="site.mst", patches=["a.msp", "b.msp"]
        )
        assert command[:3] == ["msiexec.exe", "/i", str(tmp_path / "widget.msi")]
        assert "TRANSFORMS=site.mst" in command
        assert "PATCH=a.msp;b.msp" in command
        assert command[-2:] == ["/qn", "/norestart"]

    def test_uninstall_by_product_code(self):
        command = MsiexecInvoker().build_command(PackageAction.UNINSTALL, GUID)
        assert command[1:3] == ["/x", GUID]

    def test_patch(self):
        command = MsiexecInvoker().build_command(PackageAction.PATCH, "SP1", patches=["sp1.msp"])
        assert command[1:3] == ["/p", "sp1.msp"]

    def test_interactive_ui_level(self):
        command = MsiexecInvoker().build_command(PackageAction.INSTALL, "widget.msi", silent=False)
        assert "/qb-!" in command
        assert "/qn" not in command

    def test_verbose_log_and_extra_arguments(self, tmp_path):
        invoker = MsiexecInvoker(log_dir=str(tmp_path), default_arguments=["ALLUSERS=1"])
        command = invoker.build_command(PackageAction.INSTALL, "widget.msi", arguments=["REBOOT=ReallySuppress"])

        index = command.index("/L*v")
        assert command[index + 1] == str(tmp_path / "widget_Install.log")
        assert command[-2:] == ["ALLUSERS=1", "REBOOT=ReallySuppress"]


class TestInvoke:
    def test_returns_exit_code(self, monkeypatch):
        captured = {}

        def fake_run(command, **kwargs):
            captured["command"] = command
            return SimpleNamespace(returncode=3010, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        result = MsiexecInvoker().invoke(PackageAction.UNINSTALL, GUID)

        assert result.code == 3010
        assert captured["command"][1] == "/x"

    def test_timeout_is_reported_as_failure_code(self, monkeypatch):
        def fake_run(command, **kwargs):
            raise subprocess.TimeoutExpired(command, kwargs.get("timeout"))

        monkeypatch.setattr(subprocess, "run", fake_run)
        result = MsiexecInvoker(timeout=1).invoke(PackageAction.INSTALL, "widget.msi")

        assert result.code == -1
        assert "timed out" in result.stderr

    def test_missing_msiexec_is_engine_fault(self, monkeypatch):
        def fake_run(command, **kwargs):
            raise FileNotFoundError(command[0])

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(EngineFault):
            MsiexecInvoker().invoke(PackageAction.INSTALL, "widget.msi")

    def test_execute_runs_executable(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run", lambda command, **kwargs: SimpleNamespace(returncode=0, stdout="ok", stderr="")
        )
        result = MsiexecInvoker().execute("configure.exe", ["/silent"])
        assert result.ok
        assert result.command == "configure.exe /silent"

    def test_is_installed_defaults_to_true_off_windows(self):
        invoker = MsiexecInvoker()
        invoker.is_windows = False
        assert invoker.is_installed(GUID) is True
