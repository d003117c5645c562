"""Tests for plan building."""

import pytest

from app_deployer.catalog import Catalog, ExecutableEntry, PackageEntry
from app_deployer.errors import ConfigurationError
from app_deployer.orchestrator import (
    CheckDiskSpace,
    CheckPriorVersionPresent,
    CloseBlockingProcesses,
    ClosureMode,
    ClosurePolicy,
    DeploymentRequest,
    DeploymentType,
    DeployMode,
    InstallPackage,
    PackageAction,
    PatchPackage,
    Phase,
    PromptKind,
    RunExecutable,
    ShowPrompt,
    UninstallPackage,
    build_plan,
)


def _catalog(**kwargs):
    packages = kwargs.pop("packages", [
        PackageEntry(product_key="OLD", action=PackageAction.UNINSTALL),
        PackageEntry(product_key="NEW", action=PackageAction.INSTALL, transform="site.mst"),
        PackageEntry(product_key="NEW-SP1", action=PackageAction.PATCH, patches=("sp1.msp",)),
    ])
    return Catalog(packages=packages, app_vendor="Contoso", app_name="Widget", **kwargs)


class TestMainPhase:
    def test_install_plan_keeps_catalog_order(self):
        plan = build_plan(_catalog(), DeploymentRequest())

        assert [type(s) for s in plan.main] == [UninstallPackage, InstallPackage, PatchPackage]
        assert plan.main[1].transform == "site.mst"
        assert plan.main[2].patches == ("sp1.msp",)

    def test_uninstall_after_install_is_not_planned(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="OLD", action=PackageAction.UNINSTALL),
            PackageEntry(product_key="NEW"),
            PackageEntry(product_key="OTHER", action=PackageAction.UNINSTALL),
        ])
        plan = build_plan(catalog, DeploymentRequest())

        assert [s.product_key for s in plan.main] == ["OLD", "NEW"]
        assert [s.product_key for s in plan.pre if isinstance(s, CheckPriorVersionPresent)] == ["OLD"]

    def test_trailing_uninstall_of_installed_key_is_not_a_duplicate(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="OLD", action=PackageAction.UNINSTALL),
            PackageEntry(product_key="NEW"),
            PackageEntry(product_key="NEW", action=PackageAction.UNINSTALL),
        ])
        plan = build_plan(catalog, DeploymentRequest())
        assert [type(s) for s in plan.main] == [UninstallPackage, InstallPackage]

        uninstall = build_plan(catalog, DeploymentRequest(deployment_type=DeploymentType.UNINSTALL))
        assert [s.product_key for s in uninstall.main] == ["OLD", "NEW"]

    def test_uninstall_plan_only_removes(self):
        plan = build_plan(_catalog(), DeploymentRequest(deployment_type=DeploymentType.UNINSTALL))

        assert [s.product_key for s in plan.main] == ["OLD"]

    def test_disabled_entries_are_skipped(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="A", enabled=False),
            PackageEntry(product_key="B"),
        ])
        plan = build_plan(catalog, DeploymentRequest())
        assert [s.product_key for s in plan.main] == ["B"]

    def test_plain_entry_list_is_accepted(self):
        plan = build_plan([PackageEntry(product_key="P1")], DeploymentRequest())
        assert plan.main == (InstallPackage(product_key="P1"),)
        assert plan.title == "Application"

    def test_duplicate_product_key_rejected(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="{abc}", action=PackageAction.UNINSTALL),
            PackageEntry(product_key="{ABC}"),
        ])
        with pytest.raises(ConfigurationError):
            build_plan(catalog, DeploymentRequest())

    def test_duplicate_in_disabled_entry_is_fine(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="P1"),
            PackageEntry(product_key="P1", enabled=False),
        ])
        assert len(build_plan(catalog, DeploymentRequest()).main) == 1

    def test_unknown_deployment_type_rejected(self):
        with pytest.raises(ConfigurationError):
            build_plan(_catalog(), DeploymentRequest(deployment_type="Repair"))


class TestPreAndPostPhases:
    def test_default_install_plan_layout(self):
        plan = build_plan(_catalog(), DeploymentRequest())

        assert [s.prompt_kind for s in plan.pre[:2]] == [PromptKind.WELCOME, PromptKind.PROGRESS]
        assert plan.pre[0].allow_defer is True
        assert plan.pre[2] == CheckPriorVersionPresent(product_key="OLD")
        assert plan.cleanup == ()
        assert [s.prompt_kind for s in plan.post] == [PromptKind.INFORMATION, PromptKind.RESTART]
        assert plan.post[-1].only_if_reboot_required is True

    def test_blocking_processes_come_first(self):
        policy = ClosurePolicy(mode=ClosureMode.CLOSE_IMMEDIATE)
        request = DeploymentRequest(blocking_process_names=frozenset({"winword"}), closure_policy=policy)
        plan = build_plan(_catalog(), request)

        step = plan.pre[0]
        assert isinstance(step, CloseBlockingProcesses)
        assert step.process_names == frozenset({"winword"})
        assert step.policy == policy
        assert not any(
            isinstance(s, ShowPrompt) and s.prompt_kind == PromptKind.WELCOME for s in plan.pre
        )

    def test_disk_check_only_for_install(self):
        catalog = _catalog(required_disk_mb=500, disk_check_path="C:\\")
        install = build_plan(catalog, DeploymentRequest())
        uninstall = build_plan(catalog, DeploymentRequest(deployment_type=DeploymentType.UNINSTALL))

        assert CheckDiskSpace(path="C:\\", required_mb=500) in install.pre
        assert not any(isinstance(s, CheckDiskSpace) for s in uninstall.pre)

    def test_marker_path_copied_to_presence_check(self):
        catalog = _catalog(packages=[
            PackageEntry(product_key="OLD", action=PackageAction.UNINSTALL, marker_path="C:\\Widget\\w.exe"),
        ])
        plan = build_plan(catalog, DeploymentRequest(deployment_type=DeploymentType.UNINSTALL))
        checks = [s for s in plan.pre if isinstance(s, CheckPriorVersionPresent)]
        assert checks[0].marker_path == "C:\\Widget\\w.exe"

    def test_executables_are_placed_by_phase_and_type(self):
        catalog = _catalog(executables=[
            ExecutableEntry(path="pre.exe", phase=Phase.PRE),
            ExecutableEntry(path="post.exe", phase=Phase.POST),
            ExecutableEntry(path="main.exe", phase=Phase.MAIN),
            ExecutableEntry(path="cleanup.exe", phase=Phase.POST, deployment_type=DeploymentType.UNINSTALL),
            ExecutableEntry(path="off.exe", phase=Phase.POST, enabled=False),
        ])
        plan = build_plan(catalog, DeploymentRequest())

        assert plan.pre[-1] == RunExecutable(path="pre.exe")
        assert plan.main[-1] == RunExecutable(path="main.exe")
        assert plan.post[0] == RunExecutable(path="post.exe")
        paths = [s.path for _, steps in plan.phases for s in steps if isinstance(s, RunExecutable)]
        assert "cleanup.exe" not in paths
        assert "off.exe" not in paths

    def test_terminal_server_mode_wraps_session(self):
        catalog = _catalog(required_disk_mb=500)
        plan = build_plan(catalog, DeploymentRequest(terminal_server_mode=True))

        install_mode = RunExecutable(path="change.exe", arguments=("user", "/install"))
        index = plan.pre.index(install_mode)
        assert isinstance(plan.pre[index - 1], CheckPriorVersionPresent)
        assert any(isinstance(s, CheckDiskSpace) for s in plan.pre[:index])
        assert not any(isinstance(s, RunExecutable) and s.path == "change.exe" for s in plan.post)
        assert plan.cleanup == (
            RunExecutable(path="change.exe", arguments=("user", "/execute"), soft_fail=True),
        )

    def test_terminal_server_restore_in_plan_dict(self):
        data = build_plan(_catalog(), DeploymentRequest(terminal_server_mode=True)).to_dict()
        assert data["cleanup"][0]["arguments"] == ["user", "/execute"]

    def test_plan_is_independent_of_deploy_mode(self):
        interactive = build_plan(_catalog(), DeploymentRequest(deploy_mode=DeployMode.INTERACTIVE))
        silent = build_plan(_catalog(), DeploymentRequest(deploy_mode=DeployMode.SILENT))
        assert interactive.main == silent.main

    def test_plan_to_dict(self):
        data = build_plan(_catalog(), DeploymentRequest()).to_dict()
        assert data["title"] == "Contoso Widget"
        assert data["phases"]["Main"][0]["type"] == "UninstallPackage"
        assert data["phases"]["Main"][2]["patches"] == ["sp1.msp"]
