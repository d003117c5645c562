"""Deployment plan builder: catalog + request -> ordered, phased steps."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Set, Union, TYPE_CHECKING

from ..errors import ConfigurationError
from .models import (
    CheckDiskSpace,
    CheckPriorVersionPresent,
    CloseBlockingProcesses,
    DeploymentPlan,
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
    Step,
    UninstallPackage,
)

if TYPE_CHECKING:
    from ..catalog import Catalog, ExecutableEntry, PackageEntry

logger = logging.getLogger(__name__)

# Terminal servers must be switched to install mode around installer runs.
TERMINAL_SERVER_COMMAND = "change.exe"

_INSTALL_ACTIONS = (PackageAction.INSTALL, PackageAction.PATCH, PackageAction.UNINSTALL)
_UNINSTALL_ACTIONS = (PackageAction.UNINSTALL,)


def build_plan(
    catalog: Union["Catalog", Sequence["PackageEntry"]],
    request: DeploymentRequest,
) -> DeploymentPlan:
    """Resolve the ordered step list for ``request``.

    Install requests take Install and Patch entries plus the Uninstall entries
    staged ahead of them. Uninstall requests take only Uninstall entries.

    ``catalog`` may be a full :class:`~app_deployer.catalog.Catalog` or a plain
    sequence of package entries. Pure: nothing is executed or probed here.

    Raises:
        ConfigurationError: unknown deployment type or deploy mode, or a
            product key planned twice within one phase.
    """
    deployment_type = DeploymentType.parse(request.deployment_type)
    DeployMode.parse(request.deploy_mode)

    packages = list(getattr(catalog, "packages", catalog))
    executables = [
        e for e in getattr(catalog, "executables", ())
        if e.enabled and e.deployment_type == deployment_type
    ]
    title = getattr(catalog, "title", "") or "Application"
    verb = "Installation" if deployment_type == DeploymentType.INSTALL else "Uninstallation"

    main = _main_steps(packages, deployment_type)
    _check_unique(main, Phase.MAIN)
    main.extend(_executable_steps(executables, Phase.MAIN))

    pre: List[Step] = []
    if request.blocking_process_names:
        pre.append(
            CloseBlockingProcesses(
                process_names=frozenset(request.blocking_process_names),
                policy=request.closure_policy,
                allow_defer=True,
            )
        )
    else:
        pre.append(
            ShowPrompt(
                title=title,
                message=f"{title} is about to be changed on this computer. Save your work before continuing.",
                prompt_kind=PromptKind.WELCOME,
                allow_defer=True,
            )
        )
    pre.append(
        ShowPrompt(
            title=title,
            message=f"{verb} in progress. Please wait...",
            prompt_kind=PromptKind.PROGRESS,
        )
    )
    required_mb = getattr(catalog, "required_disk_mb", 0)
    if deployment_type == DeploymentType.INSTALL and required_mb > 0:
        disk_path = getattr(catalog, "disk_check_path", None) or "."
        pre.append(CheckDiskSpace(path=disk_path, required_mb=required_mb))
    checks = [
        CheckPriorVersionPresent(product_key=step.product_key, marker_path=_marker_for(step, packages))
        for step in main
        if isinstance(step, UninstallPackage)
    ]
    _check_unique(checks, Phase.PRE)
    pre.extend(checks)
    if request.terminal_server_mode:
        pre.append(RunExecutable(path=TERMINAL_SERVER_COMMAND, arguments=("user", "/install")))
    pre.extend(_executable_steps(executables, Phase.PRE))

    post: List[Step] = list(_executable_steps(executables, Phase.POST))
    post.append(
        ShowPrompt(
            title=title,
            message=f"{verb} of {title} completed.",
            prompt_kind=PromptKind.INFORMATION,
        )
    )
    post.append(
        ShowPrompt(
            title=title,
            message="A restart is required to complete the deployment.",
            prompt_kind=PromptKind.RESTART,
            only_if_reboot_required=True,
        )
    )

    cleanup: List[Step] = []
    if request.terminal_server_mode:
        # back to execute mode even when the session aborts
        cleanup.append(
            RunExecutable(path=TERMINAL_SERVER_COMMAND, arguments=("user", "/execute"), soft_fail=True)
        )

    plan = DeploymentPlan(
        request=request,
        pre=tuple(pre),
        main=tuple(main),
        post=tuple(post),
        title=title,
        cleanup=tuple(cleanup),
    )
    logger.debug(
        "Built %s plan for %s: %d pre, %d main, %d post steps",
        deployment_type.value, title, len(plan.pre), len(plan.main), len(plan.post),
    )
    return plan


def _main_steps(packages: Iterable["PackageEntry"], deployment_type: DeploymentType) -> List[Step]:
    allowed = _INSTALL_ACTIONS if deployment_type == DeploymentType.INSTALL else _UNINSTALL_ACTIONS
    steps: List[Step] = []
    staging = True
    for entry in packages:
        if not entry.enabled:
            logger.debug("Skipping disabled catalog entry %s", entry.product_key)
            continue
        if entry.action not in allowed:
            continue
        if deployment_type == DeploymentType.INSTALL:
            # only uninstalls staged ahead of the first install/patch are prior-version cleanup
            if entry.action == PackageAction.UNINSTALL and not staging:
                logger.debug("Skipping uninstall entry %s after the install entries", entry.product_key)
                continue
            if entry.action != PackageAction.UNINSTALL:
                staging = False
        common = dict(
            product_key=entry.product_key,
            display_name=entry.display_name,
            installer=entry.installer,
            arguments=tuple(entry.arguments),
            soft_fail=entry.soft_fail,
        )
        if entry.action == PackageAction.INSTALL:
            steps.append(InstallPackage(transform=entry.transform, patches=tuple(entry.patches), **common))
        elif entry.action == PackageAction.PATCH:
            steps.append(PatchPackage(patches=tuple(entry.patches), **common))
        else:
            steps.append(UninstallPackage(**common))
    return steps


def _executable_steps(executables: Iterable["ExecutableEntry"], phase: Phase) -> List[Step]:
    return [
        RunExecutable(
            path=e.path,
            arguments=tuple(e.arguments),
            wait=e.wait,
            ignore_exit_codes=tuple(e.ignore_exit_codes),
            soft_fail=e.soft_fail,
        )
        for e in executables
        if e.phase == phase
    ]


def _marker_for(step: UninstallPackage, packages: Iterable["PackageEntry"]) -> Optional[str]:
    for entry in packages:
        if entry.enabled and entry.product_key == step.product_key and entry.marker_path:
            return entry.marker_path
    return None


def _check_unique(steps: Iterable[Step], phase: Phase) -> None:
    seen: Set[str] = set()
    for step in steps:
        key = getattr(step, "product_key", None)
        if not key:
            continue
        normalized = key.strip().upper()
        if normalized in seen:
            raise ConfigurationError(
                f"Duplicate product key {key} in {phase.value} phase"
            )
        seen.add(normalized)
