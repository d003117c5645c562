"""Command-line interface for app-deployer."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .catalog import Catalog, load_catalog
from .config import AppConfig, load_config
from .errors import ConfigurationError, EngineFault
from .gatekeeper import ProcessGatekeeper, PsutilProcessGatekeeper
from .installer import InstallerInvoker, MsiexecInvoker
from .interaction import AutoResponseHandler, CLIInteractionHandler, UserInteractionHandler
from .orchestrator import (
    ClosureMode,
    ClosurePolicy,
    DeploymentOrchestrator,
    DeploymentPlan,
    DeploymentRequest,
    DeploymentType,
    DeployMode,
    build_plan,
)
from .paths import LOGS_DIR, get_logs_dir
from .orchestrator.exit_codes import EXIT_CONFIGURATION_ERROR, EXIT_ENGINE_FAULT, describe_exit_code
from .utils.logging import configure_file_logging, get_logger, set_level

logger = get_logger(__name__)


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    catalog: Catalog
    catalog_dir: Path
    request: DeploymentRequest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="app-deployer",
        description="Install, upgrade or remove software described by a package catalog.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Run a deployment session")
    plan_parser = subparsers.add_parser("plan", help="Show the resolved plan without running it")
    for sub in (deploy_parser, plan_parser):
        sub.add_argument("--catalog", required=True, help="Path to the package catalog (JSON)")
        sub.add_argument(
            "--deployment-type",
            default="Install",
            help="Install or Uninstall (default: Install)",
        )
        sub.add_argument(
            "--deploy-mode",
            default="Interactive",
            help="Interactive, Silent or NonInteractive (default: Interactive)",
        )
        sub.add_argument(
            "--allow-reboot-passthru", action="store_true",
            help="Return 3010 when a reboot is required instead of 0",
        )
        sub.add_argument(
            "--terminal-server-mode", action="store_true",
            help="Switch a terminal server to install mode around the deployment",
        )
        sub.add_argument(
            "--disable-logging", action="store_true",
            help="Do not write log files",
        )
        sub.add_argument(
            "--blocking-process", action="append", default=[], metavar="NAME",
            help="Process that must be closed first (repeatable, or comma separated)",
        )

    # logs: browse JSON session logs
    logs_parser = subparsers.add_parser("logs", help="View deployment session logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest session log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def _blocking_names(values: List[str]) -> frozenset:
    names = set()
    for value in values:
        names.update(n.strip() for n in value.split(",") if n.strip())
    return frozenset(names)


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    set_level(config.logging.level)
    catalog = load_catalog(args.catalog)
    if not catalog.required_disk_mb and config.session.default_required_disk_mb:
        catalog.required_disk_mb = config.session.default_required_disk_mb

    request = DeploymentRequest(
        deployment_type=DeploymentType.parse(args.deployment_type),
        deploy_mode=DeployMode.parse(args.deploy_mode),
        allow_reboot_passthru=args.allow_reboot_passthru,
        blocking_process_names=_blocking_names(args.blocking_process),
        terminal_server_mode=args.terminal_server_mode,
        disable_logging=args.disable_logging,
        closure_policy=ClosurePolicy(
            mode=ClosureMode.parse(config.session.closure_mode),
            countdown_seconds=config.session.closure_countdown_seconds,
        ),
    )
    return CLIContext(
        config=config,
        catalog=catalog,
        catalog_dir=Path(args.catalog).resolve().parent,
        request=request,
    )


def create_interaction_handler(context: CLIContext) -> UserInteractionHandler:
    if context.request.interactive and context.config.interaction.mode == "cli":
        return CLIInteractionHandler()
    return AutoResponseHandler()


def create_invoker(context: CLIContext, log_dir: Optional[Path]) -> InstallerInvoker:
    installer = context.config.installer
    return MsiexecInvoker(
        msiexec_path=installer.msiexec_path,
        working_dir=installer.working_dir or str(context.catalog_dir),
        log_dir=str(log_dir) if log_dir and context.config.logging.msi_logs else None,
        timeout=installer.timeout,
        default_arguments=installer.default_arguments,
    )


def create_gatekeeper(context: CLIContext, handler: UserInteractionHandler) -> ProcessGatekeeper:
    return PsutilProcessGatekeeper(interaction_handler=handler, title=context.catalog.title)


def handle_deploy_command(context: CLIContext, plan: DeploymentPlan) -> int:
    request = context.request
    log_dir: Optional[Path] = None
    if not request.disable_logging:
        log_dir = get_logs_dir(context.config.logging.log_dir)
        log_file = configure_file_logging(
            log_dir, f"{context.catalog.log_name}_{request.deployment_type.value}"
        )
        logger.info("Logging to %s", log_file)

    handler = create_interaction_handler(context)
    orchestrator = DeploymentOrchestrator(
        invoker=create_invoker(context, log_dir),
        gatekeeper=create_gatekeeper(context, handler),
        interaction_handler=handler,
        benign_codes=context.config.session.benign_exit_codes,
        max_deferrals=context.config.session.max_deferrals,
        log_dir=str(log_dir) if log_dir else None,
        log_name=context.catalog.log_name,
    )
    try:
        result = orchestrator.run(plan)
    except EngineFault as exc:
        if exc.result is not None and exc.result.final_exit_code is not None:
            return exc.result.final_exit_code
        return EXIT_ENGINE_FAULT
    return result.final_exit_code


def handle_plan_command(plan: DeploymentPlan) -> int:
    request = plan.request
    print(f"\n📋 {request.deployment_type.value} plan for {plan.title} ({request.deploy_mode.value})")
    for phase, steps in plan.phases:
        print(f"\n[{phase.value}]")
        if not steps:
            print("   (no steps)")
        for i, step in enumerate(steps, 1):
            print(f"   {i}. {step.describe()}")
    if plan.cleanup:
        print("\n[Cleanup]")
        for i, step in enumerate(plan.cleanup, 1):
            print(f"   {i}. {step.describe()}")
    print()
    return 0


def handle_logs_command(args: argparse.Namespace) -> int:
    """Handle the logs subcommand."""
    config = load_config(args.config)
    log_dir = Path(config.logging.log_dir) if config.logging.log_dir else LOGS_DIR

    if not log_dir.exists():
        print("📁 No session logs found. Run a deployment first.")
        return 0

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not log_files:
        print("📁 No session logs found.")
        return 0

    if args.list_logs:
        print(f"📁 Session logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Exit':<7} {'Title':<30} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                print(f"{i:<4} {'error':<12} {'?':<7} {'?':<30} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            exit_code = data.get("summary", {}).get("exit_code", "")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            print(f"{i:<4} {status:<12} {str(exit_code):<7} {data.get('title', ''):<30} {start_time:<20} {log_file.name}")
        return 0

    target_file = log_files[0]
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1

    show_log_file(target_file)
    return 0


def show_log_file(log_file: Path) -> None:
    """Display a session log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    summary = data.get("summary", {})
    exit_code = summary.get("exit_code")
    print(f"\n{'='*60}")
    print(f"📄 Session Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"📦 Title:     {data.get('title', 'N/A')}")
    print(f"⚙️  Type:      {data.get('deployment_type', 'N/A')} ({data.get('deploy_mode', 'N/A')})")
    print(f"⏰ Started:   {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:     {data.get('end_time', 'N/A')}")
    print(f"📊 Status:    {data.get('status', 'unknown')}")
    if exit_code is not None:
        print(f"🔚 Exit code: {exit_code} ({describe_exit_code(exit_code)})")
    print(f"{'='*60}\n")

    icons = {"success": "✅", "success_reboot_required": "🔄", "soft_failure": "⚠️", "hard_failure": "❌"}
    for entry in data.get("steps", []):
        icon = icons.get(entry.get("classification"), "•")
        print(f"[{entry.get('phase', '?')}] {icon} {entry.get('step', '?')} -> {entry.get('code')}")
        if entry.get("message"):
            print(f"    📝 {entry['message']}")


def dispatch_command(args: argparse.Namespace) -> int:
    if args.command == "logs":
        return handle_logs_command(args)

    context = _build_context(args)
    plan = build_plan(context.catalog, context.request)

    if args.command == "plan":
        return handle_plan_command(plan)
    if args.command == "deploy":
        return handle_deploy_command(context, plan)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args)
    except (ConfigurationError, FileNotFoundError) as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIGURATION_ERROR
