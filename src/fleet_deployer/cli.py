"""Command-line interface for fleet-deployer."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from .config import AppConfig, load_config
from .errors import ConfigError
from .runlog import list_run_logs, load_run_log
from .utils.logging import get_logger
from .workflow import DeploymentRequest, DeploymentWorkflow

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-deployer",
        description="Build a container image, push it, and run it on a fleet of hosts.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON run configuration (default: config/default_config.json).",
    )

    # Also accepted after the subcommand name.
    config_parent = argparse.ArgumentParser(add_help=False)
    config_parent.add_argument("--config", type=str, default=argparse.SUPPRESS, help=argparse.SUPPRESS)

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser(
        "deploy", parents=[config_parent], help="Run the full publish and provision pipeline"
    )
    deploy_parser.add_argument("--tag", default=None, help="Image tag (overrides configuration)")
    deploy_parser.add_argument(
        "--build-context", default=None,
        help="Directory to build the image from (overrides source settings)",
    )
    deploy_parser.add_argument(
        "--sequential", action="store_true",
        help="Reconcile targets one at a time instead of in parallel",
    )
    deploy_parser.add_argument(
        "--run-timeout", type=float, default=None,
        help="Cancel the run after this many seconds (cleanup still runs)",
    )

    subparsers.add_parser("validate", parents=[config_parent], help="Check the run configuration and list targets")

    logs_parser = subparsers.add_parser("logs", parents=[config_parent], help="View recorded run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def handle_deploy_command(config: AppConfig, args: argparse.Namespace) -> int:
    request = DeploymentRequest(
        tag=args.tag,
        build_context=args.build_context,
        max_workers=1 if args.sequential else None,
        run_timeout=args.run_timeout,
    )
    run = DeploymentWorkflow(config).run(request)

    if run.fleet is not None:
        for outcome in run.fleet.outcomes:
            status = "✅" if outcome.succeeded else "❌"
            kind = f" ({outcome.error.kind})" if outcome.error else ""
            print(f"{status} {outcome.address}: {outcome.state.value}{kind}")
    if run.result.failed_stage:
        print(f"💥 Failed at stage '{run.result.failed_stage}': {run.result.error}")
    if not run.result.cleanup_succeeded:
        print(f"⚠️ Cleanup failed: {run.result.cleanup_error}")
    return run.exit_code


def handle_validate_command(config: AppConfig) -> int:
    config.validate()
    print(f"Repository: {config.registry.repository}")
    print(f"Tag:        {config.registry.tag or '(resolved at run time)'}")
    print(f"Container:  {config.container.container_name} "
          f"[{', '.join(str(b) for b in config.port_bindings()) or 'no ports'}]")
    print(f"Targets ({len(config.targets)}):")
    for target in config.build_targets():
        labels = f" {sorted(target.labels)}" if target.labels else ""
        print(f"  - {target.address}{labels}")
    return 0


def handle_logs_command(config: AppConfig, args: argparse.Namespace) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(config.pipeline.log_dir)
    log_files = list_run_logs(log_dir)

    if not log_files:
        print("📁 No run logs found. Run a deployment first.")
        return 0

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<10} {'Artifact':<40} {'Started':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            data = load_run_log(log_file)
            started = (data.get("start_time") or "")[:19].replace("T", " ")
            print(f"{i:<4} {data.get('status', 'unknown'):<10} {str(data.get('artifact')):<40} "
                  f"{started:<20} {log_file.name}")
        return 0

    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1
    else:
        target_file = log_files[0]

    show_log_file(target_file)
    return 0


def show_log_file(log_file: Path) -> None:
    """Display a run log file."""
    data = load_run_log(log_file)
    status = data.get("status", "unknown")
    status_emoji = {"success": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")

    print(f"\n{'='*60}")
    print(f"📄 Run Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"🏷️  Artifact:  {data.get('artifact', 'N/A')}")
    print(f"⏰ Started:   {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:     {data.get('end_time', 'N/A')}")
    print(f"{status_emoji} Status:    {status} (exit {data.get('exit_code')})")
    print(f"{'='*60}\n")

    for stage in data.get("stages", []):
        line = f"[{stage['status']:<8}] {stage['name']}"
        if stage.get("error"):
            line += f" - {stage['error_kind']}: {stage['error']}"
        print(line)

    fleet = data.get("fleet") or {}
    if fleet.get("targets"):
        print("\nTargets:")
        for target in fleet["targets"]:
            kind = f" ({target['error_kind']})" if target.get("error_kind") else ""
            print(f"  {target['address']}: {target['state']}{kind}")
            if target.get("actions"):
                print(f"    actions: {', '.join(target['actions'])}")


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.command == "deploy":
            return handle_deploy_command(config, args)
        if args.command == "validate":
            return handle_validate_command(config)
        if args.command == "logs":
            return handle_logs_command(config, args)
    except (ConfigError, FileNotFoundError) as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    parser.print_help()
    return 1
