"""
PVECluster Command Line Interface

Creates, joins, grows and shrinks the cluster:

    pvecluster --mode create --cluster-name acidcluster
    pvecluster --mode add-others
    pvecluster --mode join --primary-ip 152.53.108.232
    pvecluster --mode remove-node --remove-node strato
    pvecluster --mode leave
    pvecluster --mode add-others --lan-tune

Exit status is 0 on success and non-zero on any guard denial, cancelled
confirmation or failed step. The cluster status is printed at the end
of every run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from pvecluster import __version__
from pvecluster.config import DEFAULT_TUNING, ClusterToolConfig, TopologyConfig
from pvecluster.exceptions import ClusterError, PartialFanoutFailure
from pvecluster.membership.orchestrator import MembershipOrchestrator
from pvecluster.membership.status import StatusReporter
from pvecluster.preflight import run_preflight
from pvecluster.types import Action, ActionReport, ActionRequest, FanoutReport

logger = structlog.get_logger(__name__)


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structured logging to stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def prompt_confirm(prompt: str) -> bool:
    """Ask a yes/no question on the terminal. Anything but y/Y is a no."""
    try:
        answer = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pvecluster",
        description="Create or join a Proxmox VE cluster and manage its membership",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--mode",
        required=True,
        choices=[a.value for a in Action],
        help="Action to perform",
    )
    parser.add_argument("--cluster-name", help="Cluster name (default from config)")
    parser.add_argument("--primary-host", help="Primary node FQDN (default from config)")
    parser.add_argument("--primary-ip", help="Primary node address (default from config)")
    parser.add_argument(
        "--remove-node", metavar="NAME|FQDN", help="Other node to remove with --mode remove-node",
    )
    wan = parser.add_mutually_exclusive_group()
    wan.add_argument("--wan-tune", dest="wan_tune", action="store_true", help="Apply WAN corosync timeouts")
    wan.add_argument("--no-wan-tune", dest="wan_tune", action="store_false", help="Skip WAN tuning (default)")
    wan.add_argument(
        "--lan-tune", action="store_true", help="Restore the stock LAN corosync timeouts",
    )
    parser.set_defaults(wan_tune=False)
    parser.add_argument("--auto-yes", action="store_true", help="Answer every confirmation with yes")
    parser.add_argument("--dry-run", action="store_true", help="Check and report, change nothing")
    parser.add_argument(
        "--allow-existing",
        action="store_true",
        help="Treat an existing membership as done instead of failing create/join",
    )
    parser.add_argument("--skip-preflight", action="store_true", help="Skip root and PVE version checks")
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    return parser


def load_config(args: argparse.Namespace) -> ClusterToolConfig:
    """Load file/env configuration and apply command line overrides."""
    config = ClusterToolConfig.from_file(args.config) if args.config else ClusterToolConfig()

    topology_overrides = {
        key: value
        for key, value in (
            ("cluster_name", args.cluster_name),
            ("primary_host", args.primary_host),
            ("primary_ip", args.primary_ip),
        )
        if value
    }
    updates = {}
    if topology_overrides:
        updates["topology"] = TopologyConfig(**{**config.topology.model_dump(), **topology_overrides})
    if args.auto_yes:
        updates["auto_confirm"] = True
    if args.dry_run:
        updates["dry_run"] = True
    if args.log_level:
        updates["log_level"] = args.log_level.upper()
    if args.log_json:
        updates["log_json"] = True

    if not updates:
        return config
    return ClusterToolConfig(**{**config.model_dump(), **updates})


def format_fanout(fanout: FanoutReport) -> List[str]:
    lines = []
    for node, result in fanout:
        detail = f" ({result.reason})" if result.reason else ""
        lines.append(f"  -> {node}: {result.kind.value}{detail}")
    return lines


def format_report(report: ActionReport) -> List[str]:
    lines = [f"Action: {report.action.value}"]
    for step, result in report.steps:
        if step.startswith("add-others:"):
            continue
        detail = f" ({result.reason})" if result.reason else ""
        lines.append(f"  {step}: {result.kind.value}{detail}")
    if report.fanout is not None:
        lines.extend(format_fanout(report.fanout))
    for tuning in report.tuning:
        lines.append(f"  tuning: {tuning.status.value} (config_version {tuning.config_version or '-'})")
    for error in report.tuning_errors:
        lines.append(f"  tuning failed: {error}")
    return lines


async def execute(
    config: ClusterToolConfig,
    request: ActionRequest,
    skip_preflight: bool = False,
) -> int:
    """Run one action and always finish with a status render."""
    orchestrator = MembershipOrchestrator.from_config(config, confirmer=prompt_confirm)
    reporter = StatusReporter(orchestrator.protocol, orchestrator.local_name)
    exit_code = 0

    try:
        if not skip_preflight:
            await run_preflight()
        report = await orchestrator.run(request)
        print("\n".join(format_report(report)))
        if not report.succeeded:
            exit_code = report.tuning_errors[0].exit_code if report.tuning_errors else 1
    except PartialFanoutFailure as e:
        if e.report is not None:
            print("\n".join(format_fanout(e.report)))
        print(f"Error: {e.message}", file=sys.stderr)
        exit_code = e.exit_code
    except ClusterError as e:
        logger.error("cli.action_failed", **e.to_dict())
        print(f"Error: {e.message}", file=sys.stderr)
        exit_code = e.exit_code
    finally:
        print()
        print(await reporter.render())

    if exit_code == 0:
        print("Done")
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode == Action.REMOVE_NODE.value and not args.remove_node:
        parser.error("--mode remove-node requires --remove-node <NAME>")

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level.value, json_output=config.log_json)

    request = ActionRequest(
        action=Action(args.mode),
        cluster_name=config.topology.cluster_name,
        primary_addr=config.topology.primary_address(),
        remove_node=args.remove_node,
        wan_tune=args.wan_tune,
        tuning=DEFAULT_TUNING if args.lan_tune else None,
        allow_existing=args.allow_existing,
    )
    return asyncio.run(execute(config, request, skip_preflight=args.skip_preflight))


if __name__ == "__main__":
    sys.exit(main())
