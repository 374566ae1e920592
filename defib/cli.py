"""
defib command line

Usage:
  defib container --health <url> --compose-dir <path> [options]
  defib processes [--safe-to-kill PATTERN ...] [--ignore PATTERN ...]
  defib system [--swap-threshold PCT] [--swap-kill PATTERN ...]
  defib all --config defib.config.json
  defib dismiss <pid>

Exit status is 0 when the check completed (whether or not issues were
found) and 1 on a fatal error.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from defib import __version__
from defib.config import DefibConfig, load_config
from defib.errors import DefibError
from defib.watchdog import TARGETS, RunReport, Watchdog

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="defib",
        description="defib - Container & Host Defibrillator. Monitors container health, "
                    "runaway processes and memory pressure, and applies policy-gated fixes.",
    )
    parser.add_argument("--version", action="version", version=f"defib {__version__}")
    parser.add_argument("-c", "--config", help="Load config from JSON file")
    parser.add_argument("--state-file", help="State file path (absolute)")
    parser.add_argument("-w", "--webhook", help="Discord/Slack webhook for notifications")
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    container = sub.add_parser("container", help="Check container health and restart if needed")
    _add_container_args(container)

    processes = sub.add_parser("processes", help="Check for runaway and memory-hog processes")
    _add_process_args(processes)

    system = sub.add_parser("system", help="Check swap pressure and stuck processes")
    _add_system_args(system)

    everything = sub.add_parser("all", help="Run every configured monitor")
    _add_container_args(everything)
    _add_process_args(everything)
    _add_system_args(everything)

    dismiss = sub.add_parser("dismiss", help="Suppress alerts for a PID")
    dismiss.add_argument("pid", help="Process ID to dismiss")

    return parser


def _add_container_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("container")
    group.add_argument("--health", help="Health endpoint URL")
    group.add_argument("-d", "--compose-dir", help="Directory with docker-compose.yml")
    group.add_argument("-s", "--service", help="Specific service to restart")
    group.add_argument("-t", "--timeout", type=float, help="Health check timeout in seconds (default: 10)")
    group.add_argument("--max-response", type=float, help="Max acceptable response time in seconds (default: 15)")
    group.add_argument("-b", "--backoff", type=float, help="Minutes between restart attempts (default: 10)")
    group.add_argument("--runtime", choices=["docker", "podman"], help="Container runtime (default: auto-detect)")


def _add_process_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("processes")
    group.add_argument("--cpu-threshold", type=float, help="CPU %% considered high (default: 90)")
    group.add_argument("--memory-threshold", type=float, help="Memory MB considered high (default: 4096)")
    group.add_argument("--max-runtime", type=float, help="Hours at high CPU before flagging (default: 2)")
    group.add_argument("--safe-to-kill", action="append", help="Pattern safe to auto-kill (repeatable)")
    group.add_argument("--ignore", action="append", help="Pattern to ignore (repeatable)")


def _add_system_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("system")
    group.add_argument("--swap-threshold", type=float, help="Swap %% to alert (default: 80)")
    group.add_argument("--no-dstate", action="store_true", help="Skip D-state process check")
    group.add_argument("--swap-kill", action="append", help="Pattern to kill when swap is critical (repeatable)")
    group.add_argument("--swap-restart-dir", help="Compose directory to restart when swap is critical")
    group.add_argument("--swap-restart-service", help="Compose service to restart when swap is critical")


# argparse dest -> config path (document keys)
CLI_OPTIONS = {
    "state_file": ("stateFile",),
    "webhook": ("webhookUrl",),
    "log_level": ("logLevel",),
    "log_file": ("logFile",),
    "health": ("container", "healthUrl"),
    "compose_dir": ("container", "composeDir"),
    "service": ("container", "serviceName"),
    "timeout": ("container", "timeoutSeconds"),
    "max_response": ("container", "maxResponseSeconds"),
    "backoff": ("container", "backoffMinutes"),
    "runtime": ("container", "containerRuntime"),
    "cpu_threshold": ("processes", "cpuThreshold"),
    "memory_threshold": ("processes", "memoryThresholdMB"),
    "max_runtime": ("processes", "maxRuntimeHours"),
    "safe_to_kill": ("processes", "safeToKillPatterns"),
    "ignore": ("processes", "ignorePatterns"),
    "swap_threshold": ("system", "swapThreshold"),
    "swap_kill": ("system", "swapKillPatterns"),
    "swap_restart_dir": ("system", "swapRestartCompose", "composeDir"),
    "swap_restart_service": ("system", "swapRestartCompose", "serviceName"),
}


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Turn parsed arguments into a nested config layer"""
    layer: Dict[str, Any] = {}
    for dest, path in CLI_OPTIONS.items():
        value = getattr(args, dest, None)
        if value is None:
            continue
        current = layer
        for part in path[:-1]:
            current = current.setdefault(part, {})
        current[path[-1]] = value
    if getattr(args, "no_dstate", False):
        layer.setdefault("system", {})["checkDState"] = False
    return layer


def resolve_targets(command: str, config: DefibConfig) -> List[str]:
    if command == "all":
        return [t for t in TARGETS if t != "container" or config.container is not None]
    return [command]


def print_report(command: str, report: RunReport, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
        return

    print("\n" + "=" * 60)
    print(f"defib {command}: {len(report.issues)} issue(s), {report.critical_count} critical")
    for issue in report.issues:
        marker = "✗" if issue.severity.value == "critical" else "!"
        print(f"  {marker} [{issue.type.value}] {issue.message}")
    for target, error in report.errors.items():
        print(f"  ⚠️  {target} check failed: {error}")
    print("=" * 60)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, cli_overrides(args))
        setup_logging(config.log_level, config.log_file)

        watchdog = Watchdog(config)
        if args.command == "dismiss":
            watchdog.dismiss(args.pid)
            print(f"Dismissed alerts for PID {args.pid}")
            return 0

        report = watchdog.run(resolve_targets(args.command, config))
    except DefibError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_report(args.command, report, as_json=args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
