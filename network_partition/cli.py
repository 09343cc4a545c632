"""
Network Partition - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the network partition injector.

- Provides argparse-based CLI
- Loads settings from environment, YAML and flags
- Wires SIGINT/SIGTERM to the cancellation event
- Maps the run outcome to an exit status

============================================================
USAGE
============================================================
network-partition partition -s order-payment-service -t postgres -d 30
network-partition partition -s api-gateway -H 10.0.0.12 -p 5432 --drop-percent 50
network-partition partition -s product-service --bidirectional --dry-run

============================================================
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Callable, Dict, List, Optional

from .config import PartitionSettings
from .exceptions import ConfigurationError, ResolutionError
from .executor import KubectlExecutor
from .logs import setup_logging
from .models import DEFAULT_DROP_PERCENT, DEFAULT_DURATION_SECONDS, DEFAULT_NAMESPACE, PartitionSpec
from .orchestrator import PartitionOrchestrator
from .reporter import EXIT_PREFLIGHT, summarize
from .resolver import KubectlPodLister, TargetResolver


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="network-partition",
        description="Inject network partitions between Kubernetes services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s partition -s order-payment-service -t postgres -d 30
  %(prog)s partition -s api-gateway -H 10.0.0.12 -p 5432 --drop-percent 50
  %(prog)s partition -s product-service --bidirectional --dry-run
        """
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    partition = subparsers.add_parser(
        "partition",
        help="Partition traffic of a service's pods",
        description="Drop traffic from every running pod of a source service",
    )

    # --------------------------------------------------------
    # Target Selection
    # --------------------------------------------------------
    target_group = partition.add_argument_group("Target Options")

    target_group.add_argument(
        "--source-service", "-s",
        type=str,
        required=True,
        help="Service whose pods get the partition",
    )

    target_group.add_argument(
        "--target-service", "-t",
        type=str,
        help="Service to cut off (mutually exclusive with --target-host)",
    )

    target_group.add_argument(
        "--target-host", "-H",
        type=str,
        help="Host or IP to cut off (mutually exclusive with --target-service)",
    )

    target_group.add_argument(
        "--target-port", "-p",
        type=int,
        metavar="PORT",
        help="Only drop TCP traffic to this port",
    )

    target_group.add_argument(
        "--namespace", "-n",
        type=str,
        default=DEFAULT_NAMESPACE,
        help=f"Kubernetes namespace (default: {DEFAULT_NAMESPACE})",
    )

    # --------------------------------------------------------
    # Fault Options
    # --------------------------------------------------------
    fault_group = partition.add_argument_group("Fault Options")

    fault_group.add_argument(
        "--duration", "-d",
        type=float,
        default=DEFAULT_DURATION_SECONDS,
        metavar="SECONDS",
        help=f"How long the partition stays in place (default: {DEFAULT_DURATION_SECONDS})",
    )

    fault_group.add_argument(
        "--drop-percent",
        type=int,
        default=DEFAULT_DROP_PERCENT,
        metavar="1-100",
        help=f"Percentage of packets to drop (default: {DEFAULT_DROP_PERCENT})",
    )

    fault_group.add_argument(
        "--bidirectional",
        action="store_true",
        help="Also drop inbound traffic from the target",
    )

    fault_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the commands without running them",
    )

    # --------------------------------------------------------
    # Run Options
    # --------------------------------------------------------
    run_group = partition.add_argument_group("Run Options")

    run_group.add_argument(
        "--max-parallel",
        type=int,
        metavar="N",
        help="Pods processed concurrently (default: 1)",
    )

    run_group.add_argument(
        "--monitor-interval",
        type=float,
        metavar="SECONDS",
        help="Seconds between drop-counter polls (default: 10)",
    )

    run_group.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="YAML settings file",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = partition.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Logging format (default: text)",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Args:
        args: Parsed arguments

    Returns:
        List of validation errors
    """
    errors = []

    if args.target_service and args.target_host:
        errors.append("--target-service and --target-host are mutually exclusive")

    if not 1 <= args.drop_percent <= 100:
        errors.append("--drop-percent must be between 1 and 100")

    if args.duration < 0:
        errors.append("--duration must not be negative")

    if args.target_port is not None and not 1 <= args.target_port <= 65535:
        errors.append("--target-port must be between 1 and 65535")

    if args.max_parallel is not None and args.max_parallel < 1:
        errors.append("--max-parallel must be at least 1")

    if args.monitor_interval is not None and args.monitor_interval <= 0:
        errors.append("--monitor-interval must be positive")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDERS
# ============================================================

def build_spec(args: argparse.Namespace) -> PartitionSpec:
    """Build the partition spec from CLI arguments."""
    return PartitionSpec.create(
        source_service=args.source_service,
        target_service=args.target_service,
        target_host=args.target_host,
        target_port=args.target_port,
        drop_percent=args.drop_percent,
        duration_seconds=args.duration,
        bidirectional=args.bidirectional,
        dry_run=args.dry_run,
        namespace=args.namespace,
    )


def build_settings(args: argparse.Namespace) -> PartitionSettings:
    """
    Build run settings.

    Precedence: flags, then YAML file, then environment, then defaults.
    """
    settings = PartitionSettings.from_env()

    if args.config:
        settings = PartitionSettings.from_yaml(args.config, base=settings)

    if args.max_parallel is not None:
        settings.max_parallel = args.max_parallel
    if args.monitor_interval is not None:
        settings.monitor_interval_seconds = args.monitor_interval

    return settings.ensure_valid()


def print_banner(args: argparse.Namespace) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  CHAOS - NETWORK PARTITION")
    print("=" * 60)
    print(f"  Namespace:  {args.namespace}")
    print(f"  Source:     {args.source_service}")
    print(f"  Target:     {args.target_service or args.target_host or 'all'}")
    print(f"  Drop:       {args.drop_percent}%")
    print(f"  Duration:   {args.duration:g}s")
    print(f"  Dry Run:    {args.dry_run}")
    print("=" * 60)
    print()


# ============================================================
# SIGNAL HANDLING
# ============================================================

def install_signal_handlers(cancel: asyncio.Event) -> Callable[[], None]:
    """
    Route SIGINT/SIGTERM to ``cancel``.

    Returns:
        Callable that puts the previous handlers back
    """
    loop = asyncio.get_running_loop()

    def _request_cancel(signame: str) -> None:
        if cancel.is_set():
            logger.warning(f"Received {signame} again - restoration already in progress")
            return
        logger.warning(f"Received {signame} - cancelling partition")
        cancel.set()

    if sys.platform == "win32":
        previous: Dict[int, Any] = {signal.SIGINT: signal.getsignal(signal.SIGINT)}

        def _handler(signum: int, frame: Any) -> None:
            loop.call_soon_threadsafe(_request_cancel, signal.Signals(signum).name)

        signal.signal(signal.SIGINT, _handler)

        def _restore() -> None:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        return _restore

    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, _request_cancel, sig.name)

    def _restore() -> None:
        for sig in signals:
            loop.remove_signal_handler(sig)

    return _restore


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(spec: PartitionSpec, settings: PartitionSettings) -> int:
    """
    Async main entry point.

    Args:
        spec: Validated partition spec
        settings: Validated run settings

    Returns:
        Exit code
    """
    cancel = asyncio.Event()
    restore_handlers = install_signal_handlers(cancel)

    try:
        resolver = TargetResolver(
            pod_lister=KubectlPodLister(settings.kubectl, settings.exec_timeout_seconds),
            service_map=settings.service_map(spec.namespace),
            default_probe_host=settings.default_probe_host,
            default_probe_port=settings.default_probe_port,
            lookup_timeout=settings.probe_timeout_seconds,
        )
        orchestrator = PartitionOrchestrator(
            spec=spec,
            resolver=resolver,
            executor=KubectlExecutor(spec.namespace, settings.kubectl),
            settings=settings,
        )

        try:
            results = await orchestrator.run(cancel)
        except ResolutionError as e:
            logger.error(e.message)
            return EXIT_PREFLIGHT

    finally:
        restore_handlers()

    text, code = summarize(results, spec, settings.kubectl)
    print(text)
    return code


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_PREFLIGHT

    setup_logging(args.log_level, args.log_format)

    try:
        spec = build_spec(args)
        settings = build_settings(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PREFLIGHT

    print_banner(args)

    return asyncio.run(async_main(spec, settings))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
