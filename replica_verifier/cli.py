"""
Replica verifier CLI

Drives a replicated key-value store over HTTP and verifies that every
replica returns the same value for every key after a write workload.

Usage:
    # Consistency check against the default three local nodes
    replica-verifier

    # Nodes from the store's sharding file, shorter settle time
    replica-verifier --sharding-file sharding.toml --settle 5

    # Explicit nodes, poll until reads stop changing instead of sleeping
    replica-verifier --node 10.0.0.1:8080 --node 10.0.0.2:8080 --poll-settle

    # Plain load runs
    replica-verifier --scenario set-load --users 50
    replica-verifier --scenario get-load --output get.json

Exit codes:
    0    all keys verified consistent (or latency threshold met)
    1    inconsistency, unverified keys, failed reads or threshold breach
    2    no node answered any read
    130  interrupted
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog

from .config import (
    Scenario,
    VerifierConfig,
    explicit_settings,
    get_settings,
    load_nodes_from_sharding_file,
)
from .errors import ConfigError, NoReachableNodesError
from .log import configure_logging
from .metrics import MetricsServer
from .runner import ConsistencyRunner, LoadRunner

logger = structlog.get_logger()


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="replica-verifier",
        description="Replica consistency verifier for sharded key-value stores",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--scenario", "-s",
        choices=[s.value for s in Scenario],
        default=Scenario.CONSISTENCY.value,
        help="Run to perform (default: consistency)",
    )

    # Targets
    target_group = parser.add_mutually_exclusive_group()
    target_group.add_argument(
        "--node", "-n",
        action="append",
        dest="nodes",
        help="Node address host:port, repeat for every node",
    )
    target_group.add_argument(
        "--sharding-file",
        help="Read node addresses from the store's sharding TOML file",
    )

    # Workload
    parser.add_argument("--keys", type=int, help="Size of the key space")
    parser.add_argument("--values", type=int, help="Size of the value space")
    parser.add_argument("--users", "-u", type=int, help="Number of virtual users")
    parser.add_argument("--writes-per-user", type=int, help="Requests per virtual user")
    parser.add_argument("--concurrency", "-c", type=int, help="Maximum in-flight requests")
    parser.add_argument("--seed", type=int, help="Random seed for a reproducible workload")

    # Timing
    parser.add_argument("--settle", type=float, help="Seconds to wait before reading back")
    parser.add_argument(
        "--poll-settle",
        action="store_true",
        help="Poll until reads stop changing, --settle becomes the upper bound",
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--threshold-ms", type=float, help="p95 latency threshold for load runs")

    parser.add_argument(
        "--error-policy",
        choices=["compare", "exclude"],
        default="compare",
        help="Compare store-reported errors as values or leave them out (default: compare)",
    )

    # Output
    parser.add_argument("--output", "-o", help="Write the JSON report to this file")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")

    # Verbosity
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")

    return parser.parse_args(argv)


def create_config_from_args(args) -> VerifierConfig:
    """Start from the scenario, then apply environment settings and explicit arguments."""
    settings = get_settings()
    scenario = Scenario(args.scenario)
    config = VerifierConfig.from_scenario(scenario, **explicit_settings(settings))

    if args.sharding_file or settings.sharding_file:
        config.nodes = load_nodes_from_sharding_file(args.sharding_file or settings.sharding_file)
    if args.nodes:
        config.nodes = args.nodes

    if args.keys is not None:
        config.key_count = args.keys
    if args.values is not None:
        config.value_space_size = args.values
    if args.users is not None:
        config.virtual_users = args.users
    if args.writes_per_user is not None:
        config.writes_per_user = args.writes_per_user
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.settle is not None:
        config.settle_seconds = args.settle
    if args.timeout is not None:
        config.request_timeout = args.timeout
    if args.threshold_ms is not None:
        config.latency_threshold_ms = args.threshold_ms

    config.poll_settle = args.poll_settle
    config.error_policy = args.error_policy
    config.seed = args.seed
    config.output_file = args.output
    return config


async def run(config: VerifierConfig) -> int:
    if config.scenario is Scenario.CONSISTENCY:
        report = await ConsistencyRunner(config, install_signal_handlers=True).run()
        report.print_summary()
        if config.output_file:
            report.save(config.output_file)
        if report.cancelled:
            return 130
        return 0 if report.passed else 1

    runner = LoadRunner(config, install_signal_handlers=True)
    collector = await runner.run()
    report = collector.generate_report()
    print(json.dumps(report, indent=2))
    if config.output_file:
        with open(config.output_file, "w") as f:
            json.dump({"config": config.to_dict(), **report}, f, indent=2)

    if runner.interrupted:
        return 130
    if not runner.threshold_passed():
        print(f"\nWarning: p95 latency above {config.latency_threshold_ms:.0f}ms")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()

    if args.debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    else:
        level = settings.log_level
    configure_logging(level, json=args.json_logs or settings.json_logs)

    try:
        config = create_config_from_args(args)
        config.validate()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    metrics_port = args.metrics_port if args.metrics_port is not None else settings.metrics_port
    if metrics_port:
        MetricsServer(metrics_port).start()

    try:
        return asyncio.run(run(config))

    except NoReachableNodesError as e:
        logger.error("No store node reachable", nodes=config.nodes)
        print(f"\nError: {e}")
        return 2

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
