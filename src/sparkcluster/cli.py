#!/usr/bin/env python3
"""
sparkcluster command line.

Usage:
    sparkcluster                              # Auto-detect and start in foreground
    sparkcluster -n 10.0.0.1,10.0.0.2 -d      # Start in background
    sparkcluster status                       # Show container state on every node
    sparkcluster stop                         # Stop the cluster everywhere
    sparkcluster exec vllm serve my-model     # Start, run a command, stop
    sparkcluster --check-config               # Detect and verify only
"""
import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from .cluster.orchestrator import ClusterOrchestrator
from .cluster.preflight import check_worker_connectivity
from .cluster.topology import Topology, resolve_topology
from .config.loader import (
    DEFAULT_CONTAINER_NAME,
    DEFAULT_IMAGE,
    ClusterConfig,
    DiscoveryStrategy,
    LifecycleAction,
    load_config,
)
from .execution.runner import CommandRunner
from .network.discovery import discover_nodes
from .network.interfaces import InterfaceSelection, discover_interfaces, local_addresses
from .utils.exceptions import SparkClusterError
from .utils.logging import logger, setup_logging

ACTION_WORDS = {action.value for action in LifecycleAction}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sparkcluster",
        description="Launch, monitor and stop a multi-node container cluster",
    )
    parser.add_argument(
        "-n", "--nodes",
        help="Comma-separated list of node IPs (auto-detected if omitted)"
    )
    parser.add_argument(
        "-t",
        dest="image",
        help=f"Docker image name (default: {DEFAULT_IMAGE})"
    )
    parser.add_argument(
        "--name",
        help=f"Container name (default: {DEFAULT_CONTAINER_NAME})"
    )
    parser.add_argument(
        "--eth-if",
        help="Ethernet interface (auto-detected if omitted)"
    )
    parser.add_argument(
        "--ib-if",
        help="InfiniBand interface(s), comma-separated (auto-detected if omitted)"
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Check configuration and auto-detection without launching"
    )
    parser.add_argument(
        "-d",
        dest="daemon",
        action="store_true",
        help="Daemon mode (only for 'start' action)"
    )
    parser.add_argument(
        "--discovery",
        choices=[strategy.value for strategy in DiscoveryStrategy],
        help="Peer discovery strategy when --nodes is omitted (default: probe)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a YAML config file; command-line flags take precedence"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "action",
        nargs="?",
        metavar="action",
        help="start | stop | status | exec (default: start)"
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run on the head node (only for 'exec')"
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse the command line into flags, a LifecycleAction and a command.

    Flags may follow start, stop and status. Everything after exec is the
    command. A first word that is not an action starts an implicit exec.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    word = args.action
    rest = list(args.command)
    command: List[str] = []

    if word is None:
        action = LifecycleAction.START
    elif word == LifecycleAction.EXEC.value:
        action = LifecycleAction.EXEC
        command = rest
    elif word in ACTION_WORDS:
        action = LifecycleAction(word)
        if rest:
            args.action = None
            args = parser.parse_args(rest, namespace=args)
            if args.action is not None:
                parser.error(f"unexpected argument after '{word}': {args.action}")
    else:
        action = LifecycleAction.EXEC
        command = [word] + rest

    if action == LifecycleAction.EXEC and not command:
        parser.error("exec requires a command to run")

    args.action = action
    args.command = " ".join(command)
    return args


def build_config(args: argparse.Namespace) -> ClusterConfig:
    """Load the config file (or defaults) and apply command-line overrides."""
    config = load_config(args.config)
    config = config.with_overrides(
        image=args.image,
        container_name=args.name,
        nodes=args.nodes,
        eth_if=args.eth_if,
        ib_if=args.ib_if,
    )
    if args.discovery:
        discovery = config.discovery.model_copy(
            update={"strategy": DiscoveryStrategy(args.discovery)}
        )
        config = config.model_copy(update={"discovery": discovery})
    return config


def format_config_summary(
    config: ClusterConfig,
    topology: Topology,
    interfaces: InterfaceSelection
) -> str:
    return "\n".join([
        "Configuration Check Complete.",
        f"  Image Name: {config.image}",
        f"  ETH Interface: {interfaces.management_interface}",
        f"  IB Interface: {interfaces.ib_if}",
        f"  Head Node: {topology.head}",
        f"  Worker Nodes: {' '.join(topology.workers)}",
    ])


async def run(args: argparse.Namespace, config: ClusterConfig) -> int:
    """Resolve the cluster and run the requested action."""
    action: LifecycleAction = args.action
    runner = CommandRunner(config.ssh)

    needs_interfaces = (
        action in (LifecycleAction.START, LifecycleAction.EXEC)
        or args.check_config
        or not config.nodes
    )
    interfaces = None
    if needs_interfaces:
        interfaces = await discover_interfaces(runner, config.eth_if, config.ib_if)

    nodes = config.nodes
    if not nodes:
        nodes = await discover_nodes(runner, interfaces.management_interface, config.discovery)

    topology = resolve_topology(nodes, local_addresses())

    logger.info(f"Head Node: {topology.head}")
    logger.info(f"Worker Nodes: {' '.join(topology.workers)}")
    logger.info(f"Container Name: {config.container_name}")
    logger.info(f"Action: {action.value}")

    if action in (LifecycleAction.START, LifecycleAction.EXEC) or args.check_config:
        await check_worker_connectivity(runner, topology)

    if args.check_config:
        print(format_config_summary(config, topology, interfaces))
        return 0

    if args.daemon and action != LifecycleAction.START:
        logger.debug(f"Daemon mode has no effect on '{action.value}'")

    orchestrator = ClusterOrchestrator(config, topology, interfaces, runner)
    return await orchestrator.run(action, command=args.command, daemon=args.daemon)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except SparkClusterError as e:
        setup_logging(level="DEBUG" if args.verbose else "INFO")
        logger.error(f"Error: {e}")
        return 1

    setup_logging(
        level="DEBUG" if args.verbose else config.logging.level,
        log_file=Path(config.logging.file) if config.logging.file else None,
        console=config.logging.console,
    )

    try:
        return asyncio.run(run(args, config))
    except SparkClusterError as e:
        logger.error(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
