#!/usr/bin/env python3
"""
Zone Topology - Command Line Interface

Main entry point for the zone topology CLI.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..core.topology_manager import TopologyManager
from ..utils.validators import ConfigurationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Zone Topology - DNS zone delivery topology analysis"
    )

    parser.add_argument(
        "--config",
        "-c",
        default="configs/config.yaml",
        help="Configuration file path (default: configs/config.yaml)",
    )

    parser.add_argument("--zone", "-z", required=True, help="DNS zone to analyze")

    parser.add_argument(
        "--records",
        "-f",
        required=True,
        help="CSV file containing the zone records (id,type,name,content,ttl,priority,proxied)",
    )

    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Force a fresh resolution run instead of reusing cached results",
    )

    parser.add_argument(
        "--discover",
        action="store_true",
        help="Run service discovery probes after resolution",
    )

    parser.add_argument(
        "--offline",
        action="store_true",
        help="Skip external resolution and use in-zone data only",
    )

    parser.add_argument(
        "--output", "-o", help="File to save the topology graph and summary as JSON"
    )

    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if not Path(args.records).exists():
        print(f"Error: Records file '{args.records}' not found")
        sys.exit(1)

    try:
        manager = TopologyManager(args.config, offline=args.offline)
    except ConfigurationError as e:
        print(f"Error: Invalid configuration: {e}")
        sys.exit(1)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        success = manager.process_csv(
            args.records,
            args.zone,
            refresh=args.refresh,
            discover=args.discover,
            output_file=args.output,
        )
    except Exception as e:
        print(f"Error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)
    finally:
        manager.coordinator.shutdown()

    if success:
        print("Zone topology analysis completed successfully")
        sys.exit(0)
    print("Zone topology analysis failed")
    sys.exit(1)


if __name__ == "__main__":
    main()
