#!/usr/bin/env python3
# ============================================================================
# KUBEHIVE - COMMAND LINE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Entry point - apply / delete commands
# PURPOSE: Parse arguments, build the driver and run a command
# ============================================================================
"""
kubehive command line.

Usage:
    # Deploy every alveolus visible in the resource roots
    python main.py apply

    # Deploy one alveolus of a manifest, against a local kubectl proxy
    python main.py apply --manifest deploy/kubehive/manifest.json --alveolus app

    # Deploy from an archive, with properties
    python main.py apply --from com.company:app:1.0.0 --alveolus com.company:app:1.0.0 -D replicas=3

    # Print what would be applied without touching the cluster
    python main.py apply --dry-run

    # Delete
    python main.py delete --alveolus app --grace-period 0

Environment:
    KUBEHIVE_KUBE_API, KUBEHIVE_KUBE_TOKEN, KUBEHIVE_KUBE_NAMESPACE,
    KUBEHIVE_RESOURCE_ROOTS, LOG_LEVEL, LOG_FORMAT=json
"""

import argparse
import asyncio
import os
import sys
from typing import Dict, List, Optional

from __version__ import __version__
from core.errors import AggregateDeploymentError, DeploymentError
from core.logging import configure_logging, get_logger
from infrastructure.kube_client import HttpKubeClient
from orchestrator.driver import NONE, DeploymentResult, create_driver
from orchestrator.resolver import AUTO, SKIP

logger = get_logger(__name__)


def parse_properties(values: Optional[List[str]]) -> Dict[str, str]:
    """-D key=value pairs (a bare key means an empty value)."""
    properties = {}
    for value in values or []:
        key, _, prop = value.partition("=")
        properties[key.strip()] = prop
    return properties


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubehive",
        description="Deploy alveoli (sets of Kubernetes descriptors) and their dependencies",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_ in (("apply", "Apply alveoli to the cluster"), ("delete", "Delete alveoli from the cluster")):
        command = commands.add_parser(name, help=help_)
        command.add_argument("--from", dest="from_", default=AUTO,
                             help="Archive location (path or group:artifact:version), default: auto")
        command.add_argument("--manifest", default=SKIP,
                             help="Manifest path or inline JSON, default: skip")
        command.add_argument("--alveolus", default=AUTO,
                             help="Alveolus name, default: auto (every visible alveolus)")
        command.add_argument("--excluded-locations", default=NONE,
                             help="Comma separated locations to ignore, default: none")
        command.add_argument("--excluded-descriptors", default=NONE,
                             help="Comma separated descriptor names to ignore, default: none")
        command.add_argument("--timeout", type=float, default=None,
                             help="Await timeout per descriptor in seconds")
        command.add_argument("--dry-run", action="store_true",
                             help="Do not send anything to the cluster")
        command.add_argument("-D", dest="properties", action="append", metavar="KEY=VALUE",
                             help="Property (placeholders and SYSTEM_PROPERTY conditions)")

        if name == "apply":
            command.add_argument("--no-timestamp", dest="inject_timestamp", action="store_false",
                                 help="Do not add the kubehive.timestamp label")
            command.add_argument("--no-metadata", dest="inject_metadata", action="store_false",
                                 help="Do not add the kubehive.root.alveolus.* labels")
        else:
            command.add_argument("--grace-period", type=int, default=None,
                                 help="Deletion grace period in seconds")

    return parser


async def run(args: argparse.Namespace) -> DeploymentResult:
    async with HttpKubeClient(dry_run=True if args.dry_run else None) as kube:
        driver = create_driver(kube, properties=parse_properties(args.properties))
        common = dict(
            from_=args.from_,
            manifest=args.manifest,
            alveolus=args.alveolus,
            excluded_locations=args.excluded_locations,
            excluded_descriptors=args.excluded_descriptors,
            timeout_seconds=args.timeout,
        )
        if args.command == "apply":
            return await driver.apply(
                inject_timestamp=args.inject_timestamp,
                inject_metadata=args.inject_metadata,
                **common,
            )
        return await driver.delete(grace_period_seconds=args.grace_period, **common)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

    try:
        result = asyncio.run(run(args))
    except AggregateDeploymentError as e:
        for error in e.flatten():
            logger.error(f"{type(error).__name__}: {error}")
        return 1
    except DeploymentError as e:
        logger.error(str(e))
        return 1

    for name in result.descriptor_names:
        print(f"{args.command}: {name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
