"""Console entry point for the fleet rollout coordinator CLI."""

from __future__ import annotations

import argparse
import json
import os
from datetime import datetime, timezone
from typing import List

from clients import RolloutRestClient
from config import RolloutConfig
from errors import EventError
from log_utils import setup_logging
from registrar import EventRegistrar


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add store and policy options shared by every subcommand."""
    parser.add_argument(
        "--store-url",
        default=os.environ.get("STORE_URL"),
        help="Rollout store API URL (default: $STORE_URL)",
    )
    parser.add_argument(
        "--disable-updates-on-failed-rollout",
        action="store_true",
        help="Halt a group's rollout when the first updating instance fails",
    )
    parser.add_argument(
        "--reboot-completion-app",
        action="append",
        metavar="APP_ID",
        help="Application whose instances complete updates only by reboot (repeatable)",
    )
    parser.add_argument("--instance-validity-hours", type=int, default=None)
    parser.add_argument("--request-timeout", type=int, default=60)
    parser.add_argument("--max-retries", type=int, default=5)
    parser.add_argument("--verbose", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Fleet rollout coordinator: register update events and inspect rollouts"
    )
    add_common_arguments(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Register an instance event")
    register.add_argument("--instance", required=True, help="Instance ID")
    register.add_argument("--app", required=True, help="Application ID")
    register.add_argument("--group", required=True, help="Group ID or track name")
    register.add_argument("--type", type=int, required=True, dest="event_type")
    register.add_argument("--result", type=int, required=True, dest="event_result")
    register.add_argument("--previous-version", default="")
    register.add_argument("--error-code", default="")

    stats = sub.add_parser("stats", help="Show rollout stats for a group")
    stats.add_argument("--group", required=True, help="Group ID")

    last_error = sub.add_parser(
        "last-error", help="Show the latest error code reported by an instance"
    )
    last_error.add_argument("--instance", required=True, help="Instance ID")
    last_error.add_argument("--app", required=True, help="Application ID")
    last_error.add_argument(
        "--at",
        default=None,
        help="ISO-8601 timestamp (default: now)",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    if not args.store_url:
        parser.error("--store-url is required (or set STORE_URL)")

    config = RolloutConfig.from_args(args)
    setup_logging(verbose=config.verbose, log_file=config.log_file)

    store = RolloutRestClient(
        base_url=config.store_url,
        timeout_s=config.request_timeout,
        max_retries=config.max_retries,
    )
    registrar = EventRegistrar(store, config)

    if args.command == "register":
        try:
            event = registrar.register_event(
                instance_id=args.instance,
                app_id=args.app,
                group_id=args.group,
                event_type=args.event_type,
                event_result=args.event_result,
                previous_version=args.previous_version,
                error_code=args.error_code,
            )
        except EventError as e:
            print(json.dumps({"outcome": e.outcome, "message": str(e)}))
            return 0 if e.http_status == 200 else 1
        print(json.dumps({"outcome": "recorded", "event_id": event.id}))
        return 0

    if args.command == "stats":
        print(json.dumps(registrar.group_stats(args.group), indent=2))
        return 0

    at = datetime.fromisoformat(args.at) if args.at else datetime.now(timezone.utc)
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    error_code = registrar.get_event_error_code(args.instance, args.app, at)
    print(json.dumps({"instance_id": args.instance, "error_code": error_code}))
    return 0
