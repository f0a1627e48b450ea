#!/usr/bin/env python3
"""
WATCHTOWER CLI
==============

Operational commands for the breach monitor and workflow poller.

Usage:
    watchtower sweep               # Run one breach monitoring sweep now
    watchtower enqueue             # Queue a sweep on the arq worker
    watchtower init-db             # Create database tables
    watchtower poll <workorderid>  # Check one work order
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment before importing modules that read settings
load_dotenv(Path.cwd() / ".env")

from watchtower.errors import ConfigurationError  # noqa: E402
from watchtower.logging_config import configure_logging  # noqa: E402


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="watchtower",
        description="Watchtower - breach monitoring and workflow reconciliation",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("sweep", help="Run one breach monitoring sweep")
    subparsers.add_parser("enqueue", help="Queue a sweep on the arq worker")
    subparsers.add_parser("init-db", help="Create database tables")

    poll_parser = subparsers.add_parser("poll", help="Check the status of one work order")
    poll_parser.add_argument("workorderid", help="Work order id returned at submission")

    return parser


async def run_sweep_command() -> int:
    from watchtower.services.breach_monitor import run_sweep

    try:
        result = await run_sweep()
    except ConfigurationError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 2

    print(json.dumps({"success": True, **result.to_dict()}, indent=2))
    return 0


async def run_enqueue_command() -> int:
    from watchtower.worker import enqueue_sweep

    job_id = await enqueue_sweep()
    print(job_id)
    return 0


async def run_init_db_command() -> int:
    from watchtower.db.database import close_db, init_db

    await init_db()
    await close_db()
    print("[+] Database tables created")
    return 0


async def run_poll_command(workorderid: str) -> int:
    from watchtower.services.workflow import WorkflowClient

    client = WorkflowClient()
    try:
        client.ensure_configured()
    except ConfigurationError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 2

    result = await client.check_status(workorderid)
    print(json.dumps(result.to_dict(workorderid), indent=2, default=str))
    return 0 if result.status != "error" else 1


async def run(args) -> int:
    if args.command == "sweep":
        return await run_sweep_command()
    if args.command == "enqueue":
        return await run_enqueue_command()
    if args.command == "init-db":
        return await run_init_db_command()
    if args.command == "poll":
        return await run_poll_command(args.workorderid)
    return 1


def main():
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n[!] Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
