#!/usr/bin/env python3
"""
HOMEBASE CLI
=============

Operator commands for the HOMEBASE backend.

Usage:
    homebase serve
    homebase sweep [--window-minutes 60]
    homebase behavior <member_id> [--window-hours 24]
    homebase export <member_id> [--output export.json]
    homebase anonymize <member_id> --yes
    homebase seed
    homebase set-role <group_id> <member_id> <role>
"""

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from uuid import UUID

from homebase.db.database import async_session, close_db, init_db
from homebase.logging_config import configure_logging
from homebase.services.gdpr import GdprService
from homebase.services.members import MemberService
from homebase.services.security_monitor import get_monitoring_policy
from homebase.services.threat_detection import BehaviorAnalyzer, ThreatDetector


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="homebase",
        description="HOMEBASE - household task management backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
    serve       - Run the API server
    sweep       - Run the threat detection sweeps once
    behavior    - Analyze one member's recent behavior
    export      - Export a member's personal data (GDPR access request)
    anonymize   - Irreversibly anonymize a member (GDPR erasure)
    seed        - Create tables and seed roles and permissions
    set-role    - Assign a role in a group, platform roles included
        """
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the API server")

    sweep_parser = subparsers.add_parser("sweep", help="Run threat detection sweeps")
    sweep_parser.add_argument("--window-minutes", type=int, default=60,
                              help="Trailing window in minutes (default: 60)")

    behavior_parser = subparsers.add_parser("behavior", help="Analyze member behavior")
    behavior_parser.add_argument("member_id", type=UUID)
    behavior_parser.add_argument("--window-hours", type=int, default=24,
                                 help="Recent activity window in hours (default: 24)")

    export_parser = subparsers.add_parser("export", help="Export a member's data")
    export_parser.add_argument("member_id", type=UUID)
    export_parser.add_argument("--output", "-o", help="Write JSON to this file instead of stdout")

    anonymize_parser = subparsers.add_parser("anonymize", help="Anonymize a member")
    anonymize_parser.add_argument("member_id", type=UUID)
    anonymize_parser.add_argument("--yes", action="store_true", help="Confirm the irreversible operation")

    subparsers.add_parser("seed", help="Create tables and seed roles")

    role_parser = subparsers.add_parser("set-role", help="Assign a role in a group")
    role_parser.add_argument("group_id", type=UUID)
    role_parser.add_argument("member_id", type=UUID)
    role_parser.add_argument("role")

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_sweep(args) -> int:
    async with async_session() as db:
        alerts = await ThreatDetector(db, get_monitoring_policy()).detect(
            window=timedelta(minutes=args.window_minutes)
        )
    _print_json([alert.to_dict() for alert in alerts])
    return 0


async def run_behavior(args) -> int:
    async with async_session() as db:
        report = await BehaviorAnalyzer(db, get_monitoring_policy()).analyze(
            args.member_id, window=timedelta(hours=args.window_hours)
        )
    _print_json({
        "member_id": report.member_id,
        "risk_score": report.risk_score,
        "anomalies": report.anomalies,
        "recent_activity_count": report.recent_activity_count,
        "baseline": {
            "typical_hours": report.baseline.typical_hours,
            "typical_days": report.baseline.typical_days,
            "typical_ips": report.baseline.typical_ips,
            "average_daily_activity": report.baseline.average_daily_activity,
        },
    })
    return 0


async def run_export(args) -> int:
    async with async_session() as db:
        try:
            data = await GdprService(db).export_member_data(args.member_id)
        except LookupError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if args.output:
        with open(args.output, "w") as f:
            json.dump(data, f, indent=2, default=str)
        print(f"Export written to {args.output}")
    else:
        _print_json(data)
    return 0


async def run_anonymize(args) -> int:
    if not args.yes:
        print("Refusing to anonymize without --yes (this cannot be undone)", file=sys.stderr)
        return 2

    async with async_session() as db:
        try:
            summary = await GdprService(db).anonymize_member(args.member_id)
        except LookupError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    _print_json({"member_id": args.member_id, "removed": summary})
    return 0


async def run_seed(args) -> int:
    await init_db()
    print("Tables created and roles seeded")
    return 0


async def run_set_role(args) -> int:
    async with async_session() as db:
        try:
            await MemberService(db).set_role(args.group_id, args.member_id, args.role)
        except (LookupError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    print(f"Member {args.member_id} is now '{args.role}' in group {args.group_id}")
    return 0


COMMANDS = {
    "sweep": run_sweep,
    "behavior": run_behavior,
    "export": run_export,
    "anonymize": run_anonymize,
    "seed": run_seed,
    "set-role": run_set_role,
}


async def run(args) -> int:
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_db()


def main(argv=None):
    args = create_parser().parse_args(argv)
    configure_logging(stream=sys.stderr)

    if args.command == "serve":
        from homebase.api.server import main as serve
        serve()
        return

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
