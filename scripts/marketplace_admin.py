#!/usr/bin/env python3
"""
Command-line administration for the marketplace database.

Subcommands:
  init-db                      create tables
  seed                         load demo users, tariffs and orders
  pending <user_id>            list attribute snapshots awaiting review
  approve <user_id> <snap_id>  approve a snapshot (admin id via --actor)
  quota <buyer_id>             show the buyer's current billing window usage
"""

import argparse
import json
import sys
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from portmarket.core.approval import ApprovalService
from portmarket.core.config import get_db_path, validate_config
from portmarket.core.db import init_db
from portmarket.core.errors import MarketplaceError
from portmarket.core.quota import quota_usage
from portmarket.core.seed import seed_demo_data


def _print(data, as_json: bool):
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return
    if isinstance(data, list):
        for row in data:
            print("  " + ", ".join(f"{k}={v}" for k, v in row.items()))
        if not data:
            print("  (none)")
    else:
        for key, value in data.items():
            print(f"{key}: {value}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Marketplace database administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db
  %(prog)s seed
  %(prog)s pending 1 --actor 3
  %(prog)s approve 1 2 --actor 3
  %(prog)s quota 1 --json

Environment variables:
- DB_PATH=./data/marketplace.db (database location)
- QUOTA_USE_TARIFF_BILLING_PERIOD=false (use tariff billing periods)
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("seed", help="Load demo data into an empty database")

    pending = subparsers.add_parser("pending", help="List pending attribute snapshots")
    pending.add_argument("user_id", type=int)
    pending.add_argument("--actor", type=int, required=True, help="Admin user id")

    approve = subparsers.add_parser("approve", help="Approve an attribute snapshot")
    approve.add_argument("user_id", type=int)
    approve.add_argument("snapshot_id", type=int)
    approve.add_argument("--actor", type=int, required=True, help="Admin user id")

    usage = subparsers.add_parser("quota", help="Show current quota usage for a buyer")
    usage.add_argument("buyer_id", type=int)

    args = parser.parse_args(argv)

    for issue in validate_config():
        print(f"warning: {issue}", file=sys.stderr)

    try:
        if args.command == "init-db":
            init_db()
            _print({"initialized": get_db_path()}, args.json)
        elif args.command == "seed":
            _print(seed_demo_data(), args.json)
        elif args.command == "pending":
            init_db()
            _print(ApprovalService(actor_id=args.actor).list_pending(args.user_id), args.json)
        elif args.command == "approve":
            init_db()
            result = ApprovalService(actor_id=args.actor).approve(args.user_id, args.snapshot_id)
            _print(result.to_dict(), args.json)
        elif args.command == "quota":
            init_db()
            _print(quota_usage(args.buyer_id).to_dict(), args.json)
    except MarketplaceError as e:
        print(f"{e.code}: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
