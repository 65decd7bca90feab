"""Treasury CLI — command-line interface for the balance share ledgers.

Usage:
    python -m dao_treasury.cli status
    python -m dao_treasury.cli add-share --stream deposits --account 0x... --bps 2500
    python -m dao_treasury.cli revenue --stream deposits --amount 100000
    python -m dao_treasury.cli preview --stream deposits --account 0x...
    python -m dao_treasury.cli withdraw --stream deposits --account 0x...
    python -m dao_treasury.cli remove-share --stream deposits --account 0x...
    python -m dao_treasury.cli check-invariants

Environment (also read from a .env file):
    TREASURY_CONFIG_DIR, TREASURY_DATA_DIR, TREASURY_OWNER, TREASURY_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from dao_treasury.config import TreasuryConfig
from dao_treasury.models.shares import AccountShareEntry
from dao_treasury.persistence.event_log import EventLog
from dao_treasury.persistence.state_store import StateStore
from dao_treasury.service import ServiceResult, TreasuryService


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(args: argparse.Namespace) -> TreasuryService:
    """Create a TreasuryService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    config = TreasuryConfig.from_config_dir(args.config).with_env_overrides()
    return TreasuryService(
        config,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_add_share(args: argparse.Namespace) -> int:
    service = _make_service(args)
    now = int(datetime.now(timezone.utc).timestamp())
    removable_at = args.removable_at
    if removable_at is None:
        removable_at = now + service.config.default_removable_after_seconds
    entry = AccountShareEntry(
        identity=args.account,
        bps=args.bps,
        removable_at=removable_at,
        approvals=tuple(args.approve or ()),
    )
    caller = args.caller or service.config.owner
    return _report(service.add_account_shares(args.stream, caller, [entry], now))


def cmd_remove_share(args: argparse.Namespace) -> int:
    service = _make_service(args)
    caller = args.caller or service.config.owner
    return _report(service.remove_account_shares(args.stream, caller, [args.account]))


def cmd_revenue(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.record_revenue(args.stream, args.amount))


def cmd_allocate(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.allocate_to_shares(args.stream, args.amount))


def cmd_withdraw(args: argparse.Namespace) -> int:
    service = _make_service(args)
    caller = args.caller or args.account
    return _report(service.withdraw(args.stream, caller, args.account))


def cmd_preview(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.preview_balance(args.stream, args.account, args.pending))


def cmd_approve(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.approve_for_withdrawal(args.stream, args.account, args.approved))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run ledger invariant checks over persisted state."""
    service = _make_service(args)
    errors = service.check_invariants()
    if errors:
        for error in errors:
            print(f"FAIL: {error}", file=sys.stderr)
        return 1
    print("All ledger invariants hold.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dao-treasury",
        description="DAO treasury — balance share ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("TREASURY_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.getenv("TREASURY_DATA_DIR", DEFAULT_DATA)),
        help="Path to data directory (default: data/)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("TREASURY_LOG_LEVEL", "WARNING"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show treasury and stream status")

    # add-share
    p_add = sub.add_parser("add-share", help="Add an account share to a stream")
    p_add.add_argument("--stream", required=True, help="Stream ID")
    p_add.add_argument("--account", required=True, help="Recipient address")
    p_add.add_argument("--bps", required=True, type=int, help="Claim in basis points")
    p_add.add_argument(
        "--removable-at", type=int,
        help="Unix time before which only the account can remove itself",
    )
    p_add.add_argument(
        "--approve", action="append",
        help="Address approved to trigger withdrawals (repeatable)",
    )
    p_add.add_argument("--caller", help="Acting identity (default: owner)")

    # remove-share
    p_rm = sub.add_parser("remove-share", help="Remove an account share")
    p_rm.add_argument("--stream", required=True, help="Stream ID")
    p_rm.add_argument("--account", required=True, help="Recipient address")
    p_rm.add_argument("--caller", help="Acting identity (default: owner)")

    # revenue
    p_rev = sub.add_parser("revenue", help="Record revenue into a stream")
    p_rev.add_argument("--stream", required=True, help="Stream ID")
    p_rev.add_argument("--amount", required=True, type=int, help="Amount in base units")

    # allocate
    p_alloc = sub.add_parser("allocate", help="Allocate treasury funds directly to shares")
    p_alloc.add_argument("--stream", required=True, help="Stream ID")
    p_alloc.add_argument("--amount", required=True, type=int, help="Amount in base units")

    # withdraw
    p_wd = sub.add_parser("withdraw", help="Settle and pay an account")
    p_wd.add_argument("--stream", required=True, help="Stream ID")
    p_wd.add_argument("--account", required=True, help="Recipient address")
    p_wd.add_argument("--caller", help="Acting identity (default: the account)")

    # preview
    p_prev = sub.add_parser("preview", help="Preview an account's withdrawable balance")
    p_prev.add_argument("--stream", required=True, help="Stream ID")
    p_prev.add_argument("--account", required=True, help="Recipient address")
    p_prev.add_argument(
        "--pending", type=int, default=0,
        help="Hypothetical revenue not yet recorded",
    )

    # approve
    p_appr = sub.add_parser("approve", help="Approve callers to trigger an account's withdrawals")
    p_appr.add_argument("--stream", required=True, help="Stream ID")
    p_appr.add_argument("--account", required=True, help="Approving account")
    p_appr.add_argument("approved", nargs="+", help="Approved addresses")

    # check-invariants
    sub.add_parser("check-invariants", help="Run ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "add-share": cmd_add_share,
        "remove-share": cmd_remove_share,
        "revenue": cmd_revenue,
        "allocate": cmd_allocate,
        "withdraw": cmd_withdraw,
        "preview": cmd_preview,
        "approve": cmd_approve,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
