#!/usr/bin/env python3
"""Command-line interface for accounting period operations.

Usage:
    python -m commerce_ledger.accounting.cli create --commerce c1 --name "Enero 2025" --start 2025-01-01 --end 2025-01-31 --user admin
    python -m commerce_ledger.accounting.cli list --commerce c1 --status CLOSED
    python -m commerce_ledger.accounting.cli summary <period_id>
    python -m commerce_ledger.accounting.cli close <period_id> --user admin
    python -m commerce_ledger.accounting.cli reopen <period_id> --user admin --reason "Ajuste de caja"
    python -m commerce_ledger.accounting.cli lock <period_id> --user admin --reason "Auditoría"
    python -m commerce_ledger.accounting.cli refund <income_id> --amount 30 --reason customer-request
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..database import DatabaseManager
from ..exceptions import LedgerError
from .models import RefundReason, RefundType
from .period_service import AccountingPeriodService
from .refund_service import RefundService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def parse_datetime(dt_string: str) -> datetime:
    """Parse a datetime string in ISO or plain date format.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def parse_end_datetime(dt_string: str) -> datetime:
    """Parse a range end; a plain date means the end of that day."""
    end = parse_datetime(dt_string)
    if "T" not in dt_string and " " not in dt_string:
        end = end + timedelta(days=1) - timedelta(seconds=1)
    return end


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


async def _dispatch(args: argparse.Namespace, session) -> Any:
    periods = AccountingPeriodService(session)

    if args.command == "create":
        period = await periods.create_period(
            commerce_id=args.commerce,
            name=args.name,
            start_date=parse_datetime(args.start),
            end_date=parse_end_datetime(args.end),
            created_by=args.user,
            notes=args.notes,
        )
        return period.to_dict()

    if args.command == "list":
        result = await periods.list_periods(
            args.commerce,
            search_text=args.search,
            status=args.status,
            year=args.year,
        )
        return [p.to_dict() for p in result]

    if args.command == "summary":
        totals = await periods.get_period_summary(args.period_id)
        return totals.to_snapshot()

    if args.command == "close":
        period = await periods.close_period(args.period_id, args.user, notes=args.notes)
        return period.to_dict()

    if args.command == "reopen":
        period = await periods.reopen_period(args.period_id, args.user, args.reason)
        return period.to_dict()

    if args.command == "lock":
        period = await periods.lock_period(args.period_id, args.user, args.reason)
        return period.to_dict()

    if args.command == "refund":
        result = await RefundService(session).process_refund(
            original_transaction_id=args.transaction_id,
            amount=args.amount,
            reason=args.reason,
            refund_type=args.type,
            description=args.description,
            commerce_id=args.commerce,
        )
        return result.model_dump(mode="json")

    raise ValueError(f"Unknown command: {args.command}")


async def run_command_async(args: argparse.Namespace, database_url: Optional[str] = None) -> int:
    """Run one CLI command against the configured database.

    Args:
        args: Parsed command-line arguments.
        database_url: Optional database URL. Defaults to DATABASE_URL.

    Returns:
        Exit code (0 for success, 1 for a rejected operation).
    """
    db_manager = DatabaseManager(database_url)
    await db_manager.initialize()

    try:
        async with db_manager.session() as session:
            output = await _dispatch(args, session)
    except LedgerError as e:
        logger.error(f"{e.code}: {e.message}")
        return 1
    finally:
        await db_manager.shutdown()

    _print_json(output)
    return 0


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="ledger",
        description="Accounting period and refund tools for a commerce ledger.",
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL environment variable)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    create_cmd = subparsers.add_parser("create", help="Open a new accounting period")
    create_cmd.add_argument("--commerce", "-c", required=True, help="Commerce ID")
    create_cmd.add_argument("--name", "-n", required=True, help="Period name")
    create_cmd.add_argument("--start", "-s", required=True, help="Start date (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)")
    create_cmd.add_argument("--end", "-e", required=True, help="End date (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)")
    create_cmd.add_argument("--user", "-u", required=True, help="User opening the period")
    create_cmd.add_argument("--notes", help="Optional notes")

    list_cmd = subparsers.add_parser("list", help="List a commerce's periods")
    list_cmd.add_argument("--commerce", "-c", required=True, help="Commerce ID")
    list_cmd.add_argument("--status", choices=["OPEN", "CLOSED", "LOCKED"])
    list_cmd.add_argument("--year", type=int)
    list_cmd.add_argument("--search", help="Text to match in name or notes")

    summary_cmd = subparsers.add_parser("summary", help="Show a period's totals")
    summary_cmd.add_argument("period_id")

    close_cmd = subparsers.add_parser("close", help="Close an OPEN period")
    close_cmd.add_argument("period_id")
    close_cmd.add_argument("--user", "-u", required=True, help="User closing the period")
    close_cmd.add_argument("--notes", help="Closing notes")

    reopen_cmd = subparsers.add_parser("reopen", help="Reopen a CLOSED period")
    reopen_cmd.add_argument("period_id")
    reopen_cmd.add_argument("--user", "-u", required=True, help="User reopening the period")
    reopen_cmd.add_argument("--reason", "-r", required=True, help="Why the period is reopened")

    lock_cmd = subparsers.add_parser("lock", help="Lock a CLOSED period permanently")
    lock_cmd.add_argument("period_id")
    lock_cmd.add_argument("--user", "-u", required=True, help="User locking the period")
    lock_cmd.add_argument("--reason", "-r", required=True, help="Why the period is locked")

    refund_cmd = subparsers.add_parser("refund", help="Refund an income or outcome")
    refund_cmd.add_argument("transaction_id")
    refund_cmd.add_argument("--amount", "-a", required=True, type=_decimal)
    refund_cmd.add_argument(
        "--reason", "-r",
        choices=[r.value for r in RefundReason],
        default=RefundReason.CUSTOMER_REQUEST.value,
    )
    refund_cmd.add_argument(
        "--type", "-t",
        choices=[t.value for t in RefundType],
        default=RefundType.PAYMENT_REFUND.value,
    )
    refund_cmd.add_argument("--description", "-d")
    refund_cmd.add_argument("--commerce", "-c", help="Commerce the transaction must belong to")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(run_command_async(parsed_args, parsed_args.database_url))
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
