"""Rebuild the cash-flow ledger from containers, sales and expenses and save it."""

import argparse
import asyncio
import os
import sys

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from stockbook.application.services.finance_service import sync_finance_data
from stockbook.application.services.integrity_service import validate_finance_data
from stockbook.core.exceptions import AppError, SyncConflictError
from stockbook.core.logging import configure_logging
from stockbook.interfaces.deps import connect_sync_service, get_sync_service, load_ledger

logger = structlog.get_logger(__name__)


async def sync(dry_run: bool, password: str = None) -> int:
    service = get_sync_service()
    await connect_sync_service(service, password)

    ledger = await load_ledger(service)
    result = sync_finance_data(ledger.document)
    ledger.apply_finance_sync(result)

    summary = result.financial_summary
    print(f"Days rebuilt:        {len(result.cash_flows)}")
    print(f"Sales revenue:       {summary.total_sales_revenue:,.2f}")
    print(f"Expenses:            {summary.total_expenses:,.2f}")
    print(f"Container purchases: {summary.total_container_cost:,.2f}")
    print(f"Cash position:       {summary.current_cash_position:,.2f}")

    report = validate_finance_data(ledger.document)
    for warning in report.warnings:
        print(f"warning: {warning}")
    if not report.is_valid:
        for error in report.errors:
            print(f"error: {error}")
        return 1

    if dry_run:
        print("Dry run, nothing saved.")
        return 0

    try:
        commit = await service.save_data(ledger.document, "Sync finance data")
    except SyncConflictError:
        print("The data file changed while syncing. Run the sync again.")
        return 1

    print(f"Saved ({commit.commit_sha or commit.sha}).")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="compute without saving")
    parser.add_argument("--password", help="password used when the token was stored")
    args = parser.parse_args()

    configure_logging()
    try:
        sys.exit(asyncio.run(sync(args.dry_run, args.password)))
    except AppError as e:
        logger.error("finance_sync_failed", error=e.message, details=e.details)
        sys.exit(1)


if __name__ == "__main__":
    main()
