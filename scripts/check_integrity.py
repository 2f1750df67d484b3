"""Offline integrity report for a ledger document (remote or local file)."""

import argparse
import asyncio
import json
import os
import sys

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from stockbook.application.services.integrity_service import log_data_state, validate_finance_data
from stockbook.application.services.ledger_service import LedgerService
from stockbook.application.services.validation import validate_data_integrity
from stockbook.core.exceptions import AppError
from stockbook.core.logging import configure_logging
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.interfaces.deps import connect_sync_service, get_sync_service

logger = structlog.get_logger(__name__)


async def load_document(path: str = None, password: str = None) -> LedgerDocument:
    if path:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        # backups wrap the document in "data"
        return LedgerService.from_payload(payload.get("data", payload)).document

    service = get_sync_service()
    await connect_sync_service(service, password)
    return await service.fetch_data()


async def check(path: str = None, password: str = None) -> int:
    document = await load_document(path, password)
    log_data_state(document, "check_integrity")

    structure = validate_data_integrity(document)
    finance = validate_finance_data(document)

    errors = structure.errors + finance.errors
    for error in errors:
        print(f"error: {error}")
    for warning in finance.warnings:
        print(f"warning: {warning}")

    if errors:
        print(f"{len(errors)} problem(s) found.")
        return 1
    print("No problems found.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--file", help="check a local JSON document or backup instead of GitHub")
    parser.add_argument("--password", help="password used when the token was stored")
    args = parser.parse_args()

    configure_logging()
    try:
        sys.exit(asyncio.run(check(args.file, args.password)))
    except AppError as e:
        logger.error("integrity_check_failed", error=e.message, details=e.details)
        sys.exit(1)


if __name__ == "__main__":
    main()
