"""Download the active data file and write a timestamped backup snapshot."""

import argparse
import asyncio
import os
import sys

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from stockbook.application.services.backup_service import write_backup
from stockbook.core.exceptions import AppError
from stockbook.core.logging import configure_logging
from stockbook.interfaces.deps import connect_sync_service, get_sync_service

logger = structlog.get_logger(__name__)


async def export(directory: str = None, password: str = None) -> None:
    service = get_sync_service()
    await connect_sync_service(service, password)

    document = await service.fetch_data()
    path = write_backup(document, directory)
    print(f"Backup written to {path}")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dir", help="target directory (defaults to BACKUP_DIR)")
    parser.add_argument("--password", help="password used when the token was stored")
    args = parser.parse_args()

    configure_logging()
    try:
        asyncio.run(export(args.dir, args.password))
    except AppError as e:
        logger.error("backup_export_failed", error=e.message, details=e.details)
        sys.exit(1)


if __name__ == "__main__":
    main()
