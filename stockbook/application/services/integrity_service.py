"""Finance data integrity checks run before saving and from the CLI."""

from collections import Counter
from typing import List, Optional

import structlog
from pydantic import BaseModel

from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import CashInjectionType

logger = structlog.get_logger(__name__)


class IntegrityReport(BaseModel):
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []


def _has_duplicates(ids: list) -> bool:
    return any(count > 1 for count in Counter(ids).values())


def validate_finance_data(document: LedgerDocument) -> IntegrityReport:
    """Duplicate ids are errors; references to unknown partners are warnings."""
    errors, warnings = [], []
    partner_ids = {p.id for p in document.partners}

    orphaned_withdrawals = [
        w for w in document.withdrawals
        if w.partner_id and w.partner_id not in partner_ids
    ]
    if orphaned_withdrawals:
        warnings.append(f"{len(orphaned_withdrawals)} withdrawals reference non-existent partners")

    orphaned_contributions = [
        ci for ci in document.cash_injections
        if ci.type == CashInjectionType.CAPITAL_CONTRIBUTION.value
        and ci.partner_id
        and ci.partner_id not in partner_ids
    ]
    if orphaned_contributions:
        warnings.append(f"{len(orphaned_contributions)} capital contributions reference non-existent partners")

    if _has_duplicates([p.id for p in document.partners]):
        errors.append("Duplicate partner IDs found")
    if _has_duplicates([w.id for w in document.withdrawals]):
        errors.append("Duplicate withdrawal IDs found")
    if _has_duplicates([ci.id for ci in document.cash_injections]):
        errors.append("Duplicate cash injection IDs found")

    return IntegrityReport(is_valid=not errors, errors=errors, warnings=warnings)


def log_data_state(document: Optional[LedgerDocument], operation: str = "unknown") -> None:
    if document is None:
        logger.info("data_state", operation=operation, empty=True)
        return

    counts = document.counts()
    logger.info("data_state", operation=operation, **counts)

    if counts["partners"] or counts["withdrawals"] or counts["cash_injections"]:
        logger.info(
            "finance_state",
            operation=operation,
            total_withdrawals=sum(w.amount for w in document.withdrawals),
            total_injections=sum(ci.amount for ci in document.cash_injections),
        )
