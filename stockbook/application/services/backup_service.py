"""Backup service: JSON snapshots of the ledger and merge-import of snapshots.

Imported records never keep their numeric ids. Every record gets a fresh id
from the ledger's counters, colliding container ids are renamed, and all
references between records are rewritten through the resulting maps.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel

from stockbook.application.services.ledger_service import CONTAINER_ID, LedgerService
from stockbook.application.services.migration import migrate_document
from stockbook.config import get_settings
from stockbook.core import clock
from stockbook.core.exceptions import ValidationFailedException
from stockbook.domain.schemas.document import DOCUMENT_VERSION, LedgerDocument

settings = get_settings()
logger = structlog.get_logger(__name__)


class ImportSummary(BaseModel):
    products: int = 0
    containers: int = 0
    sales: int = 0
    expenses: int = 0
    partners: int = 0
    withdrawals: int = 0
    cash_injections: int = 0
    cash_flows: int = 0
    skipped_cash_flows: int = 0
    product_ids: Dict[int, int] = {}
    container_ids: Dict[str, str] = {}
    partner_ids: Dict[str, str] = {}


def export_backup(document: LedgerDocument, exported_at: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "exportedAt": (exported_at or clock.now()).isoformat(),
        "version": document.metadata.version or DOCUMENT_VERSION,
        "data": document.to_payload(),
    }


def write_backup(document: LedgerDocument, directory: Optional[str] = None) -> Path:
    """Write a timestamped snapshot under BACKUP_DIR and return its path."""
    target = Path(directory or settings.BACKUP_DIR)
    target.mkdir(parents=True, exist_ok=True)

    snapshot = export_backup(document)
    path = target / f"backup-{clock.now().strftime('%Y%m%d-%H%M%S')}.json"
    path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("backup_written", path=str(path), **document.counts())
    return path


def read_backup(path: str) -> Dict[str, Any]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as e:
        raise ValidationFailedException("backup", [f"File is not valid JSON: {e}"]) from e
    if not isinstance(payload, dict):
        raise ValidationFailedException("backup", ["Backup must be a JSON object"])
    return payload


def _unique_container_id(container_id: str, taken: set) -> str:
    candidate = f"{container_id}-imported"
    suffix = 2
    while candidate in taken:
        candidate = f"{container_id}-imported-{suffix}"
        suffix += 1
    return candidate


def import_backup(ledger: LedgerService, payload: Dict[str, Any]) -> ImportSummary:
    """Merge a backup (or a bare document) into the ledger's current document."""
    raw = payload.get("data", payload) if isinstance(payload, dict) else None
    if not isinstance(raw, dict):
        raise ValidationFailedException("backup", ["Backup does not contain a ledger document"])

    incoming = LedgerDocument.model_validate(migrate_document(raw))
    known_products = {p.id for p in incoming.products}
    dangling = [
        f"Container {container.id} line references unknown product {line.product_id}"
        for container in incoming.containers
        for line in container.products
        if line.product_id and line.product_id not in known_products
    ]
    if dangling:
        raise ValidationFailedException("backup", dangling)
    summary = ImportSummary()

    with ledger.transaction("import_backup") as document:
        product_ids: Dict[int, int] = {}
        for product in incoming.products:
            product_ids[product.id] = ledger.next_id("product")

        taken = {c.id for c in document.containers}
        container_ids: Dict[str, str] = {}
        for container in incoming.containers:
            new_id = container.id
            if new_id in taken:
                new_id = _unique_container_id(container.id, taken)
            taken.add(new_id)
            container_ids[container.id] = new_id
            match = CONTAINER_ID.match(new_id)
            if match:
                ledger.ensure_id_above("container", int(match.group(1)))

        partner_ids: Dict[str, str] = {}
        for partner in incoming.partners:
            partner_ids[partner.id] = f"P{ledger.next_id('partner')}"

        for product in incoming.products:
            document.products.append(product.model_copy(update={
                "id": product_ids[product.id],
                "container_id": container_ids.get(product.container_id, product.container_id),
            }))

        for container in incoming.containers:
            lines = [
                line.model_copy(update={"product_id": product_ids.get(line.product_id, line.product_id)})
                for line in container.products
            ]
            document.containers.append(container.model_copy(update={
                "id": container_ids[container.id],
                "products": lines,
            }))

        for sale in incoming.sales:
            document.sales.append(sale.model_copy(update={
                "id": ledger.next_id("sale"),
                "product_id": product_ids.get(sale.product_id, sale.product_id),
            }))

        for expense in incoming.expenses:
            document.expenses.append(expense.model_copy(update={
                "id": ledger.next_id("expense"),
                "product_id": product_ids.get(expense.product_id, expense.product_id),
                "container_id": container_ids.get(expense.container_id, expense.container_id),
            }))

        for partner in incoming.partners:
            document.partners.append(partner.model_copy(update={"id": partner_ids[partner.id]}))

        for withdrawal in incoming.withdrawals:
            document.withdrawals.append(withdrawal.model_copy(update={
                "id": f"W{ledger.next_id('withdrawal')}",
                "partner_id": partner_ids.get(withdrawal.partner_id, withdrawal.partner_id),
            }))

        for injection in incoming.cash_injections:
            document.cash_injections.append(injection.model_copy(update={
                "id": f"CI{ledger.next_id('cashInjection')}",
                "partner_id": partner_ids.get(injection.partner_id, injection.partner_id),
            }))

        # one cash-flow record per day: days the ledger already has win
        known_days = {cf.date for cf in document.cash_flows}
        for cash_flow in incoming.cash_flows:
            if cash_flow.date in known_days:
                summary.skipped_cash_flows += 1
                continue
            known_days.add(cash_flow.date)
            document.cash_flows.append(cash_flow.model_copy(update={"id": f"CF{ledger.next_id('cashFlow')}"}))
            summary.cash_flows += 1

    summary.products = len(incoming.products)
    summary.containers = len(incoming.containers)
    summary.sales = len(incoming.sales)
    summary.expenses = len(incoming.expenses)
    summary.partners = len(incoming.partners)
    summary.withdrawals = len(incoming.withdrawals)
    summary.cash_injections = len(incoming.cash_injections)
    summary.product_ids = product_ids
    summary.container_ids = {old: new for old, new in container_ids.items() if old != new}
    summary.partner_ids = partner_ids

    logger.info(
        "backup_imported",
        products=summary.products,
        containers=summary.containers,
        sales=summary.sales,
        renamed_containers=len(summary.container_ids),
    )
    return summary
