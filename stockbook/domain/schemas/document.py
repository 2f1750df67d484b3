"""The ledger document: one JSON file holding every collection."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from stockbook.core import clock
from stockbook.domain.schemas.base import CamelModel
from stockbook.domain.schemas.finance import (
    CashFlow,
    CashInjection,
    FinancialSummary,
    Partner,
    Withdrawal,
)
from stockbook.domain.schemas.inventory import Container, Product
from stockbook.domain.schemas.sales import Expense, Sale

DOCUMENT_VERSION = "1.0.0"

# JSON keys of the collections every document must carry
COLLECTIONS = (
    "containers",
    "products",
    "sales",
    "expenses",
    "partners",
    "withdrawals",
    "cashFlows",
    "cashInjections",
)

# Keys of metadata.nextIds
ID_KINDS = (
    "product",
    "container",
    "sale",
    "expense",
    "partner",
    "withdrawal",
    "cashFlow",
    "cashInjection",
)


def default_next_ids() -> Dict[str, int]:
    return {kind: 1 for kind in ID_KINDS}


def empty_document_payload(last_updated: Optional[str] = None) -> Dict[str, Any]:
    """Fresh document as plain JSON-ready data."""
    return {
        "metadata": {
            "version": DOCUMENT_VERSION,
            "lastUpdated": last_updated or clock.now().isoformat(),
            "nextIds": default_next_ids(),
        },
        **{name: [] for name in COLLECTIONS},
    }


class Metadata(CamelModel):
    version: str = DOCUMENT_VERSION
    last_updated: Optional[datetime] = None
    next_ids: Dict[str, int] = Field(default_factory=default_next_ids)
    financial_summary: Optional[FinancialSummary] = None


class LedgerDocument(CamelModel):
    metadata: Metadata = Field(default_factory=Metadata)
    containers: List[Container] = Field(default_factory=list)
    products: List[Product] = Field(default_factory=list)
    sales: List[Sale] = Field(default_factory=list)
    expenses: List[Expense] = Field(default_factory=list)
    partners: List[Partner] = Field(default_factory=list)
    withdrawals: List[Withdrawal] = Field(default_factory=list)
    cash_flows: List[CashFlow] = Field(default_factory=list)
    cash_injections: List[CashInjection] = Field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "containers": len(self.containers),
            "products": len(self.products),
            "sales": len(self.sales),
            "expenses": len(self.expenses),
            "partners": len(self.partners),
            "withdrawals": len(self.withdrawals),
            "cash_flows": len(self.cash_flows),
            "cash_injections": len(self.cash_injections),
        }
