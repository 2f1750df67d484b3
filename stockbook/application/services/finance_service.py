"""Finance sync service: rebuilds the daily cash-flow ledger from transactions.

Features:
- Every container purchase, sale and expense becomes a signed cash movement
- Movements grouped per day and walked chronologically with a running balance
- Days before today are auto-reconciled, today never is
- Output depends only on the input records and `today`, so re-running the
  sync over unchanged data reproduces the same history
- Partner records are never created here
"""

from collections import defaultdict
from datetime import date, datetime, time
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel

from stockbook.core import clock
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import CashFlow, CashTransaction, FinancialSummary
from stockbook.domain.schemas.inventory import Container
from stockbook.domain.schemas.sales import Expense, Sale

logger = structlog.get_logger(__name__)

SYSTEM_RECONCILER = "System Init"


class FinanceSyncResult(BaseModel):
    cash_flows: List[CashFlow]
    financial_summary: FinancialSummary


def cash_flow_id(day: date) -> str:
    return f"cf_{day.isoformat()}"


def end_of_day(day: date) -> datetime:
    return clock.tz.localize(datetime.combine(day, time(23, 59, 59)))


def calculate_initial_cash_position(
    containers: List[Container],
    sales: List[Sale],
    expenses: List[Expense],
) -> FinancialSummary:
    """Cash position = sales revenue - expenses - container purchases."""
    total_container_cost = sum(c.total_cost or 0.0 for c in containers)
    total_sales_revenue = sum(s.total_amount or 0.0 for s in sales)
    total_expenses = sum(e.amount or 0.0 for e in expenses)

    return FinancialSummary(
        total_container_cost=total_container_cost,
        total_sales_revenue=total_sales_revenue,
        total_expenses=total_expenses,
        current_cash_position=total_sales_revenue - total_expenses - total_container_cost,
    )


def collect_transactions(
    containers: List[Container],
    sales: List[Sale],
    expenses: List[Expense],
) -> List[CashTransaction]:
    """Signed cash movements, oldest first; outflows are negative."""
    transactions = []

    for container in containers:
        transactions.append(CashTransaction(
            date=container.cash_date,
            type="expense",
            category="Container Purchase",
            description=f"Container {container.id} - {container.supplier}",
            amount=-(container.total_cost or 0.0),
            reference=f"container_{container.id}",
        ))

    for sale in sales:
        transactions.append(CashTransaction(
            date=sale.date,
            type="sale",
            category="Product Sale",
            description=f"Sale #{sale.id}",
            amount=sale.total_amount or 0.0,
            reference=f"sale_{sale.id}",
        ))

    for expense in expenses:
        transactions.append(CashTransaction(
            date=expense.date,
            type="expense",
            category=expense.category,
            description=expense.description,
            amount=-(expense.amount or 0.0),
            reference=f"expense_{expense.id}",
        ))

    # sorted() is stable, same-day movements keep their collection order
    return sorted(transactions, key=lambda t: t.date)


def generate_cash_flows(
    containers: List[Container],
    sales: List[Sale],
    expenses: List[Expense],
    today: Optional[date] = None,
) -> List[CashFlow]:
    """One cash-flow record per day that has movements, in date order."""
    today = today or clock.today()

    by_date: Dict[date, List[CashTransaction]] = defaultdict(list)
    for transaction in collect_transactions(containers, sales, expenses):
        by_date[transaction.date].append(transaction)

    running_balance = 0.0
    records = []
    for day in sorted(by_date):
        day_transactions = by_date[day]
        cash_in = sum(t.amount for t in day_transactions if t.amount > 0)
        cash_out = sum(-t.amount for t in day_transactions if t.amount < 0)

        opening_balance = running_balance
        running_balance = opening_balance + cash_in - cash_out

        historical = day < today
        records.append(CashFlow(
            id=cash_flow_id(day),
            date=day,
            opening_balance=opening_balance,
            cash_in=cash_in,
            cash_out=cash_out,
            theoretical_balance=running_balance,
            actual_balance=running_balance if historical else None,
            discrepancy=0.0 if historical else None,
            transactions=day_transactions,
            reconciled=historical,
            reconciled_by=SYSTEM_RECONCILER if historical else None,
            reconciled_at=end_of_day(day) if historical else None,
        ))

    return records


def _open_today(cash_flows: List[CashFlow], today: date) -> List[CashFlow]:
    """Make sure today's record exists and is not reconciled."""
    current = next((cf for cf in cash_flows if cf.date == today), None)

    if current is None:
        previous = [cf for cf in cash_flows if cf.date < today]
        balance = previous[-1].theoretical_balance if previous else 0.0
        cash_flows.append(CashFlow(
            id=cash_flow_id(today),
            date=today,
            opening_balance=balance,
            theoretical_balance=balance,
        ))
        return sorted(cash_flows, key=lambda cf: cf.date)

    auto_matched = (
        current.actual_balance == current.theoretical_balance
        and current.discrepancy == 0
    )
    current.reconciled = False
    current.reconciled_by = None
    current.reconciled_at = None
    if auto_matched:
        current.actual_balance = None
        current.discrepancy = None
    return cash_flows


def sync_finance_data(
    document: LedgerDocument,
    today: Optional[date] = None,
    synced_at: Optional[datetime] = None,
) -> FinanceSyncResult:
    """Rebuild cash flows and the financial summary for `document`.

    The document is not modified; apply the result with
    `LedgerService.apply_finance_sync`.
    """
    today = today or clock.today()

    summary = calculate_initial_cash_position(document.containers, document.sales, document.expenses)
    summary.last_sync = synced_at or clock.now()
    summary.synced_from_existing_data = True

    cash_flows = generate_cash_flows(document.containers, document.sales, document.expenses, today)
    cash_flows = _open_today(cash_flows, today)

    logger.info(
        "finance_sync_completed",
        days=len(cash_flows),
        cash_position=round(summary.current_cash_position, 2),
        today=today.isoformat(),
    )
    return FinanceSyncResult(cash_flows=cash_flows, financial_summary=summary)
