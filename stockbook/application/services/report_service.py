"""Report service: profit & loss statements over a date range."""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel

from stockbook.domain.schemas.inventory import Product
from stockbook.domain.schemas.sales import Expense, ExpenseCategory, Sale


class ProductSalesLine(BaseModel):
    product_id: int
    product_name: str
    quantity: int = 0
    revenue: float = 0.0
    profit: float = 0.0
    sales_count: int = 0


class ProfitLossReport(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sales_count: int
    expenses_count: int

    revenue: float
    cogs: float
    gross_profit: float
    total_expenses: float
    net_profit: float
    gross_margin: float
    net_margin: float

    average_sale_amount: float
    average_expense_amount: float

    expenses_by_category: Dict[str, float]
    sales_by_product: List[ProductSalesLine]

    # current stock, not limited to the period
    inventory_value: float


def filter_by_date_range(records: list, start: Optional[date] = None, end: Optional[date] = None) -> list:
    if start is None and end is None:
        return list(records)
    return [
        r for r in records
        if (start is None or r.date >= start) and (end is None or r.date <= end)
    ]


def calculate_cogs(sales: List[Sale]) -> float:
    """Cost of goods sold: recorded cost per bag × bags sold."""
    return sum(s.cost_per_unit * s.quantity for s in sales)


def calculate_inventory_value(products: List[Product]) -> float:
    return sum(p.stock_value for p in products)


def generate_profit_loss_report(
    sales: List[Sale],
    expenses: List[Expense],
    products: List[Product],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> ProfitLossReport:
    period_sales = filter_by_date_range(sales, start, end)
    period_expenses = filter_by_date_range(expenses, start, end)

    revenue = sum(s.total_amount for s in period_sales)
    gross_profit = sum(s.profit for s in period_sales)
    total_expenses = sum(e.amount for e in period_expenses)
    net_profit = gross_profit - total_expenses

    expenses_by_category: Dict[str, float] = {}
    for expense in period_expenses:
        category = expense.category or ExpenseCategory.MISCELLANEOUS.value
        expenses_by_category[category] = expenses_by_category.get(category, 0.0) + expense.amount

    by_product: Dict[int, ProductSalesLine] = {}
    for sale in period_sales:
        line = by_product.setdefault(
            sale.product_id,
            ProductSalesLine(product_id=sale.product_id, product_name=sale.product_name),
        )
        line.quantity += sale.quantity
        line.revenue += sale.total_amount
        line.profit += sale.profit
        line.sales_count += 1

    return ProfitLossReport(
        start_date=start,
        end_date=end,
        sales_count=len(period_sales),
        expenses_count=len(period_expenses),
        revenue=revenue,
        cogs=calculate_cogs(period_sales),
        gross_profit=gross_profit,
        total_expenses=total_expenses,
        net_profit=net_profit,
        gross_margin=gross_profit / revenue * 100 if revenue > 0 else 0.0,
        net_margin=net_profit / revenue * 100 if revenue > 0 else 0.0,
        average_sale_amount=revenue / len(period_sales) if period_sales else 0.0,
        average_expense_amount=total_expenses / len(period_expenses) if period_expenses else 0.0,
        expenses_by_category=expenses_by_category,
        sales_by_product=sorted(by_product.values(), key=lambda line: line.revenue, reverse=True),
        inventory_value=calculate_inventory_value(products),
    )
