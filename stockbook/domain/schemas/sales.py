"""Pydantic schemas for sales and expenses."""

import datetime as dt
from enum import Enum
from typing import Optional

from stockbook.domain.schemas.base import CamelInput, CamelModel


class ExpenseCategory(str, Enum):
    TRANSPORT = "Transport"
    RENT = "Rent"
    STAFF_SALARIES = "Staff Salaries"
    MISCELLANEOUS = "Miscellaneous"
    MARKETING = "Marketing"
    UTILITIES = "Utilities"
    SUPPLIES = "Supplies"
    INSURANCE = "Insurance"
    LEGAL = "Legal"
    MAINTENANCE = "Maintenance"
    FINANCIAL_EXPENSES = "Financial Expenses"
    TAXES = "Taxes"
    DISCOUNT = "Discount"
    LOSS_DAMAGE = "Loss/Damage"


EXPENSE_CATEGORIES = tuple(c.value for c in ExpenseCategory)
PRODUCT_DESTRUCTION = "product_destruction"


class SaleCreate(CamelInput):
    product_id: int
    quantity: int
    price_per_unit: float
    date: Optional[dt.date] = None
    time: Optional[str] = None
    notes: Optional[str] = None


class SaleUpdate(CamelInput):
    quantity: Optional[int] = None
    price_per_unit: Optional[float] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    notes: Optional[str] = None


class Sale(CamelModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    price_per_unit: float
    total_amount: float
    cost_per_unit: float  # cost per bag when the sale was recorded
    profit: float
    date: dt.date
    time: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class ExpenseCreate(CamelInput):
    category: str
    description: str
    amount: float
    date: Optional[dt.date] = None
    container_id: Optional[str] = None
    notes: Optional[str] = None


class ExpenseUpdate(CamelInput):
    category: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[dt.date] = None
    container_id: Optional[str] = None
    notes: Optional[str] = None


class Expense(CamelModel):
    id: int
    category: str
    description: str
    amount: float
    date: dt.date
    container_id: Optional[str] = None
    # Set on stock-loss expenses produced by product destruction
    type: Optional[str] = None
    product_id: Optional[int] = None
    quantity: Optional[int] = None
    time: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None
