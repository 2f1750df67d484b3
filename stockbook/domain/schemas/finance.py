"""Pydantic schemas for partners, withdrawals, cash injections and cash flows."""

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import Field

from stockbook.domain.schemas.base import CamelInput, CamelModel


class WithdrawalType(str, Enum):
    PERSONAL = "personal"
    BUSINESS_EXPENSE = "business_expense"
    PROFIT_DISTRIBUTION = "profit_distribution"
    LOAN = "loan"


class CashInjectionType(str, Enum):
    CAPITAL_CONTRIBUTION = "Capital Contribution"
    LOAN = "Loan"
    OTHER_INCOME = "Other Income"
    OPENING_BALANCE = "Opening Balance"


class CapitalAccount(CamelModel):
    initial_investment: float = 0.0
    additional_contributions: float = 0.0
    profit_share: float = 0.0
    total_withdrawn: float = 0.0


class PartnerCreate(CamelInput):
    name: str
    ownership_percent: float
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    join_date: Optional[dt.date] = None
    initial_investment: float = 0.0


class PartnerUpdate(CamelInput):
    name: Optional[str] = None
    ownership_percent: Optional[float] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    active: Optional[bool] = None
    capital_account: Optional[CapitalAccount] = None


class Partner(CamelModel):
    id: str
    name: str
    ownership_percent: float
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    join_date: Optional[dt.date] = None
    active: bool = True
    capital_account: CapitalAccount = Field(default_factory=CapitalAccount)
    created_at: Optional[dt.datetime] = None

    @property
    def current_equity(self) -> float:
        account = self.capital_account
        return (
            account.initial_investment
            + account.additional_contributions
            + account.profit_share
            - account.total_withdrawn
        )


class WithdrawalCreate(CamelInput):
    partner_id: str
    amount: float
    date: Optional[dt.date] = None
    type: WithdrawalType = WithdrawalType.PERSONAL
    purpose: str = ""
    notes: Optional[str] = None


class Withdrawal(CamelModel):
    id: str
    partner_id: str
    amount: float
    date: dt.date
    type: str = WithdrawalType.PERSONAL.value
    purpose: str = ""
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class CashInjectionCreate(CamelInput):
    amount: float
    date: Optional[dt.date] = None
    type: CashInjectionType = CashInjectionType.CAPITAL_CONTRIBUTION
    source: str = ""
    partner_id: Optional[str] = None
    description: Optional[str] = None


class CashInjection(CamelModel):
    id: str
    date: dt.date
    amount: float
    type: str = CashInjectionType.CAPITAL_CONTRIBUTION.value
    source: str = ""
    partner_id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class CashTransaction(CamelModel):
    """A signed cash movement; negative amounts are outflows."""

    date: dt.date
    type: str
    category: str
    description: str
    amount: float
    reference: str


class CashFlowBase(CamelModel):
    date: dt.date
    opening_balance: float = 0.0
    cash_in: float = 0.0
    cash_out: float = 0.0
    theoretical_balance: float = 0.0
    actual_balance: Optional[float] = None
    discrepancy: Optional[float] = None
    transactions: List[CashTransaction] = Field(default_factory=list)
    reconciled: bool = False
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[dt.datetime] = None
    notes: Optional[str] = None


class CashFlowCreate(CashFlowBase, CamelInput):
    pass


class CashFlowUpdate(CamelInput):
    opening_balance: Optional[float] = None
    cash_in: Optional[float] = None
    cash_out: Optional[float] = None
    theoretical_balance: Optional[float] = None
    actual_balance: Optional[float] = None
    discrepancy: Optional[float] = None
    reconciled: Optional[bool] = None
    reconciled_by: Optional[str] = None
    notes: Optional[str] = None


class CashFlow(CashFlowBase):
    id: str


class FinancialSummary(CamelModel):
    total_container_cost: float = 0.0
    total_sales_revenue: float = 0.0
    total_expenses: float = 0.0
    current_cash_position: float = 0.0
    last_sync: Optional[dt.datetime] = None
    synced_from_existing_data: bool = False


class PartnerDistribution(CamelModel):
    partner_id: str
    partner_name: str
    ownership_percent: float
    share: float
    total_withdrawn: float
    current_equity: float
    after_distribution: float
