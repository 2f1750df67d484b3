from datetime import date

import pytest

from stockbook.application.services.integrity_service import validate_finance_data
from stockbook.application.services.report_service import generate_profit_loss_report
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import CashInjection, Partner, Withdrawal
from stockbook.domain.schemas.sales import ExpenseCreate, SaleCreate


class TestProfitLoss:
    def test_period_figures(self, stocked_ledger):
        stocked_ledger.add_sale(SaleCreate(product_id=1, quantity=4, price_per_unit=100.0, date=date(2024, 1, 12)))
        stocked_ledger.add_sale(SaleCreate(product_id=1, quantity=1, price_per_unit=90.0, date=date(2024, 3, 1)))
        stocked_ledger.add_expense(ExpenseCreate(category="Rent", description="Jan", amount=40.0, date=date(2024, 1, 5)))
        stocked_ledger.add_expense(ExpenseCreate(category="Rent", description="Mar", amount=40.0, date=date(2024, 3, 5)))
        document = stocked_ledger.document

        report = generate_profit_loss_report(
            document.sales, document.expenses, document.products, date(2024, 1, 1), date(2024, 1, 31)
        )

        assert report.sales_count == 1
        assert report.revenue == pytest.approx(400.0)
        assert report.cogs == pytest.approx(300.0)
        assert report.gross_profit == pytest.approx(100.0)
        assert report.net_profit == pytest.approx(60.0)
        assert report.gross_margin == pytest.approx(25.0)
        assert report.expenses_by_category == {"Rent": pytest.approx(40.0)}
        assert report.sales_by_product[0].quantity == 4
        # stock on hand now, whatever the period
        assert report.inventory_value == pytest.approx(5 * 75.0)

    def test_no_sales_has_zero_margins(self):
        report = generate_profit_loss_report([], [], [])

        assert report.revenue == 0
        assert report.gross_margin == 0.0
        assert report.average_sale_amount == 0.0


class TestFinanceIntegrity:
    def test_orphans_are_warnings_duplicates_are_errors(self):
        document = LedgerDocument(
            partners=[
                Partner(id="P1", name="Amal", ownership_percent=50),
                Partner(id="P1", name="Bilal", ownership_percent=50),
            ],
            withdrawals=[Withdrawal(id="W1", partner_id="P9", amount=10.0, date=date(2024, 1, 1))],
            cash_injections=[
                CashInjection(id="CI1", date=date(2024, 1, 1), amount=5.0, partner_id="P8"),
            ],
        )

        report = validate_finance_data(document)

        assert not report.is_valid
        assert report.errors == ["Duplicate partner IDs found"]
        assert report.warnings == [
            "1 withdrawals reference non-existent partners",
            "1 capital contributions reference non-existent partners",
        ]

    def test_clean_document(self, stocked_ledger):
        assert validate_finance_data(stocked_ledger.document).is_valid
