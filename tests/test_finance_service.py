from datetime import date

import pytest

from stockbook.application.services.finance_service import (
    SYSTEM_RECONCILER,
    calculate_initial_cash_position,
    end_of_day,
    generate_cash_flows,
    sync_finance_data,
)
from stockbook.domain.schemas.finance import PartnerCreate
from stockbook.domain.schemas.sales import ExpenseCreate, SaleCreate

TODAY = date(2024, 1, 20)


@pytest.fixture
def trading_ledger(stocked_ledger):
    """Container bought 2024-01-10 (750.00), two sales and an expense afterwards."""
    stocked_ledger.add_sale(SaleCreate(product_id=1, quantity=4, price_per_unit=100.0, date=date(2024, 1, 12)))
    stocked_ledger.add_expense(ExpenseCreate(category="Transport", description="Truck", amount=50.0, date=date(2024, 1, 12)))
    stocked_ledger.add_sale(SaleCreate(product_id=1, quantity=2, price_per_unit=110.0, date=TODAY))
    return stocked_ledger


class TestGenerateCashFlows:
    def test_running_balance_per_day(self, trading_ledger):
        document = trading_ledger.document
        flows = generate_cash_flows(document.containers, document.sales, document.expenses, TODAY)

        assert [cf.date for cf in flows] == [date(2024, 1, 10), date(2024, 1, 12), TODAY]

        first, second, third = flows
        assert first.cash_out == pytest.approx(750.0)
        assert first.theoretical_balance == pytest.approx(-750.0)
        assert second.opening_balance == pytest.approx(-750.0)
        assert second.cash_in == pytest.approx(400.0)
        assert second.cash_out == pytest.approx(50.0)
        assert second.theoretical_balance == pytest.approx(-400.0)
        assert third.theoretical_balance == pytest.approx(-180.0)
        assert len(second.transactions) == 2

    def test_history_is_auto_reconciled_but_today_is_not(self, trading_ledger):
        document = trading_ledger.document
        flows = generate_cash_flows(document.containers, document.sales, document.expenses, TODAY)

        for cf in flows[:-1]:
            assert cf.reconciled
            assert cf.reconciled_by == SYSTEM_RECONCILER
            assert cf.actual_balance == cf.theoretical_balance
            assert cf.discrepancy == 0
            assert cf.reconciled_at == end_of_day(cf.date)

        today = flows[-1]
        assert not today.reconciled
        assert today.actual_balance is None
        assert today.reconciled_by is None

    def test_initial_cash_position(self, trading_ledger):
        document = trading_ledger.document
        summary = calculate_initial_cash_position(document.containers, document.sales, document.expenses)

        assert summary.total_sales_revenue == pytest.approx(620.0)
        assert summary.current_cash_position == pytest.approx(620.0 - 50.0 - 750.0)


class TestSyncFinanceData:
    def test_running_twice_gives_identical_history(self, trading_ledger):
        first = sync_finance_data(trading_ledger.document, today=TODAY)
        trading_ledger.apply_finance_sync(first)
        second = sync_finance_data(trading_ledger.document, today=TODAY)

        def history(result):
            return [cf.model_dump() for cf in result.cash_flows if cf.date < TODAY]

        assert history(first) == history(second)

    def test_today_record_opened_when_nothing_happened(self, trading_ledger):
        later = date(2024, 2, 1)

        result = sync_finance_data(trading_ledger.document, today=later)

        today = result.cash_flows[-1]
        assert today.date == later
        assert today.opening_balance == pytest.approx(-180.0)
        assert today.theoretical_balance == pytest.approx(-180.0)
        assert not today.reconciled
        assert all(cf.reconciled for cf in result.cash_flows[:-1])

    def test_input_document_untouched_and_partners_kept(self, trading_ledger):
        trading_ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=100))

        result = sync_finance_data(trading_ledger.document, today=TODAY)
        assert trading_ledger.list_cash_flows() == []

        trading_ledger.apply_finance_sync(result)
        assert len(trading_ledger.list_cash_flows()) == 3
        assert len(trading_ledger.list_partners()) == 1
        assert trading_ledger.document.metadata.financial_summary.synced_from_existing_data
