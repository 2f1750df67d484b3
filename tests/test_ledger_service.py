import threading
from datetime import date

import pytest

from stockbook.core.exceptions import (
    BusinessRuleViolationException,
    DuplicateEntityException,
    EntityNotFoundException,
    InsufficientStockError,
    ValidationFailedException,
)
from stockbook.domain.schemas.finance import (
    CashFlowCreate,
    CashInjectionCreate,
    PartnerCreate,
    WithdrawalCreate,
)
from stockbook.domain.schemas.inventory import (
    ContainerLine,
    ContainerUpdate,
    ProductCreate,
    ProductDestruction,
    ProductUpdate,
)
from stockbook.domain.schemas.sales import ExpenseCreate, SaleCreate, SaleUpdate

RICE = {"product_name": "Rice", "bag_quantity": 10, "cost_per_kg": 2.0, "bag_weight": 25}


def sell(ledger, quantity, price=100.0, product_id=1, day=date(2024, 1, 15)):
    return ledger.add_sale(SaleCreate(product_id=product_id, quantity=quantity, price_per_unit=price, date=day))


class TestContainers:
    def test_receiving_creates_product_at_landed_cost(self, stocked_ledger):
        container = stocked_ledger.get_container("C1")
        product = stocked_ledger.get_product(1)

        assert container.total_cost == pytest.approx(10 * 25 * 2.0 + 250.0)
        assert container.products[0].product_id == 1
        assert product.name == "Rice"
        assert product.current_stock == 10
        assert product.container_id == "C1"
        # 2.00/kg plus 25.00 overhead per 25 kg bag
        assert product.cost_per_kg == pytest.approx(3.0)

    def test_generated_ids_follow_explicit_ones(self, stocked_ledger, make_container):
        container = stocked_ledger.add_container(make_container([{**RICE, "product_id": 1}]))
        assert container.id == "C2"

    def test_duplicate_container_id_rejected(self, stocked_ledger, make_container):
        with pytest.raises(DuplicateEntityException):
            stocked_ledger.add_container(make_container([RICE], container_id="C1"))
        assert len(stocked_ledger.list_containers()) == 1

    def test_restock_blends_cost(self, stocked_ledger, make_container):
        stocked_ledger.add_container(make_container([{**RICE, "product_id": 1}], container_id="C2"))

        product = stocked_ledger.get_product(1)
        assert product.current_stock == 20
        assert product.cost_per_kg == pytest.approx((250 * 3.0 + 250 * 2.0) / 500)
        assert len(stocked_ledger.list_products()) == 1

    def test_delete_reverses_restock(self, stocked_ledger, make_container):
        stocked_ledger.add_container(make_container([{**RICE, "product_id": 1}], container_id="C2"))

        stocked_ledger.delete_container("C2")

        product = stocked_ledger.get_product(1)
        assert product.current_stock == 10
        assert product.cost_per_kg == pytest.approx(3.0)
        assert stocked_ledger.get_container("C2") is None

    def test_add_then_delete_restores_existing_products(self, ledger, make_container):
        ledger.add_product(ProductCreate(name="Rice", current_stock=3, cost_per_kg=2.0, bag_weight=25))
        ledger.add_product(ProductCreate(name="Lentils", current_stock=4, cost_per_kg=3.0, bag_weight=20))
        ledger.add_container(make_container([
            {"product_id": 1, "bag_quantity": 10, "cost_per_kg": 2.0, "bag_weight": 25},
            {"product_id": 2, "bag_quantity": 5, "cost_per_kg": 3.0, "bag_weight": 20},
        ], container_id="C1"))
        assert [p.current_stock for p in ledger.list_products()] == [13, 9]

        ledger.delete_container("C1")

        assert [p.current_stock for p in ledger.list_products()] == [3, 4]
        assert ledger.get_product(1).cost_per_kg == pytest.approx(2.0)
        assert ledger.get_product(2).cost_per_kg == pytest.approx(3.0)

    def test_delete_removes_products_the_container_created(self, stocked_ledger):
        stocked_ledger.delete_container("C1")

        assert stocked_ledger.list_containers() == []
        assert stocked_ledger.list_products() == []

    def test_delete_blocked_by_sales(self, stocked_ledger):
        sell(stocked_ledger, 2)

        with pytest.raises(BusinessRuleViolationException, match="sales history"):
            stocked_ledger.delete_container("C1")
        assert stocked_ledger.get_container("C1") is not None
        assert stocked_ledger.get_product(1).current_stock == 8

    def test_delete_blocked_when_stock_would_go_negative(self, stocked_ledger):
        stocked_ledger.destroy_product(ProductDestruction(product_id=1, quantity=3, reason="Water damage"))

        with pytest.raises(BusinessRuleViolationException, match="negative stock"):
            stocked_ledger.delete_container("C1")
        assert stocked_ledger.get_product(1).current_stock == 7

    def test_update_lines_reverses_and_reapplies(self, stocked_ledger):
        line = ContainerLine(product_id=1, product_name="Rice", bag_quantity=6, cost_per_kg=2.0, bag_weight=25)

        container = stocked_ledger.update_container("C1", ContainerUpdate(products=[line]))

        product = stocked_ledger.get_product(1)
        assert product.current_stock == 6
        assert product.cost_per_kg == pytest.approx((2.0 * 25 + 250.0 / 6) / 25)
        assert container.total_cost == pytest.approx(6 * 25 * 2.0 + 250.0)

    def test_update_overhead_recomputes_cost(self, stocked_ledger):
        stocked_ledger.update_container("C1", ContainerUpdate(customs_cost=0.0))

        product = stocked_ledger.get_product(1)
        assert product.current_stock == 10
        assert product.cost_per_kg == pytest.approx((2.0 * 25 + 10.0) / 25)

    def test_update_without_line_changes_keeps_stock(self, stocked_ledger):
        stocked_ledger.update_container("C1", ContainerUpdate(notes="Delayed at port"))

        assert stocked_ledger.get_container("C1").notes == "Delayed at port"
        assert stocked_ledger.get_product(1).current_stock == 10

    def test_failed_update_leaves_document_untouched(self, stocked_ledger):
        sell(stocked_ledger, 8)
        line = ContainerLine(product_id=1, product_name="Rice", bag_quantity=4, cost_per_kg=2.0, bag_weight=25)

        with pytest.raises(BusinessRuleViolationException):
            stocked_ledger.update_container("C1", ContainerUpdate(products=[line]))

        assert stocked_ledger.get_product(1).current_stock == 2
        assert stocked_ledger.get_container("C1").products[0].bag_quantity == 10

    def test_unknown_container(self, ledger):
        with pytest.raises(EntityNotFoundException):
            ledger.delete_container("C99")


class TestSales:
    def test_sale_totals_and_cost_snapshot(self, stocked_ledger):
        sale = sell(stocked_ledger, 4)

        assert sale.total_amount == pytest.approx(400.0)
        assert sale.cost_per_unit == pytest.approx(75.0)
        assert sale.profit == pytest.approx((100.0 - 75.0) * 4)
        assert sale.product_name == "Rice"
        assert stocked_ledger.get_product(1).current_stock == 6

    def test_insufficient_stock(self, stocked_ledger):
        with pytest.raises(InsufficientStockError) as exc_info:
            sell(stocked_ledger, 11)

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert stocked_ledger.list_sales() == []
        assert stocked_ledger.get_product(1).current_stock == 10

    def test_update_uses_recorded_cost(self, stocked_ledger, make_container):
        sale = sell(stocked_ledger, 4)
        # a cheaper restock must not change the profit of an existing sale
        stocked_ledger.add_container(make_container([{**RICE, "product_id": 1, "cost_per_kg": 1.0}]))

        updated = stocked_ledger.update_sale(sale.id, SaleUpdate(quantity=5, price_per_unit=90.0))

        assert updated.total_amount == pytest.approx(450.0)
        assert updated.profit == pytest.approx((90.0 - 75.0) * 5)
        assert stocked_ledger.get_product(1).current_stock == 15

    def test_update_can_take_all_stock(self, stocked_ledger):
        sale = sell(stocked_ledger, 4)

        stocked_ledger.update_sale(sale.id, SaleUpdate(quantity=10))

        assert stocked_ledger.get_product(1).current_stock == 0

    def test_failed_update_rolls_back(self, stocked_ledger):
        sale = sell(stocked_ledger, 4)

        with pytest.raises(InsufficientStockError):
            stocked_ledger.update_sale(sale.id, SaleUpdate(quantity=11))

        assert stocked_ledger.get_product(1).current_stock == 6
        assert stocked_ledger.get_sale(sale.id).quantity == 4

    def test_delete_restores_stock(self, stocked_ledger):
        sale = sell(stocked_ledger, 4)

        stocked_ledger.delete_sale(sale.id)

        assert stocked_ledger.get_product(1).current_stock == 10
        assert stocked_ledger.get_sale(sale.id) is None

    def test_stock_never_negative(self, stocked_ledger):
        for quantity in (3, 4, 5, 2, 1, 1):
            try:
                sell(stocked_ledger, quantity)
            except InsufficientStockError:
                pass
            assert stocked_ledger.get_product(1).current_stock >= 0

        assert sum(s.quantity for s in stocked_ledger.list_sales()) == 10

    def test_queries(self, stocked_ledger):
        sell(stocked_ledger, 1, day=date(2024, 1, 15))
        sell(stocked_ledger, 2, day=date(2024, 2, 1))

        assert len(stocked_ledger.sales_by_date_range(date(2024, 1, 1), date(2024, 1, 31))) == 1
        assert len(stocked_ledger.sales_by_product(1)) == 2
        assert stocked_ledger.total_sales_revenue() == pytest.approx(300.0)
        assert stocked_ledger.total_profit() == pytest.approx(3 * 25.0)
        assert stocked_ledger.top_selling_products()[0]["total_quantity"] == 3


class TestProducts:
    def test_destroy_records_loss_at_cost(self, stocked_ledger):
        expense = stocked_ledger.destroy_product(
            ProductDestruction(product_id=1, quantity=2, reason="Torn bags", date=date(2024, 1, 20))
        )

        assert expense.category == "Loss/Damage"
        assert expense.amount == pytest.approx(150.0)
        assert expense.product_id == 1
        assert expense.quantity == 2
        assert stocked_ledger.get_product(1).current_stock == 8

    def test_destroy_more_than_stock(self, stocked_ledger):
        with pytest.raises(InsufficientStockError):
            stocked_ledger.destroy_product(ProductDestruction(product_id=1, quantity=11, reason="Flood"))
        assert stocked_ledger.list_expenses() == []

    def test_stock_cannot_be_set_negative(self, stocked_ledger):
        with pytest.raises(ValidationFailedException):
            stocked_ledger.update_product(1, ProductUpdate(current_stock=-1))
        assert stocked_ledger.get_product(1).current_stock == 10

    def test_delete_blocked_by_sales(self, stocked_ledger):
        sell(stocked_ledger, 1)
        with pytest.raises(BusinessRuleViolationException):
            stocked_ledger.delete_product(1)

    def test_search_and_stats(self, stocked_ledger):
        sell(stocked_ledger, 2, price=110.0)

        assert [p.id for p in stocked_ledger.search_products("ric")] == [1]
        stats = stocked_ledger.products_with_sales_stats()[0]
        assert stats.total_sold == 2
        assert stats.avg_selling_price == pytest.approx(110.0)

    def test_inventory_value_and_low_stock(self, stocked_ledger):
        assert stocked_ledger.total_inventory_value() == pytest.approx(750.0)
        assert stocked_ledger.low_stock_products() == []

        sell(stocked_ledger, 6)
        assert [p.id for p in stocked_ledger.low_stock_products()] == [1]


class TestExpenses:
    def test_unknown_category_rejected(self, ledger):
        with pytest.raises(ValidationFailedException):
            ledger.add_expense(ExpenseCreate(category="Parties", description="Launch", amount=50.0))
        assert ledger.list_expenses() == []

    def test_totals_by_range_and_category(self, ledger):
        ledger.add_expense(ExpenseCreate(category="Rent", description="January", amount=500.0, date=date(2024, 1, 1)))
        ledger.add_expense(ExpenseCreate(category="Transport", description="Truck", amount=80.0, date=date(2024, 2, 3)))

        assert ledger.total_expenses(date(2024, 1, 1), date(2024, 1, 31)) == pytest.approx(500.0)
        assert len(ledger.expenses_by_category("Transport")) == 1


class TestPartners:
    def test_ownership_cannot_exceed_100(self, ledger):
        ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=60))

        with pytest.raises(ValidationFailedException):
            ledger.add_partner(PartnerCreate(name="Bilal", ownership_percent=50))
        assert len(ledger.list_partners()) == 1

    def test_withdrawals_update_capital_account(self, ledger):
        partner = ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=60))

        withdrawal = ledger.add_withdrawal(WithdrawalCreate(partner_id=partner.id, amount=300.0))
        assert ledger.get_partner(partner.id).capital_account.total_withdrawn == pytest.approx(300.0)

        ledger.delete_withdrawal(withdrawal.id)
        assert ledger.get_partner(partner.id).capital_account.total_withdrawn == 0.0

    def test_withdrawal_needs_known_partner(self, ledger):
        with pytest.raises(EntityNotFoundException):
            ledger.add_withdrawal(WithdrawalCreate(partner_id="P9", amount=10.0))

    def test_delete_blocked_by_withdrawals(self, ledger):
        partner = ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=60))
        ledger.add_withdrawal(WithdrawalCreate(partner_id=partner.id, amount=10.0))

        with pytest.raises(BusinessRuleViolationException):
            ledger.delete_partner(partner.id)

    def test_capital_contribution_raises_contributions(self, ledger):
        partner = ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=60, initial_investment=1000.0))

        injection = ledger.add_cash_injection(CashInjectionCreate(amount=500.0, partner_id=partner.id))
        assert injection.id == "CI1"
        assert ledger.get_partner(partner.id).current_equity == pytest.approx(1500.0)

        ledger.delete_cash_injection(injection.id)
        assert ledger.get_partner(partner.id).capital_account.additional_contributions == 0.0

    def test_contribution_requires_partner(self, ledger):
        with pytest.raises(ValidationFailedException):
            ledger.add_cash_injection(CashInjectionCreate(amount=500.0))

    def test_distributions_split_by_ownership(self, ledger):
        ledger.add_partner(PartnerCreate(name="Amal", ownership_percent=60))
        ledger.add_partner(PartnerCreate(name="Bilal", ownership_percent=40))

        shares = {d.partner_name: d.share for d in ledger.partner_distributions(1000.0)}
        assert shares == {"Amal": pytest.approx(600.0), "Bilal": pytest.approx(400.0)}


class TestCashFlows:
    def test_one_record_per_day(self, ledger):
        ledger.add_cash_flow(CashFlowCreate(date=date(2024, 1, 1), theoretical_balance=100.0))

        with pytest.raises(DuplicateEntityException):
            ledger.add_cash_flow(CashFlowCreate(date=date(2024, 1, 1)))

    def test_reconcile_day(self, ledger):
        ledger.add_cash_flow(CashFlowCreate(date=date(2024, 1, 1), theoretical_balance=100.0))

        cash_flow = ledger.reconcile_day(date(2024, 1, 1), 95.0, "Amal", notes="Till short")

        assert cash_flow.reconciled is True
        assert cash_flow.discrepancy == pytest.approx(-5.0)
        assert cash_flow.reconciled_by == "Amal"

    def test_cash_position_builds_on_last_closed_day(self, stocked_ledger):
        stocked_ledger.add_cash_flow(CashFlowCreate(date=date(2024, 1, 14), theoretical_balance=1000.0))
        sell(stocked_ledger, 2, day=date(2024, 1, 15))

        assert stocked_ledger.current_cash_position(date(2024, 1, 15)) == pytest.approx(1200.0)
        assert stocked_ledger.available_for_distribution(date(2024, 1, 15)) == 0.0


class TestIds:
    def test_counters_are_monotonic(self, ledger):
        assert [ledger.next_id("sale") for _ in range(3)] == [1, 2, 3]

        ledger.ensure_id_above("sale", 10)
        assert ledger.next_id("sale") == 11

        ledger.ensure_id_above("sale", 5)
        assert ledger.next_id("sale") == 12

    def test_concurrent_allocation_is_unique(self, ledger):
        allocated = []

        def worker():
            allocated.extend(ledger.next_id("expense") for _ in range(200))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(allocated)) == 1600

    def test_mutations_stamp_last_updated(self, ledger):
        assert ledger.document.metadata.last_updated is None
        ledger.add_expense(ExpenseCreate(category="Rent", description="January", amount=500.0))
        assert ledger.document.metadata.last_updated is not None

    def test_generated_container_id_skips_taken(self, stocked_ledger, make_container):
        stocked_ledger.document.metadata.next_ids["container"] = 1

        container = stocked_ledger.add_container(make_container(
            [{"product_name": "Oats", "bag_quantity": 2, "cost_per_kg": 1.0, "bag_weight": 10}],
        ))

        assert container.id == "C2"
        assert stocked_ledger.document.metadata.next_ids["container"] == 3
