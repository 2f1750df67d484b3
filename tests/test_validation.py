from datetime import date

import pytest

from stockbook.application.services.validation import (
    validate_cash_injection,
    validate_container,
    validate_data_integrity,
    validate_expense,
    validate_github_settings,
    validate_ownership_total,
    validate_sale,
    validate_sufficient_stock,
    validate_unique_container_id,
)
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import CashInjection, Partner
from stockbook.domain.schemas.inventory import Container, ContainerLine, Product
from stockbook.domain.schemas.sales import EXPENSE_CATEGORIES, Expense, Sale

TOKEN = "ghp_" + "a" * 36


def make_sale(**overrides):
    fields = dict(
        id=1, product_id=1, product_name="Rice", quantity=2, price_per_unit=100.0,
        total_amount=200.0, cost_per_unit=75.0, profit=50.0, date=date(2024, 1, 1),
    )
    fields.update(overrides)
    return Sale(**fields)


class TestSale:
    def test_consistent_sale(self):
        assert validate_sale(make_sale()).is_valid

    def test_rounding_within_a_cent_is_accepted(self):
        assert validate_sale(make_sale(total_amount=200.004)).is_valid

    def test_total_mismatch(self):
        result = validate_sale(make_sale(total_amount=210.0))
        assert not result.is_valid
        assert any("Total amount" in e for e in result.errors)

    def test_profit_mismatch(self):
        result = validate_sale(make_sale(profit=60.0))
        assert any("Profit" in e for e in result.errors)


class TestContainer:
    def test_bag_weight_must_be_known(self):
        container = Container(
            id="C1",
            supplier="Nile Traders",
            purchase_date=date(2024, 1, 1),
            products=[ContainerLine(product_id=1, bag_quantity=1, cost_per_kg=1.0, bag_weight=30)],
        )
        result = validate_container(container)
        assert result.errors == ["Product 1: Bag weight must be one of 20, 25 kg"]

    def test_negative_costs(self):
        container = Container(id="C1", supplier="X", purchase_date=date(2024, 1, 1), shipping_cost=-1)
        assert not validate_container(container).is_valid

    def test_unique_id(self):
        containers = [Container(id="C1", supplier="X", purchase_date=date(2024, 1, 1))]
        assert not validate_unique_container_id(containers, "C1").is_valid
        assert validate_unique_container_id(containers, "C1", exclude_id="C1").is_valid


class TestExpense:
    @pytest.mark.parametrize("category", EXPENSE_CATEGORIES)
    def test_known_categories(self, category):
        expense = Expense(id=1, category=category, description="x", amount=1.0, date=date(2024, 1, 1))
        assert validate_expense(expense).is_valid

    def test_unknown_category(self):
        expense = Expense(id=1, category="Parties", description="x", amount=1.0, date=date(2024, 1, 1))
        assert not validate_expense(expense).is_valid


class TestFinance:
    def test_ownership_total_ignores_inactive_partners(self):
        partners = [
            Partner(id="P1", name="Amal", ownership_percent=70),
            Partner(id="P2", name="Bilal", ownership_percent=30, active=False),
        ]
        assert validate_ownership_total(partners, 30).is_valid
        assert not validate_ownership_total(partners, 31).is_valid
        assert validate_ownership_total(partners, 100, exclude_id="P1").is_valid

    def test_other_income_needs_no_partner(self):
        injection = CashInjection(id="CI1", date=date(2024, 1, 1), amount=10.0, type="Other Income")
        assert validate_cash_injection(injection).is_valid


class TestMisc:
    def test_github_settings(self):
        assert validate_github_settings("acme", "books", TOKEN).is_valid
        assert len(validate_github_settings("", " ", None).errors) == 3
        assert not validate_github_settings("acme", "books", "ghp_short").is_valid

    def test_sufficient_stock(self):
        assert validate_sufficient_stock(5, 5).is_valid
        assert validate_sufficient_stock(5, 6).errors == ["Insufficient stock. Available: 5, Requested: 6"]

    def test_data_integrity(self):
        document = LedgerDocument(
            products=[
                Product(id=1, name="Rice", current_stock=-2, container_id="C9"),
                Product(id=1, name="Rice again"),
            ],
            sales=[make_sale(product_id=7)],
        )

        errors = validate_data_integrity(document).errors

        assert "Product 1 references non-existent container C9" in errors
        assert "Sale 1 references non-existent product 7" in errors
        assert "Product 1 has negative stock: -2" in errors
        assert "Duplicate product IDs found: 1" in errors
