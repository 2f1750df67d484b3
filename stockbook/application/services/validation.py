"""Validation utilities: pure checks run before any ledger mutation.

Every validator returns a `ValidationResult`; none of them raise or touch
the document.
"""

from typing import Iterable, List, Optional

from pydantic import BaseModel

from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import (
    CashInjection,
    CashInjectionType,
    Partner,
    Withdrawal,
    WithdrawalType,
)
from stockbook.domain.schemas.inventory import BAG_WEIGHTS, Container, Product
from stockbook.domain.schemas.sales import EXPENSE_CATEGORIES, Expense, Sale

AMOUNT_TOLERANCE = 0.01
MIN_TOKEN_LENGTH = 40


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = []

    @classmethod
    def of(cls, errors: List[str]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _duplicates(values: Iterable) -> List:
    seen, dupes = set(), []
    for value in values:
        if value in seen and value not in dupes:
            dupes.append(value)
        seen.add(value)
    return dupes


def validate_container(container: Container) -> ValidationResult:
    errors = []

    if _blank(container.id):
        errors.append("Container ID is required and must be a non-empty string")
    if _blank(container.supplier):
        errors.append("Supplier is required and must be a non-empty string")
    if container.purchase_date is None:
        errors.append("Purchase date is required and must be a valid date")
    if container.invoice_number is not None and _blank(container.invoice_number):
        errors.append("Invoice number must be a non-empty string if provided")
    if container.shipping_cost < 0:
        errors.append("Shipping cost must be a non-negative number")
    if container.customs_cost < 0:
        errors.append("Customs cost must be a non-negative number")
    if container.total_cost < 0:
        errors.append("Total cost must be a non-negative number")

    for index, line in enumerate(container.products, start=1):
        if line.product_id is not None and line.product_id < 1:
            errors.append(f"Product {index}: Product ID must be a positive number")
        if line.bag_quantity < 1:
            errors.append(f"Product {index}: Bag quantity must be a positive number")
        if line.cost_per_kg < 0:
            errors.append(f"Product {index}: Cost per kg must be a non-negative number")
        if line.bag_weight not in BAG_WEIGHTS:
            errors.append(f"Product {index}: Bag weight must be one of {', '.join(map(str, BAG_WEIGHTS))} kg")

    return ValidationResult.of(errors)


def validate_product(product: Product) -> ValidationResult:
    errors = []

    if product.id < 1:
        errors.append("Product ID is required and must be a positive number")
    if _blank(product.name):
        errors.append("Product name is required and must be a non-empty string")
    if _blank(product.category):
        errors.append("Category is required and must be a non-empty string")
    if product.current_stock < 0:
        errors.append("Current stock must be a non-negative number")
    if product.cost_per_kg < 0:
        errors.append("Cost per kg must be a non-negative number")
    if product.bag_weight not in BAG_WEIGHTS:
        errors.append(f"Bag weight must be one of {', '.join(map(str, BAG_WEIGHTS))} kg")
    if product.container_id is not None and _blank(product.container_id):
        errors.append("Container ID must be a non-empty string if provided")

    return ValidationResult.of(errors)


def validate_sale(sale: Sale) -> ValidationResult:
    """Field checks plus the two arithmetic identities of a sale."""
    errors = []

    if sale.id < 1:
        errors.append("Sale ID is required and must be a positive number")
    if sale.product_id < 1:
        errors.append("Product ID is required and must be a positive number")
    if _blank(sale.product_name):
        errors.append("Product name is required and must be a non-empty string")
    if sale.quantity < 1:
        errors.append("Quantity is required and must be a positive number")
    if sale.price_per_unit < 0:
        errors.append("Price per unit is required and must be non-negative")
    if sale.total_amount < 0:
        errors.append("Total amount is required and must be non-negative")
    if sale.cost_per_unit < 0:
        errors.append("Cost per unit is required and must be non-negative")

    if abs(sale.total_amount - sale.quantity * sale.price_per_unit) > AMOUNT_TOLERANCE:
        errors.append("Total amount does not match quantity × price per unit")
    if abs(sale.profit - (sale.price_per_unit - sale.cost_per_unit) * sale.quantity) > AMOUNT_TOLERANCE:
        errors.append("Profit does not match (price per unit - cost per unit) × quantity")

    return ValidationResult.of(errors)


def validate_expense(expense: Expense) -> ValidationResult:
    errors = []

    if expense.id < 1:
        errors.append("Expense ID is required and must be a positive number")
    if _blank(expense.category):
        errors.append("Category is required and must be a non-empty string")
    elif expense.category not in EXPENSE_CATEGORIES:
        errors.append(f"Category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
    if _blank(expense.description):
        errors.append("Description is required and must be a non-empty string")
    if expense.amount < 0:
        errors.append("Amount is required and must be non-negative")
    if expense.container_id is not None and _blank(expense.container_id):
        errors.append("Container ID must be a non-empty string if provided")

    return ValidationResult.of(errors)


def validate_partner(partner: Partner) -> ValidationResult:
    errors = []

    if _blank(partner.name):
        errors.append("Partner name is required")
    if not 0 <= partner.ownership_percent <= 100:
        errors.append("Ownership percent must be between 0 and 100")
    if partner.email and "@" not in partner.email:
        errors.append("Email must be a valid address if provided")
    if partner.capital_account.initial_investment < 0:
        errors.append("Initial investment must be non-negative")

    return ValidationResult.of(errors)


def validate_ownership_total(
    partners: List[Partner],
    ownership_percent: float,
    exclude_id: Optional[str] = None,
) -> ValidationResult:
    """Ownership of active partners plus `ownership_percent` must stay within 100%."""
    allocated = sum(
        p.ownership_percent for p in partners
        if p.active and p.id != exclude_id
    )
    total = allocated + ownership_percent
    if total > 100 + AMOUNT_TOLERANCE:
        return ValidationResult.of([
            f"Total ownership would be {total:g}%; only {max(0.0, 100 - allocated):g}% is available"
        ])
    return ValidationResult.of([])


def validate_withdrawal(withdrawal: Withdrawal) -> ValidationResult:
    errors = []

    if _blank(withdrawal.partner_id):
        errors.append("Partner is required")
    if withdrawal.amount <= 0:
        errors.append("Withdrawal amount must be greater than 0")
    if withdrawal.type not in {t.value for t in WithdrawalType}:
        errors.append(f"Withdrawal type must be one of: {', '.join(t.value for t in WithdrawalType)}")

    return ValidationResult.of(errors)


def validate_cash_injection(injection: CashInjection) -> ValidationResult:
    errors = []

    if injection.amount <= 0:
        errors.append("Amount must be greater than 0")
    if injection.type not in {t.value for t in CashInjectionType}:
        errors.append(f"Type must be one of: {', '.join(t.value for t in CashInjectionType)}")
    if injection.type == CashInjectionType.CAPITAL_CONTRIBUTION.value and _blank(injection.partner_id):
        errors.append("Partner is required for capital contributions")

    return ValidationResult.of(errors)


def validate_github_settings(owner: Optional[str], repo: Optional[str], token: Optional[str]) -> ValidationResult:
    errors = []

    if _blank(owner):
        errors.append("Repository owner is required")
    if _blank(repo):
        errors.append("Repository name is required")
    if _blank(token):
        errors.append("Access token is required")
    elif len(token) < MIN_TOKEN_LENGTH:
        errors.append("GitHub token appears to be invalid (too short)")

    return ValidationResult.of(errors)


def validate_sufficient_stock(available: int, requested: int) -> ValidationResult:
    if requested > available:
        return ValidationResult.of([f"Insufficient stock. Available: {available}, Requested: {requested}"])
    return ValidationResult.of([])


def validate_unique_container_id(
    containers: List[Container],
    container_id: str,
    exclude_id: Optional[str] = None,
) -> ValidationResult:
    if any(c.id == container_id and c.id != exclude_id for c in containers):
        return ValidationResult.of([f'Container with ID "{container_id}" already exists'])
    return ValidationResult.of([])


def validate_data_integrity(document: LedgerDocument) -> ValidationResult:
    """
    Whole-document consistency scan: orphaned references, negative stock and
    duplicate ids. Meant for offline checks, nothing calls it implicitly.
    """
    errors = []
    container_ids = {c.id for c in document.containers}
    product_ids = {p.id for p in document.products}

    for product in document.products:
        if product.container_id and product.container_id not in container_ids:
            errors.append(f"Product {product.id} references non-existent container {product.container_id}")

    for sale in document.sales:
        if sale.product_id not in product_ids:
            errors.append(f"Sale {sale.id} references non-existent product {sale.product_id}")

    for product in document.products:
        if product.current_stock < 0:
            errors.append(f"Product {product.id} has negative stock: {product.current_stock}")

    duplicate_containers = _duplicates(c.id for c in document.containers)
    if duplicate_containers:
        errors.append(f"Duplicate container IDs found: {', '.join(duplicate_containers)}")

    duplicate_products = _duplicates(p.id for p in document.products)
    if duplicate_products:
        errors.append(f"Duplicate product IDs found: {', '.join(map(str, duplicate_products))}")

    return ValidationResult.of(errors)
