"""Ledger service: business rules over the in-memory ledger document.

All invariant checks run before the document is touched and every mutating
operation runs inside `transaction()`, so a failed operation leaves the
document exactly as it was. Persisting the document is the sync service's
job.
"""

import re
import threading
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

import structlog

from stockbook.application.services.finance_service import FinanceSyncResult
from stockbook.application.services.migration import migrate_document
from stockbook.application.services.validation import (
    ValidationResult,
    validate_cash_injection,
    validate_container,
    validate_expense,
    validate_ownership_total,
    validate_partner,
    validate_product,
    validate_sale,
    validate_unique_container_id,
    validate_withdrawal,
)
from stockbook.config import get_settings
from stockbook.core import clock
from stockbook.core.exceptions import (
    BusinessRuleViolationException,
    DuplicateEntityException,
    EntityNotFoundException,
    InsufficientStockError,
    ValidationFailedException,
)
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.finance import (
    CapitalAccount,
    CashFlow,
    CashFlowCreate,
    CashFlowUpdate,
    CashInjection,
    CashInjectionCreate,
    CashInjectionType,
    Partner,
    PartnerCreate,
    PartnerDistribution,
    PartnerUpdate,
    Withdrawal,
    WithdrawalCreate,
)
from stockbook.domain.schemas.inventory import (
    Container,
    ContainerCreate,
    ContainerLine,
    ContainerUpdate,
    Product,
    ProductCreate,
    ProductDestruction,
    ProductStats,
    ProductUpdate,
)
from stockbook.domain.schemas.sales import (
    PRODUCT_DESTRUCTION,
    Expense,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseUpdate,
    Sale,
    SaleCreate,
    SaleUpdate,
)

settings = get_settings()
logger = structlog.get_logger(__name__)

CONTAINER_ID = re.compile(r"^C(\d+)$")


# ---------------------------------------------------------------------------
# Landed cost arithmetic
# ---------------------------------------------------------------------------


def landed_cost_per_kg(line: ContainerLine, allocated_per_bag: float) -> float:
    """Purchase cost per kg plus the bag's share of shipping and customs."""
    return (line.cost_per_kg * line.bag_weight + allocated_per_bag) / line.bag_weight


def weighted_average_cost(
    current_stock: int,
    current_cost_per_kg: float,
    line: ContainerLine,
    allocated_per_bag: float,
) -> float:
    """Blended cost per kg after receiving `line` on top of the current stock."""
    if current_stock <= 0:
        return landed_cost_per_kg(line, allocated_per_bag)

    current_kg = current_stock * line.bag_weight
    total_kg = current_kg + line.kilograms
    total_value = (
        current_kg * current_cost_per_kg
        + line.kilograms * line.cost_per_kg
        + line.bag_quantity * allocated_per_bag
    )
    return total_value / total_kg


def reverse_weighted_average_cost(
    current_stock: int,
    current_cost_per_kg: float,
    line: ContainerLine,
    allocated_per_bag: float,
) -> float:
    """Cost per kg the product had before `line` was received."""
    remaining = current_stock - line.bag_quantity
    if remaining <= 0:
        return 0.0

    received_value = line.kilograms * line.cost_per_kg + line.bag_quantity * allocated_per_bag
    remaining_value = current_stock * line.bag_weight * current_cost_per_kg - received_value
    return max(0.0, remaining_value / (remaining * line.bag_weight))


def _ensure_valid(entity: str, result: ValidationResult) -> None:
    if not result.is_valid:
        raise ValidationFailedException(entity, result.errors)


def _in_range(day: date, start: Optional[date], end: Optional[date]) -> bool:
    return (start is None or day >= start) and (end is None or day <= end)


class LedgerService:
    """Owns one `LedgerDocument` and every rule that mutates it."""

    def __init__(self, document: Optional[LedgerDocument] = None):
        self.document = document or LedgerDocument()
        self._id_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "LedgerService":
        return cls(LedgerDocument.model_validate(migrate_document(payload)))

    def load(self, document: LedgerDocument) -> None:
        self.document = document

    def to_payload(self) -> Dict[str, Any]:
        return self.document.to_payload()

    def touch(self) -> None:
        self.document.metadata.last_updated = clock.now()

    @contextmanager
    def transaction(self, operation: str) -> Iterator[LedgerDocument]:
        """Run a mutation against the document, restoring it if anything raises."""
        snapshot = self.document.model_copy(deep=True)
        try:
            yield self.document
        except Exception:
            self.document = snapshot
            logger.warning("ledger_rolled_back", operation=operation)
            raise
        self.touch()

    # ------------------------------------------------------------------
    # Id counters
    # ------------------------------------------------------------------

    def next_id(self, kind: str) -> int:
        """Atomically read and advance the counter for `kind`."""
        with self._id_lock:
            next_ids = self.document.metadata.next_ids
            value = next_ids.get(kind, 1)
            next_ids[kind] = value + 1
            return value

    def ensure_id_above(self, kind: str, value: int) -> None:
        """Keep the counter for `kind` past an id that was assigned elsewhere."""
        with self._id_lock:
            next_ids = self.document.metadata.next_ids
            if next_ids.get(kind, 1) <= value:
                next_ids[kind] = value + 1

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def get_container(self, container_id: str) -> Optional[Container]:
        return next((c for c in self.document.containers if c.id == container_id), None)

    def _find_container(self, container_id: str) -> Container:
        container = self.get_container(container_id)
        if container is None:
            raise EntityNotFoundException(f'Container with ID "{container_id}" not found')
        return container

    def list_containers(self) -> List[Container]:
        return list(self.document.containers)

    def add_container(self, data: ContainerCreate) -> Container:
        """Record a shipment and receive its lines into stock."""
        if data.id:
            unique = validate_unique_container_id(self.document.containers, data.id)
            if not unique.is_valid:
                raise DuplicateEntityException(unique.errors[0])

        with self.transaction("add_container"):
            container_id = data.id
            if container_id:
                match = CONTAINER_ID.match(container_id)
                if match:
                    self.ensure_id_above("container", int(match.group(1)))
            else:
                taken = {c.id for c in self.document.containers}
                container_id = f"C{self.next_id('container')}"
                while container_id in taken:
                    container_id = f"C{self.next_id('container')}"

            container = Container(
                **data.model_dump(exclude={"id"}),
                id=container_id,
                created_at=clock.now(),
            )
            container.total_cost = container.compute_total_cost()
            _ensure_valid("container", validate_container(container))

            allocated = container.allocated_cost_per_bag
            for line in container.products:
                self.add_or_update_product_from_container(container.id, line, allocated)

            self.document.containers.append(container)

        logger.info(
            "container_added",
            container_id=container.id,
            lines=len(container.products),
            total_cost=round(container.total_cost, 2),
        )
        return container

    def add_or_update_product_from_container(
        self,
        container_id: str,
        line: ContainerLine,
        allocated_per_bag: float,
    ) -> Product:
        """Receive one container line: new product, or stock and blended cost update."""
        product = self.get_product(line.product_id) if line.product_id else None

        if product is None:
            if line.product_id:
                product_id = line.product_id
                self.ensure_id_above("product", product_id)
            else:
                product_id = self.next_id("product")

            extra = line.model_extra or {}
            product = Product(
                id=product_id,
                name=line.product_name or f"Product {product_id}",
                category=extra.get("category") or "General",
                current_stock=line.bag_quantity,
                cost_per_kg=landed_cost_per_kg(line, allocated_per_bag),
                bag_weight=line.bag_weight,
                container_id=container_id,
                created_at=clock.now(),
            )
            _ensure_valid("product", validate_product(product))
            self.document.products.append(product)
        else:
            product.cost_per_kg = weighted_average_cost(
                product.current_stock, product.cost_per_kg, line, allocated_per_bag
            )
            product.current_stock += line.bag_quantity
            product.bag_weight = line.bag_weight

        line.product_id = product.id
        line.product_name = line.product_name or product.name
        return product

    def _revert_line(self, line: ContainerLine, allocated_per_bag: float) -> None:
        product = self.get_product(line.product_id)
        if product is None:
            logger.warning("container_line_product_missing", product_id=line.product_id)
            return
        if product.current_stock < line.bag_quantity:
            raise BusinessRuleViolationException(
                f"Cannot revert container: would result in negative stock for {product.name} "
                f"(shortage: {line.bag_quantity - product.current_stock} bags)"
            )
        product.cost_per_kg = reverse_weighted_average_cost(
            product.current_stock, product.cost_per_kg, line, allocated_per_bag
        )
        product.current_stock -= line.bag_quantity

    def _shortages(self, container: Container) -> List[str]:
        needed: Dict[int, int] = {}
        for line in container.products:
            needed[line.product_id] = needed.get(line.product_id, 0) + line.bag_quantity

        shortages = []
        for product_id, bags in needed.items():
            product = self.get_product(product_id)
            if product is not None and product.current_stock < bags:
                shortages.append(f"{product.name} (shortage: {bags - product.current_stock} bags)")
        return shortages

    def update_container(self, container_id: str, updates: ContainerUpdate) -> Container:
        """
        Apply `updates` to a container.

        When the product lines or the shipping/customs costs change, every
        previously received line is reversed (stock and cost) and the new
        lines are received again, all in one transaction.
        """
        current = self._find_container(container_id)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)

        merged = Container.model_validate({**current.model_dump(), **changes, "id": current.id})
        merged.total_cost = merged.compute_total_cost()
        merged.updated_at = clock.now()
        _ensure_valid("container", validate_container(merged))

        restock = (
            [line.model_dump() for line in current.products] != [line.model_dump() for line in merged.products]
            or current.overhead != merged.overhead
        )

        with self.transaction("update_container"):
            if restock:
                old_allocation = current.allocated_cost_per_bag
                for line in reversed(current.products):
                    self._revert_line(line, old_allocation)

                new_allocation = merged.allocated_cost_per_bag
                for line in merged.products:
                    self.add_or_update_product_from_container(merged.id, line, new_allocation)

            index = next(i for i, c in enumerate(self.document.containers) if c.id == container_id)
            self.document.containers[index] = merged

        logger.info("container_updated", container_id=container_id, restocked=restock)
        return merged

    def delete_container(self, container_id: str) -> None:
        """
        Remove a container and take its stock back out.

        Blocked when any of its products has sales, or when reverting would
        leave a product with negative stock. Products created by this
        container that end up empty are removed with it.
        """
        container = self._find_container(container_id)

        sold = []
        for line in container.products:
            if any(s.product_id == line.product_id for s in self.document.sales):
                product = self.get_product(line.product_id)
                sold.append(product.name if product else f"Product ID {line.product_id}")
        if sold:
            raise BusinessRuleViolationException(
                "Cannot delete container: the following products from this container have "
                f"sales history: {', '.join(sold)}",
                {"products": sold},
            )

        shortages = self._shortages(container)
        if shortages:
            raise BusinessRuleViolationException(
                f"Cannot delete container: would result in negative stock for "
                f"{len(shortages)} product(s): {', '.join(shortages)}",
                {"shortages": shortages},
            )

        with self.transaction("delete_container"):
            allocation = container.allocated_cost_per_bag
            for line in reversed(container.products):
                self._revert_line(line, allocation)

            self.document.containers = [c for c in self.document.containers if c.id != container_id]

            still_referenced = {
                line.product_id for c in self.document.containers for line in c.products
            }
            self.document.products = [
                p for p in self.document.products
                if not (
                    p.container_id == container_id
                    and p.current_stock == 0
                    and p.id not in still_referenced
                )
            ]

        logger.info("container_deleted", container_id=container_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def get_product(self, product_id: Optional[int]) -> Optional[Product]:
        return next((p for p in self.document.products if p.id == product_id), None)

    def _find_product(self, product_id: int) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise EntityNotFoundException(f'Product with ID "{product_id}" not found')
        return product

    def list_products(self) -> List[Product]:
        return list(self.document.products)

    def add_product(self, data: ProductCreate) -> Product:
        with self.transaction("add_product"):
            product = Product(
                **data.model_dump(),
                id=self.next_id("product"),
                created_at=clock.now(),
            )
            _ensure_valid("product", validate_product(product))
            self.document.products.append(product)
        return product

    def update_product(self, product_id: int, updates: ProductUpdate) -> Product:
        current = self._find_product(product_id)
        updated = current.model_copy(update=updates.model_dump(exclude_unset=True, exclude_none=True))
        _ensure_valid("product", validate_product(updated))

        with self.transaction("update_product"):
            index = self.document.products.index(current)
            self.document.products[index] = updated
        return updated

    def delete_product(self, product_id: int) -> None:
        product = self._find_product(product_id)
        if any(s.product_id == product_id for s in self.document.sales):
            raise BusinessRuleViolationException("Cannot delete product with sales history")

        with self.transaction("delete_product"):
            self.document.products.remove(product)

    def destroy_product(self, data: ProductDestruction) -> Expense:
        """Write off damaged stock and record the loss as an expense at cost."""
        product = self._find_product(data.product_id)
        if data.quantity < 1:
            raise ValidationFailedException("destruction", ["Quantity must be a positive number"])
        if data.quantity > product.current_stock:
            raise InsufficientStockError(product.current_stock, data.quantity, product.id)

        with self.transaction("destroy_product"):
            expense = Expense(
                id=self.next_id("expense"),
                type=PRODUCT_DESTRUCTION,
                category=ExpenseCategory.LOSS_DAMAGE.value,
                description=f"Destroyed {data.quantity} bag(s) of {product.name} - {data.reason}",
                amount=data.quantity * product.cost_per_bag,
                date=data.date or clock.today(),
                time=data.time,
                notes=data.notes or data.reason,
                product_id=product.id,
                quantity=data.quantity,
                created_at=clock.now(),
            )
            _ensure_valid("expense", validate_expense(expense))
            product.current_stock -= data.quantity
            self.document.expenses.append(expense)

        logger.info("product_destroyed", product_id=product.id, quantity=data.quantity)
        return expense

    def search_products(self, query: str) -> List[Product]:
        needle = query.lower()
        return [
            p for p in self.document.products
            if needle in p.name.lower()
            or needle in (p.category or "").lower()
            or needle in (p.description or "").lower()
        ]

    def products_with_sales_stats(self) -> List[ProductStats]:
        stats = []
        for product in self.document.products:
            product_sales = self.sales_by_product(product.id)
            total_sold = sum(s.quantity for s in product_sales)
            total_revenue = sum(s.quantity * s.price_per_unit for s in product_sales)
            stats.append(ProductStats(
                **product.model_dump(),
                avg_selling_price=total_revenue / total_sold if total_sold else None,
                total_sold=total_sold,
                total_revenue=total_revenue,
            ))
        return stats

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def get_sale(self, sale_id: int) -> Optional[Sale]:
        return next((s for s in self.document.sales if s.id == sale_id), None)

    def _find_sale(self, sale_id: int) -> Sale:
        sale = self.get_sale(sale_id)
        if sale is None:
            raise EntityNotFoundException(f'Sale with ID "{sale_id}" not found')
        return sale

    def list_sales(self) -> List[Sale]:
        return list(self.document.sales)

    def add_sale(self, data: SaleCreate) -> Sale:
        """Sell bags from stock at the product's current cost per bag."""
        product = self._find_product(data.product_id)
        if product.current_stock < data.quantity:
            raise InsufficientStockError(product.current_stock, data.quantity, product.id)

        with self.transaction("add_sale"):
            cost_per_bag = product.cost_per_bag
            now = clock.now()
            sale = Sale(
                id=self.next_id("sale"),
                product_id=product.id,
                product_name=product.name,
                quantity=data.quantity,
                price_per_unit=data.price_per_unit,
                total_amount=data.quantity * data.price_per_unit,
                cost_per_unit=cost_per_bag,
                profit=(data.price_per_unit - cost_per_bag) * data.quantity,
                date=data.date or now.date(),
                time=data.time or now.strftime("%H:%M:%S"),
                notes=data.notes,
                created_at=now,
            )
            _ensure_valid("sale", validate_sale(sale))
            product.current_stock -= data.quantity
            self.document.sales.append(sale)

        logger.info("sale_added", sale_id=sale.id, product_id=product.id, quantity=sale.quantity)
        return sale

    def update_sale(self, sale_id: int, updates: SaleUpdate) -> Sale:
        """
        Change a sale's quantity, price or details.

        The sold quantity goes back to stock first and the new quantity is
        taken out again; totals are recomputed from the cost recorded on the
        sale. Any failure restores the previous stock.
        """
        current = self._find_sale(sale_id)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)

        with self.transaction("update_sale"):
            product = self.get_product(current.product_id)
            if product is None:
                raise EntityNotFoundException("Associated product not found")

            product.current_stock += current.quantity

            quantity = changes.get("quantity", current.quantity)
            price = changes.get("price_per_unit", current.price_per_unit)
            if product.current_stock < quantity:
                raise InsufficientStockError(product.current_stock, quantity, product.id)

            updated = current.model_copy(update={
                **changes,
                "total_amount": quantity * price,
                "profit": (price - current.cost_per_unit) * quantity,
            })
            _ensure_valid("sale", validate_sale(updated))

            product.current_stock -= quantity
            index = self.document.sales.index(current)
            self.document.sales[index] = updated

        return updated

    def delete_sale(self, sale_id: int) -> None:
        sale = self._find_sale(sale_id)
        with self.transaction("delete_sale"):
            product = self.get_product(sale.product_id)
            if product is not None:
                product.current_stock += sale.quantity
            self.document.sales.remove(sale)

    def sales_by_date_range(self, start: Optional[date], end: Optional[date]) -> List[Sale]:
        return [s for s in self.document.sales if _in_range(s.date, start, end)]

    def sales_by_product(self, product_id: int) -> List[Sale]:
        return [s for s in self.document.sales if s.product_id == product_id]

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        return next((e for e in self.document.expenses if e.id == expense_id), None)

    def _find_expense(self, expense_id: int) -> Expense:
        expense = self.get_expense(expense_id)
        if expense is None:
            raise EntityNotFoundException(f'Expense with ID "{expense_id}" not found')
        return expense

    def list_expenses(self) -> List[Expense]:
        return list(self.document.expenses)

    def add_expense(self, data: ExpenseCreate) -> Expense:
        with self.transaction("add_expense"):
            expense = Expense(
                **data.model_dump(exclude={"date"}),
                id=self.next_id("expense"),
                date=data.date or clock.today(),
                created_at=clock.now(),
            )
            _ensure_valid("expense", validate_expense(expense))
            self.document.expenses.append(expense)
        return expense

    def update_expense(self, expense_id: int, updates: ExpenseUpdate) -> Expense:
        current = self._find_expense(expense_id)
        updated = current.model_copy(update=updates.model_dump(exclude_unset=True, exclude_none=True))
        _ensure_valid("expense", validate_expense(updated))

        with self.transaction("update_expense"):
            index = self.document.expenses.index(current)
            self.document.expenses[index] = updated
        return updated

    def delete_expense(self, expense_id: int) -> None:
        expense = self._find_expense(expense_id)
        with self.transaction("delete_expense"):
            self.document.expenses.remove(expense)

    def expenses_by_date_range(self, start: Optional[date], end: Optional[date]) -> List[Expense]:
        return [e for e in self.document.expenses if _in_range(e.date, start, end)]

    def expenses_by_category(self, category: str) -> List[Expense]:
        return [e for e in self.document.expenses if e.category == category]

    # ------------------------------------------------------------------
    # Partners, withdrawals and cash injections
    # ------------------------------------------------------------------

    def get_partner(self, partner_id: str) -> Optional[Partner]:
        return next((p for p in self.document.partners if p.id == partner_id), None)

    def _find_partner(self, partner_id: str) -> Partner:
        partner = self.get_partner(partner_id)
        if partner is None:
            raise EntityNotFoundException(f'Partner with ID "{partner_id}" not found')
        return partner

    def list_partners(self) -> List[Partner]:
        return list(self.document.partners)

    def add_partner(self, data: PartnerCreate) -> Partner:
        _ensure_valid("partner", validate_ownership_total(self.document.partners, data.ownership_percent))

        with self.transaction("add_partner"):
            partner = Partner(
                id=f"P{self.next_id('partner')}",
                name=data.name,
                ownership_percent=data.ownership_percent,
                email=data.email,
                phone=data.phone,
                role=data.role,
                join_date=data.join_date or clock.today(),
                capital_account=CapitalAccount(initial_investment=data.initial_investment),
                created_at=clock.now(),
            )
            _ensure_valid("partner", validate_partner(partner))
            self.document.partners.append(partner)
        return partner

    def update_partner(self, partner_id: str, updates: PartnerUpdate) -> Partner:
        current = self._find_partner(partner_id)
        updated = current.model_copy(update=updates.model_dump(exclude_unset=True, exclude_none=True))
        if isinstance(updated.capital_account, dict):
            updated.capital_account = CapitalAccount.model_validate(updated.capital_account)

        _ensure_valid("partner", validate_partner(updated))
        if updated.active:
            _ensure_valid(
                "partner",
                validate_ownership_total(self.document.partners, updated.ownership_percent, exclude_id=partner_id),
            )

        with self.transaction("update_partner"):
            index = self.document.partners.index(current)
            self.document.partners[index] = updated
        return updated

    def delete_partner(self, partner_id: str) -> None:
        partner = self._find_partner(partner_id)
        if any(w.partner_id == partner_id for w in self.document.withdrawals):
            raise BusinessRuleViolationException("Cannot delete partner with withdrawal history")

        with self.transaction("delete_partner"):
            self.document.partners.remove(partner)

    def list_withdrawals(self, partner_id: Optional[str] = None) -> List[Withdrawal]:
        return [w for w in self.document.withdrawals if partner_id is None or w.partner_id == partner_id]

    def add_withdrawal(self, data: WithdrawalCreate) -> Withdrawal:
        partner = self._find_partner(data.partner_id)

        with self.transaction("add_withdrawal"):
            withdrawal = Withdrawal(
                **data.model_dump(exclude={"date"}),
                id=f"W{self.next_id('withdrawal')}",
                date=data.date or clock.today(),
                created_at=clock.now(),
            )
            _ensure_valid("withdrawal", validate_withdrawal(withdrawal))
            partner.capital_account.total_withdrawn += withdrawal.amount
            self.document.withdrawals.append(withdrawal)

        logger.info("withdrawal_added", withdrawal_id=withdrawal.id, partner_id=partner.id)
        return withdrawal

    def delete_withdrawal(self, withdrawal_id: str) -> None:
        withdrawal = next((w for w in self.document.withdrawals if w.id == withdrawal_id), None)
        if withdrawal is None:
            raise EntityNotFoundException(f'Withdrawal with ID "{withdrawal_id}" not found')

        with self.transaction("delete_withdrawal"):
            partner = self.get_partner(withdrawal.partner_id)
            if partner is not None:
                account = partner.capital_account
                account.total_withdrawn = max(0.0, account.total_withdrawn - withdrawal.amount)
            self.document.withdrawals.remove(withdrawal)

    def list_cash_injections(self) -> List[CashInjection]:
        return list(self.document.cash_injections)

    def add_cash_injection(self, data: CashInjectionCreate) -> CashInjection:
        partner = self._find_partner(data.partner_id) if data.partner_id else None

        with self.transaction("add_cash_injection"):
            injection = CashInjection(
                **data.model_dump(exclude={"date"}),
                id=f"CI{self.next_id('cashInjection')}",
                date=data.date or clock.today(),
                created_at=clock.now(),
            )
            _ensure_valid("cash injection", validate_cash_injection(injection))
            if partner is not None and injection.type == CashInjectionType.CAPITAL_CONTRIBUTION.value:
                partner.capital_account.additional_contributions += injection.amount
            self.document.cash_injections.append(injection)
        return injection

    def delete_cash_injection(self, injection_id: str) -> None:
        injection = next((ci for ci in self.document.cash_injections if ci.id == injection_id), None)
        if injection is None:
            raise EntityNotFoundException(f'Cash injection with ID "{injection_id}" not found')

        with self.transaction("delete_cash_injection"):
            partner = self.get_partner(injection.partner_id) if injection.partner_id else None
            if partner is not None and injection.type == CashInjectionType.CAPITAL_CONTRIBUTION.value:
                account = partner.capital_account
                account.additional_contributions = max(0.0, account.additional_contributions - injection.amount)
            self.document.cash_injections.remove(injection)

    # ------------------------------------------------------------------
    # Cash flows
    # ------------------------------------------------------------------

    def get_cash_flow(self, cash_flow_id: str) -> Optional[CashFlow]:
        return next((cf for cf in self.document.cash_flows if cf.id == cash_flow_id), None)

    def cash_flow_for(self, day: date) -> Optional[CashFlow]:
        return next((cf for cf in self.document.cash_flows if cf.date == day), None)

    def list_cash_flows(self) -> List[CashFlow]:
        return sorted(self.document.cash_flows, key=lambda cf: cf.date)

    def add_cash_flow(self, data: CashFlowCreate) -> CashFlow:
        if self.cash_flow_for(data.date) is not None:
            raise DuplicateEntityException(f"A cash flow record for {data.date.isoformat()} already exists")

        with self.transaction("add_cash_flow"):
            cash_flow = CashFlow(**data.model_dump(), id=f"CF{self.next_id('cashFlow')}")
            self.document.cash_flows.append(cash_flow)
        return cash_flow

    def update_cash_flow(self, cash_flow_id: str, updates: CashFlowUpdate) -> CashFlow:
        current = self.get_cash_flow(cash_flow_id)
        if current is None:
            raise EntityNotFoundException(f'Cash flow with ID "{cash_flow_id}" not found')

        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        updated = current.model_copy(update=changes)
        if "actual_balance" in changes and "discrepancy" not in changes and updated.actual_balance is not None:
            updated.discrepancy = updated.actual_balance - updated.theoretical_balance

        with self.transaction("update_cash_flow"):
            index = self.document.cash_flows.index(current)
            self.document.cash_flows[index] = updated
        return updated

    def delete_cash_flow(self, cash_flow_id: str) -> None:
        cash_flow = self.get_cash_flow(cash_flow_id)
        if cash_flow is None:
            raise EntityNotFoundException(f'Cash flow with ID "{cash_flow_id}" not found')
        with self.transaction("delete_cash_flow"):
            self.document.cash_flows.remove(cash_flow)

    def reconcile_day(
        self,
        day: date,
        actual_balance: float,
        reconciled_by: str,
        notes: Optional[str] = None,
    ) -> CashFlow:
        """Record the counted cash for `day` against its theoretical balance."""
        cash_flow = self.cash_flow_for(day)
        if cash_flow is None:
            raise EntityNotFoundException(f"No cash flow record for {day.isoformat()}")

        with self.transaction("reconcile_day"):
            cash_flow.actual_balance = actual_balance
            cash_flow.discrepancy = actual_balance - cash_flow.theoretical_balance
            cash_flow.reconciled = True
            cash_flow.reconciled_by = reconciled_by
            cash_flow.reconciled_at = clock.now()
            if notes is not None:
                cash_flow.notes = notes

        logger.info("day_reconciled", day=day.isoformat(), discrepancy=round(cash_flow.discrepancy, 2))
        return cash_flow

    def apply_finance_sync(self, result: FinanceSyncResult) -> None:
        """Replace the cash-flow history with a rebuilt one; partners stay as they are."""
        with self.transaction("apply_finance_sync"):
            if result.cash_flows:
                self.document.cash_flows = [cf.model_copy(deep=True) for cf in result.cash_flows]
            self.document.metadata.financial_summary = result.financial_summary

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def total_inventory_value(self) -> float:
        return sum(p.stock_value for p in self.document.products)

    def total_sales_revenue(self, start: Optional[date] = None, end: Optional[date] = None) -> float:
        return sum(s.total_amount for s in self.sales_by_date_range(start, end))

    def total_expenses(self, start: Optional[date] = None, end: Optional[date] = None) -> float:
        return sum(e.amount for e in self.expenses_by_date_range(start, end))

    def total_profit(self, start: Optional[date] = None, end: Optional[date] = None) -> float:
        return sum(s.profit for s in self.sales_by_date_range(start, end))

    def low_stock_products(self, threshold: Optional[int] = None) -> List[Product]:
        threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
        return [p for p in self.document.products if p.current_stock <= threshold]

    def top_selling_products(self, limit: int = 10) -> List[Dict[str, Any]]:
        totals: Dict[int, Dict[str, Any]] = {}
        for sale in self.document.sales:
            entry = totals.setdefault(sale.product_id, {
                "product_id": sale.product_id,
                "product_name": sale.product_name,
                "total_quantity": 0,
                "total_revenue": 0.0,
            })
            entry["total_quantity"] += sale.quantity
            entry["total_revenue"] += sale.total_amount

        ranked = sorted(totals.values(), key=lambda e: e["total_quantity"], reverse=True)
        return ranked[:limit]

    def current_cash_position(self, today: Optional[date] = None) -> float:
        """Last closed day's theoretical balance plus today's movements."""
        today = today or clock.today()

        closed = [cf for cf in self.document.cash_flows if cf.date < today]
        opening = max(closed, key=lambda cf: cf.date).theoretical_balance if closed else 0.0

        cash_in = sum(s.total_amount for s in self.document.sales if s.date == today)
        cash_out = (
            sum(e.amount for e in self.document.expenses if e.date == today)
            + sum(w.amount for w in self.document.withdrawals if w.date == today)
        )
        return opening + cash_in - cash_out

    def available_for_distribution(self, today: Optional[date] = None) -> float:
        return max(0.0, self.current_cash_position(today) - settings.MIN_CASH_RESERVE)

    def partner_distributions(self, amount: float) -> List[PartnerDistribution]:
        """Split `amount` between active partners by ownership."""
        distributions = []
        for partner in self.document.partners:
            if not partner.active:
                continue
            share = amount * partner.ownership_percent / 100
            total_withdrawn = sum(w.amount for w in self.list_withdrawals(partner.id))
            account = partner.capital_account
            current_equity = (
                account.initial_investment
                + account.additional_contributions
                + account.profit_share
                - total_withdrawn
            )
            distributions.append(PartnerDistribution(
                partner_id=partner.id,
                partner_name=partner.name,
                ownership_percent=partner.ownership_percent,
                share=share,
                total_withdrawn=total_withdrawn,
                current_equity=current_equity,
                after_distribution=current_equity - share,
            ))
        return distributions
