"""Pydantic schemas for containers (import shipments) and products."""

import datetime as dt
from datetime import date, datetime
from typing import List, Optional

from pydantic import Field

from stockbook.domain.schemas.base import CamelInput, CamelModel

BAG_WEIGHTS = (20, 25)
DEFAULT_BAG_WEIGHT = 25


class ContainerLine(CamelModel):
    """One product received in a container."""

    product_id: Optional[int] = None  # None: create a new product with a fresh id
    product_name: str = ""
    bag_quantity: int
    cost_per_kg: float
    bag_weight: float = DEFAULT_BAG_WEIGHT

    @property
    def kilograms(self) -> float:
        return self.bag_quantity * self.bag_weight

    @property
    def line_cost(self) -> float:
        return self.kilograms * self.cost_per_kg


class ContainerBase(CamelModel):
    supplier: str
    purchase_date: date
    shipping_date: Optional[date] = None
    arrival_date: Optional[date] = None
    invoice_number: Optional[str] = None
    shipping_cost: float = 0.0
    customs_cost: float = 0.0
    notes: Optional[str] = None
    products: List[ContainerLine] = Field(default_factory=list)


class ContainerCreate(ContainerBase, CamelInput):
    id: Optional[str] = None


class ContainerUpdate(CamelInput):
    supplier: Optional[str] = None
    purchase_date: Optional[date] = None
    shipping_date: Optional[date] = None
    arrival_date: Optional[date] = None
    invoice_number: Optional[str] = None
    shipping_cost: Optional[float] = None
    customs_cost: Optional[float] = None
    notes: Optional[str] = None
    products: Optional[List[ContainerLine]] = None


class Container(ContainerBase):
    id: str
    total_cost: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def total_bags(self) -> int:
        return sum(line.bag_quantity for line in self.products)

    @property
    def overhead(self) -> float:
        return (self.shipping_cost or 0.0) + (self.customs_cost or 0.0)

    @property
    def allocated_cost_per_bag(self) -> float:
        """Shipping + customs spread evenly over every bag in the shipment."""
        total_bags = self.total_bags
        return self.overhead / total_bags if total_bags > 0 else 0.0

    @property
    def cash_date(self) -> date:
        return self.arrival_date or self.purchase_date

    def compute_total_cost(self) -> float:
        return sum(line.line_cost for line in self.products) + self.overhead


class ProductBase(CamelModel):
    name: str
    category: str = "General"
    current_stock: int = 0
    cost_per_kg: float = 0.0
    bag_weight: float = DEFAULT_BAG_WEIGHT
    description: str = ""
    container_id: Optional[str] = None


class ProductCreate(ProductBase, CamelInput):
    pass


class ProductUpdate(CamelInput):
    name: Optional[str] = None
    category: Optional[str] = None
    current_stock: Optional[int] = None
    cost_per_kg: Optional[float] = None
    bag_weight: Optional[float] = None
    description: Optional[str] = None


class Product(ProductBase):
    id: int
    created_at: Optional[datetime] = None

    @property
    def cost_per_bag(self) -> float:
        return self.cost_per_kg * self.bag_weight

    @property
    def stock_value(self) -> float:
        return self.current_stock * self.cost_per_bag


class ProductStats(Product):
    avg_selling_price: Optional[float] = None
    total_sold: int = 0
    total_revenue: float = 0.0


class ProductDestruction(CamelInput):
    product_id: int
    quantity: int
    reason: str
    notes: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
