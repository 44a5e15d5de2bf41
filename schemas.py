"""
Database Schemas for the Storefront

Each Pydantic model that is stored represents a collection in MongoDB. The collection
name is the lowercase of the class name (e.g., Product -> "product").
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Attribute name -> selected option. Covers exactly the product's non-degenerate attributes.
ValueTuple = Dict[str, str]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Attribute(BaseModel):
    """A named axis of variation, e.g. Size with options S, M, L."""
    name: str = ""
    options: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("options")
    @classmethod
    def clean_options(cls, value: List[str]) -> List[str]:
        # Same cleanup the product form applies to "S, M, L"
        stripped = [opt.strip() for opt in value if opt and opt.strip()]
        return list(dict.fromkeys(stripped))

    @property
    def is_degenerate(self) -> bool:
        return not self.name or not self.options


class Variant(BaseModel):
    id: str = Field(..., description="Opaque id, stable for a given value tuple")
    values: ValueTuple = Field(default_factory=dict)
    stock: int = Field(0, ge=0)
    price: Optional[float] = Field(None, gt=0, description="Overrides the product base price when set")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    id: Optional[str] = Field(None, description="Assigned by the repository on create")
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field("", description="Product description")
    category: str = Field(..., min_length=1, description="Category slug")
    images: List[str] = Field(default_factory=list)
    base_price: float = Field(..., ge=0, description="Price used when a variant has no override")
    base_stock: int = Field(0, ge=0, description="Authoritative stock for products without variants")
    attributes: List[Attribute] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)

    @property
    def total_stock(self) -> int:
        if not self.variants:
            return self.base_stock
        return sum(v.stock for v in self.variants)


class CartLine(BaseModel):
    product_id: str
    name: str
    image: Optional[str] = None
    unit_price: float = Field(..., ge=0, description="Snapshot taken when the line was created")
    values: ValueTuple = Field(default_factory=dict)
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    """
    Shopping cart collection schema
    Collection name: "cart"
    """
    cart_id: str
    items: List[CartLine] = Field(default_factory=list)


class Address(BaseModel):
    street: str
    city: str
    zip_code: str = ""
    country: str = "Chile"

    @field_validator("street", "city")
    @classmethod
    def required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class OrderItem(BaseModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int = Field(..., ge=1)
    values: ValueTuple = Field(default_factory=dict)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    id: Optional[str] = None
    cart_id: str
    items: List[OrderItem]
    items_price: float
    shipping_price: float
    total: float
    status: str = Field("pending", description="Order status: pending, processing, shipped, delivered, cancelled")
    shipping_address: Address
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("status")
    @classmethod
    def known_status(cls, value: str) -> str:
        if value not in ORDER_STATUSES:
            raise ValueError(f"unknown order status: {value}")
        return value
