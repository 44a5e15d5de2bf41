"""
Cart ledger: line items keyed by product and selected options, with stock-checked
mutations and totals recomputed on every read.

The ledger never touches storage. The host loads lines into it, calls the mutation
methods and saves ``snapshot()`` after each successful change.
"""

import json
import logging
import os
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from inventory import InventoryIndex
from schemas import CartLine, OrderItem, Product, ValueTuple

logger = logging.getLogger(__name__)

# Looks up the current product for a cart line, None when it no longer exists.
Catalog = Callable[[str], Optional[Product]]

STOCK_EXCEEDED = "stock_exceeded"
INVALID_QUANTITY = "invalid_quantity"

FREE_SHIPPING_THRESHOLD = 50000
FLAT_SHIPPING_RATE = 3500


class ShippingPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    free_threshold: float = FREE_SHIPPING_THRESHOLD
    flat_rate: float = FLAT_SHIPPING_RATE

    @classmethod
    def from_env(cls) -> "ShippingPolicy":
        return cls(
            free_threshold=float(os.getenv("FREE_SHIPPING_THRESHOLD", FREE_SHIPPING_THRESHOLD)),
            flat_rate=float(os.getenv("FLAT_SHIPPING_RATE", FLAT_SHIPPING_RATE)),
        )

    def cost(self, subtotal: float, empty: bool) -> float:
        if empty or subtotal >= self.free_threshold:
            return 0
        return self.flat_rate


class AddResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: Optional[str] = None
    available: Optional[int] = None

    def __bool__(self) -> bool:
        return self.ok


def clean_selection(selection: Optional[Mapping[str, str]]) -> ValueTuple:
    return {k: v for k, v in (selection or {}).items() if v}


def fingerprint(product_id: str, selection: Optional[Mapping[str, str]] = None) -> str:
    # Sorted pairs so that {"Size": "M", "Color": "Red"} and {"Color": "Red", "Size": "M"} collide
    return json.dumps([product_id, sorted(clean_selection(selection).items())], separators=(",", ":"))


class CartLedger:
    def __init__(
        self,
        lines: Iterable[Union[CartLine, dict]] = (),
        catalog: Optional[Catalog] = None,
        shipping: Optional[ShippingPolicy] = None,
    ):
        self._lines: List[CartLine] = [CartLine.model_validate(line).model_copy() for line in lines]
        self._catalog = catalog
        self.shipping = shipping or ShippingPolicy.from_env()

    # Lines

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines))

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> List[CartLine]:
        return [line.model_copy() for line in self._lines]

    def find(self, product_id: str, selection: Optional[Mapping[str, str]] = None) -> Optional[CartLine]:
        key = fingerprint(product_id, selection)
        for line in self._lines:
            if fingerprint(line.product_id, line.values) == key:
                return line
        return None

    def _resolve(self, product_id: str, selection: Optional[Mapping[str, str]]):
        """Current product (None when unknown) and the selection keyed the way `add` keys it."""
        product = self._catalog(product_id) if self._catalog is not None else None
        if product is None:
            return None, clean_selection(selection)
        return product, InventoryIndex(product).normalize(selection)

    def quantity_of(self, product_id: str, selection: Optional[Mapping[str, str]] = None) -> int:
        _, values = self._resolve(product_id, selection)
        line = self.find(product_id, values)
        return line.quantity if line is not None else 0

    # Mutations

    def add(self, product: Product, quantity: int = 1, selection: Optional[Mapping[str, str]] = None) -> AddResult:
        """Add ``quantity`` units of the selected variant, or refuse when stock is short."""
        if quantity < 1:
            return AddResult(ok=False, reason=INVALID_QUANTITY)

        index = InventoryIndex(product)
        values = index.normalize(selection)
        ceiling = index.stock_for(values)
        line = self.find(product.id, values)
        existing = line.quantity if line is not None else 0
        if existing + quantity > ceiling:
            logger.warning(
                "rejecting add of %d x %s %s: %d in cart, %d available",
                quantity, product.id, values, existing, ceiling,
            )
            return AddResult(ok=False, reason=STOCK_EXCEEDED, available=max(0, ceiling - existing))

        if line is not None:
            line.quantity += quantity
        else:
            self._lines.append(CartLine(
                product_id=product.id,
                name=product.name,
                image=product.images[0] if product.images else None,
                unit_price=index.price_for(values),
                values=values,
                quantity=quantity,
            ))
        logger.info("added %d x %s %s", quantity, product.id, values)
        return AddResult(ok=True)

    def update_quantity(self, product_id: str, delta: int, selection: Optional[Mapping[str, str]] = None) -> bool:
        """Step a line's quantity by ``delta``.

        Returns True when the ledger changed. A missing line is a no-op, a result of zero or
        less removes the line, and an increment past the current stock is ignored.
        """
        product, values = self._resolve(product_id, selection)
        line = self.find(product_id, values)
        if line is None or delta == 0:
            return False

        new_quantity = line.quantity + delta
        if new_quantity <= 0:
            self._lines.remove(line)
            logger.info("removed %s %s after quantity step", product_id, line.values)
            return True

        if delta > 0:
            ceiling = InventoryIndex(product).stock_for(line.values) if product is not None else 0
            if new_quantity > ceiling:
                logger.warning("rejecting step of %s %s to %d: %d available", product_id, line.values, new_quantity, ceiling)
                return False

        line.quantity = new_quantity
        return True

    def remove(self, product_id: str, selection: Optional[Mapping[str, str]] = None) -> bool:
        _, values = self._resolve(product_id, selection)
        line = self.find(product_id, values)
        if line is None:
            return False
        self._lines.remove(line)
        logger.info("removed %s %s", product_id, line.values)
        return True

    def clear(self) -> None:
        self._lines = []

    # Totals, always derived from the current lines

    @property
    def subtotal(self) -> float:
        return sum(line.unit_price * line.quantity for line in self._lines)

    @property
    def shipping_cost(self) -> float:
        return self.shipping.cost(self.subtotal, empty=not self._lines)

    @property
    def total(self) -> float:
        return self.subtotal + self.shipping_cost

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    # Boundary shapes

    def order_items(self) -> List[OrderItem]:
        return [
            OrderItem(
                product_id=line.product_id,
                name=line.name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                values=dict(line.values),
            )
            for line in self._lines
        ]

    def snapshot(self) -> List[dict]:
        return [line.model_dump() for line in self._lines]

    def restore(self, snapshot: Iterable[Union[CartLine, dict]]) -> None:
        self._lines = [CartLine.model_validate(line).model_copy() for line in snapshot]

    def summary(self) -> dict:
        return {
            "items": self.snapshot(),
            "subtotal": self.subtotal,
            "shipping_cost": self.shipping_cost,
            "total": self.total,
            "item_count": self.item_count,
        }
