"""
Read-only stock view of a product, plus the stock decrement applied after an order.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from schemas import OrderItem, Product, ValueTuple, Variant
from variants import active_attributes, tuple_key

logger = logging.getLogger(__name__)


class InventoryIndex:
    """Answers stock and selectability questions for one product.

    Products without variants always report their base stock. For variant products a
    selection must name an option for every attribute before it has any stock.
    """

    def __init__(self, product: Product):
        self.product = product
        self.dimensions: List[str] = [attr.name for attr in active_attributes(product.attributes)]
        self._variants = {tuple_key(v.values): v for v in product.variants}

    @property
    def has_variants(self) -> bool:
        return bool(self.product.variants)

    def normalize(self, selection: Optional[Mapping[str, str]]) -> ValueTuple:
        """Keep only the selected options that belong to this product's attributes."""
        if not self.has_variants:
            return {}
        selection = selection or {}
        return {name: selection[name] for name in self.dimensions if selection.get(name)}

    def is_selection_complete(self, selection: Optional[Mapping[str, str]]) -> bool:
        return len(self.normalize(selection)) == len(self.dimensions)

    def find_variant(self, selection: Optional[Mapping[str, str]]) -> Optional[Variant]:
        if not self.has_variants or not self.is_selection_complete(selection):
            return None
        values = self.normalize(selection)
        variant = self._variants.get(tuple_key(values))
        if variant is None:
            logger.warning("product %s has no variant for complete selection %s", self.product.id, values)
        return variant

    def stock_for(self, selection: Optional[Mapping[str, str]] = None) -> int:
        if not self.has_variants:
            return self.product.base_stock
        variant = self.find_variant(selection)
        return variant.stock if variant is not None else 0

    def price_for(self, selection: Optional[Mapping[str, str]] = None) -> float:
        variant = self.find_variant(selection)
        if variant is not None and variant.price is not None:
            return variant.price
        return self.product.base_price

    def is_selectable(self, attribute_name: str, option: str, current_selection: Optional[Mapping[str, str]] = None) -> bool:
        if not self.has_variants:
            return True
        current = current_selection or {}
        others = [name for name in self.dimensions if name != attribute_name]
        if all(current.get(name) for name in others):
            values = {name: current[name] for name in others}
            values[attribute_name] = option
            variant = self._variants.get(tuple_key(values))
            return variant is not None and variant.stock > 0
        # Not every other attribute is chosen yet: only rule out options with no stock at all
        return any(v.values.get(attribute_name) == option and v.stock > 0 for v in self.product.variants)

    def option_matrix(self, current_selection: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, bool]]:
        return {
            attr.name: {opt: self.is_selectable(attr.name, opt, current_selection) for opt in attr.options}
            for attr in active_attributes(self.product.attributes)
        }

    def default_selection(self) -> ValueTuple:
        return {attr.name: attr.options[0] for attr in active_attributes(self.product.attributes)}

    @property
    def aggregate_stock(self) -> int:
        return self.product.total_stock


def decrement_stock(product: Product, quantity: int, values: Optional[Mapping[str, str]] = None) -> Product:
    index = InventoryIndex(product)
    if not index.has_variants:
        return product.model_copy(update={"base_stock": max(0, product.base_stock - quantity)})

    target = index.find_variant(values)
    if target is None:
        logger.warning("cannot decrement product %s: no variant for %s", product.id, dict(values or {}))
        return product
    variants = [
        v.model_copy(update={"stock": max(0, v.stock - quantity)}) if v.id == target.id else v
        for v in product.variants
    ]
    return product.model_copy(update={"variants": variants})


def apply_stock_decrements(products: Iterable[Product], items: Iterable[OrderItem]) -> List[Product]:
    """Return ``products`` with each fulfilled item's stock taken out, floored at zero."""
    by_id = {p.id: p for p in products}
    for item in items:
        product = by_id.get(item.product_id)
        if product is None:
            logger.warning("cannot decrement unknown product %s", item.product_id)
            continue
        by_id[item.product_id] = decrement_stock(product, item.quantity, item.values)
    return list(by_id.values())
