"""
Variant generation for products with attributes.

Attributes are expanded into the cartesian product of their options, first attribute
varying slowest. When an operator edits attributes the new combinations are reconciled
against the previous variants so that stock and price entered for an unchanged
combination survive the edit.
"""

import itertools
import logging
import uuid
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from schemas import Attribute, Product, ValueTuple, Variant

logger = logging.getLogger(__name__)

TupleKey = FrozenSet[Tuple[str, str]]


class VariantConfigurationError(ValueError):
    """The product's attributes and variants cannot be saved as they are."""


class IncompleteVariantConfiguration(VariantConfigurationError):
    """Attributes are configured but they produce no variants."""


def tuple_key(values: ValueTuple) -> TupleKey:
    # Equal key sets with equal values per key compare equal, regardless of order
    return frozenset(values.items())


def active_attributes(attributes: Sequence[Attribute]) -> List[Attribute]:
    return [attr for attr in attributes if not attr.is_degenerate]


def generate(attributes: Sequence[Attribute]) -> List[ValueTuple]:
    active = active_attributes(attributes)
    if not active:
        return []
    names = [attr.name for attr in active]
    return [dict(zip(names, combo)) for combo in itertools.product(*(attr.options for attr in active))]


def new_variant_id() -> str:
    return uuid.uuid4().hex


def reconcile(new_tuples: Sequence[ValueTuple], previous_variants: Sequence[Variant]) -> List[Variant]:
    """Build the variant list for ``new_tuples``.

    A tuple that matches a previous variant keeps that variant's id, stock and price.
    Any other tuple gets a fresh id, zero stock and no price override. Previous variants
    whose tuple is gone are dropped.
    """
    previous: Dict[TupleKey, Variant] = {tuple_key(v.values): v for v in previous_variants}
    result = []
    preserved = 0
    for values in new_tuples:
        match = previous.get(tuple_key(values))
        if match is not None:
            preserved += 1
            result.append(Variant(id=match.id, values=dict(values), stock=match.stock, price=match.price))
        else:
            result.append(Variant(id=new_variant_id(), values=dict(values), stock=0))

    assert len({v.id for v in result}) == len(result), "duplicate variant ids after reconcile"
    logger.debug(
        "reconciled %d combinations: %d preserved, %d new, %d dropped",
        len(result), preserved, len(result) - preserved, len(previous) - preserved,
    )
    return result


def check_attribute_names(attributes: Sequence[Attribute]) -> None:
    names = []
    for attr in attributes:
        if not attr.name and attr.options:
            raise VariantConfigurationError("attribute with options must have a name")
        if attr.name:
            names.append(attr.name)
    if len(set(names)) != len(names):
        raise VariantConfigurationError("attribute names must be unique")


def regenerate(product: Product, attributes: Optional[Sequence[Attribute]] = None) -> Product:
    """Return a copy of ``product`` with variants regenerated from ``attributes``.

    Uses the product's own attributes when none are given. Only attribute names are
    checked, so an operator can keep editing an incomplete draft.
    """
    attrs = list(attributes) if attributes is not None else list(product.attributes)
    check_attribute_names(attrs)
    variants = reconcile(generate(attrs), product.variants)
    return product.model_copy(update={"attributes": attrs, "variants": variants})


def validate_product(product: Product) -> Product:
    """Check that ``product`` is safe to save. Returns it unchanged or raises."""
    check_attribute_names(product.attributes)
    for attr in product.attributes:
        if attr.name and not attr.options:
            raise IncompleteVariantConfiguration(f"attribute {attr.name!r} has no options")

    expected = generate(product.attributes)
    if not expected:
        if product.variants:
            raise VariantConfigurationError("product without attributes cannot have variants")
        return product
    if not product.variants:
        raise IncompleteVariantConfiguration("incomplete variant configuration: generate combinations before saving")

    keys = [tuple_key(v.values) for v in product.variants]
    assert len({v.id for v in product.variants}) == len(product.variants), "duplicate variant ids"
    if len(set(keys)) != len(keys):
        raise VariantConfigurationError("duplicate variant combinations")
    if set(keys) != {tuple_key(values) for values in expected}:
        raise VariantConfigurationError("variants do not match attribute combinations; regenerate them")
    return product
