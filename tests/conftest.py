import pytest

from cart import ShippingPolicy
from schemas import Attribute, Product, Variant


def make_variant_product(stock=None, prices=None, product_id="tee"):
    """T-shirt with Size S/M and Color Red/Blue. ``stock`` maps (size, color) to units."""
    stock = stock or {}
    prices = prices or {}
    variants = [
        Variant(
            id=f"{size}-{color}",
            values={"Size": size, "Color": color},
            stock=stock.get((size, color), 0),
            price=prices.get((size, color)),
        )
        for size in ("S", "M")
        for color in ("Red", "Blue")
    ]
    return Product(
        id=product_id,
        name="Oversize Tee",
        description="Heavy cotton tee",
        category="clothing",
        images=["https://img.example/tee.jpg"],
        base_price=9990,
        attributes=[Attribute(name="Size", options=["S", "M"]), Attribute(name="Color", options=["Red", "Blue"])],
        variants=variants,
    )


def make_simple_product(base_stock=5, base_price=25000, product_id="mouse"):
    return Product(
        id=product_id,
        name="Wireless Mouse",
        description="Tech accessory",
        category="technology",
        base_price=base_price,
        base_stock=base_stock,
    )


@pytest.fixture
def tee():
    return make_variant_product(stock={("S", "Red"): 2, ("M", "Red"): 5, ("M", "Blue"): 1})


@pytest.fixture
def mouse():
    return make_simple_product()


@pytest.fixture
def shipping():
    return ShippingPolicy(free_threshold=50000, flat_rate=3500)
