import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from cart import STOCK_EXCEEDED, CartLedger, ShippingPolicy
from database import (
    CartStore,
    InMemoryCartStore,
    InMemoryOrderStore,
    InMemoryProductRepository,
    MongoCartStore,
    MongoOrderStore,
    MongoProductRepository,
    OrderStore,
    ProductRepository,
    db,
)
from inventory import InventoryIndex, apply_stock_decrements
from schemas import ORDER_STATUSES, Address, Attribute, Order, Product, ValueTuple
from variants import VariantConfigurationError, regenerate, validate_product

logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Storage: MongoDB when DATABASE_URL is set, process memory otherwise

if db is not None:
    product_repository = MongoProductRepository(db)
    cart_store = MongoCartStore(db)
    order_store = MongoOrderStore(db)
else:
    product_repository = InMemoryProductRepository()
    cart_store = InMemoryCartStore()
    order_store = InMemoryOrderStore()


def get_products() -> ProductRepository:
    return product_repository


def get_carts() -> CartStore:
    return cart_store


def get_orders() -> OrderStore:
    return order_store


def get_shipping() -> ShippingPolicy:
    return ShippingPolicy.from_env()


# Helpers

def load_ledger(cart_id: str, carts: CartStore, products: ProductRepository, shipping: ShippingPolicy) -> CartLedger:
    return CartLedger(carts.load(cart_id), catalog=products.get, shipping=shipping)


def find_product(products: ProductRepository, product_id: str) -> Product:
    product = products.get(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def checked(product: Product) -> Product:
    try:
        return validate_product(product)
    except VariantConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))


def product_view(product: Product) -> dict:
    data = product.model_dump()
    data["total_stock"] = product.total_stock
    return data


@app.get("/")
def read_root():
    return {"message": "Storefront API running"}


# Products
@app.get("/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, products: ProductRepository = Depends(get_products)):
    items = products.list()
    if category:
        items = [p for p in items if p.category == category]
    if q:
        needle = q.lower().strip()
        items = [p for p in items if needle in p.name.lower() or needle in p.description.lower()]
    return [product_view(p) for p in items]


@app.post("/products", status_code=201)
def create_product(payload: Product, products: ProductRepository = Depends(get_products)):
    product = products.create(checked(payload.model_copy(update={"id": None})))
    logger.info("created product %s", product.id)
    return product_view(product)


@app.put("/products/{product_id}")
def replace_product(product_id: str, payload: Product, products: ProductRepository = Depends(get_products)):
    product = products.replace(product_id, checked(payload))
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("replaced product %s", product_id)
    return product_view(product)


@app.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, products: ProductRepository = Depends(get_products)):
    if not products.delete(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("deleted product %s", product_id)


class RegenerateRequest(BaseModel):
    attributes: List[Attribute]


@app.post("/products/{product_id}/variants/regenerate")
def regenerate_variants(product_id: str, payload: RegenerateRequest, products: ProductRepository = Depends(get_products)):
    # Draft only: the operator edits stock on the result and saves it with PUT
    product = find_product(products, product_id)
    try:
        draft = regenerate(product, payload.attributes)
    except VariantConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return product_view(draft)


class SelectionRequest(BaseModel):
    values: ValueTuple = Field(default_factory=dict)


@app.post("/products/{product_id}/selection")
def describe_selection(product_id: str, payload: SelectionRequest, products: ProductRepository = Depends(get_products)):
    index = InventoryIndex(find_product(products, product_id))
    values = payload.values or index.default_selection()
    return {
        "values": values,
        "complete": index.is_selection_complete(values),
        "stock": index.stock_for(values),
        "price": index.price_for(values),
        "options": index.option_matrix(values),
    }


# Cart
class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1
    values: ValueTuple = Field(default_factory=dict)


class UpdateQuantityRequest(BaseModel):
    product_id: str
    delta: int
    values: ValueTuple = Field(default_factory=dict)


class RemoveFromCartRequest(BaseModel):
    product_id: str
    values: ValueTuple = Field(default_factory=dict)


@app.get("/cart/{cart_id}")
def get_cart(
    cart_id: str,
    carts: CartStore = Depends(get_carts),
    products: ProductRepository = Depends(get_products),
    shipping: ShippingPolicy = Depends(get_shipping),
):
    return {"cart_id": cart_id, **load_ledger(cart_id, carts, products, shipping).summary()}


@app.post("/cart/{cart_id}/add")
def add_to_cart(
    cart_id: str,
    payload: AddToCartRequest,
    carts: CartStore = Depends(get_carts),
    products: ProductRepository = Depends(get_products),
    shipping: ShippingPolicy = Depends(get_shipping),
):
    ledger = load_ledger(cart_id, carts, products, shipping)
    result = ledger.add(find_product(products, payload.product_id), payload.quantity, payload.values)
    if not result:
        status = 409 if result.reason == STOCK_EXCEEDED else 422
        raise HTTPException(status_code=status, detail={"reason": result.reason, "available": result.available})
    carts.save(cart_id, ledger.lines)
    return {"cart_id": cart_id, **ledger.summary()}


@app.post("/cart/{cart_id}/update")
def update_cart_quantity(
    cart_id: str,
    payload: UpdateQuantityRequest,
    carts: CartStore = Depends(get_carts),
    products: ProductRepository = Depends(get_products),
    shipping: ShippingPolicy = Depends(get_shipping),
):
    ledger = load_ledger(cart_id, carts, products, shipping)
    changed = ledger.update_quantity(payload.product_id, payload.delta, payload.values)
    if changed:
        carts.save(cart_id, ledger.lines)
    return {"cart_id": cart_id, "changed": changed, **ledger.summary()}


@app.post("/cart/{cart_id}/remove")
def remove_from_cart(
    cart_id: str,
    payload: RemoveFromCartRequest,
    carts: CartStore = Depends(get_carts),
    products: ProductRepository = Depends(get_products),
    shipping: ShippingPolicy = Depends(get_shipping),
):
    ledger = load_ledger(cart_id, carts, products, shipping)
    if ledger.remove(payload.product_id, payload.values):
        carts.save(cart_id, ledger.lines)
    return {"cart_id": cart_id, **ledger.summary()}


# Orders
class CheckoutRequest(BaseModel):
    cart_id: str
    shipping_address: Address


@app.post("/checkout", status_code=201)
def checkout(
    payload: CheckoutRequest,
    carts: CartStore = Depends(get_carts),
    products: ProductRepository = Depends(get_products),
    orders: OrderStore = Depends(get_orders),
    shipping: ShippingPolicy = Depends(get_shipping),
):
    ledger = load_ledger(payload.cart_id, carts, products, shipping)
    if not len(ledger):
        raise HTTPException(status_code=400, detail="Cart is empty")

    # Stock may have moved since the lines were added
    for line in ledger:
        product = products.get(line.product_id)
        available = InventoryIndex(product).stock_for(line.values) if product else 0
        if line.quantity > available:
            raise HTTPException(
                status_code=409,
                detail={"reason": STOCK_EXCEEDED, "product_id": line.product_id, "values": line.values, "available": available},
            )

    order = orders.create(Order(
        cart_id=payload.cart_id,
        items=ledger.order_items(),
        items_price=ledger.subtotal,
        shipping_price=ledger.shipping_cost,
        total=ledger.total,
        shipping_address=payload.shipping_address,
    ))
    logger.info("created order %s for cart %s, total %s", order.id, payload.cart_id, order.total)

    touched = {item.product_id for item in order.items}
    affected = [p for p in (products.get(pid) for pid in touched) if p is not None]
    for product in apply_stock_decrements(affected, order.items):
        products.replace(product.id, product)

    ledger.clear()
    carts.save(payload.cart_id, ledger.lines)
    return {"order_id": order.id, "total": order.total, "status": order.status}


@app.get("/orders", response_model=List[Order])
def list_orders(status: Optional[str] = None, orders: OrderStore = Depends(get_orders)):
    items = orders.list()
    if status == "action_required":
        return [o for o in items if o.status in ("pending", "processing")]
    if status and status != "all":
        return [o for o in items if o.status == status]
    return items


class StatusUpdate(BaseModel):
    status: str


@app.patch("/orders/{order_id}/status", response_model=Order)
def update_order_status(order_id: str, payload: StatusUpdate, orders: OrderStore = Depends(get_orders)):
    if payload.status not in ORDER_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {payload.status}")
    order = orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    previous = order.model_copy()
    order.status = payload.status
    try:
        saved = orders.replace(order_id, order)
    except PyMongoError as e:
        order.status = previous.status
        logger.warning("status change of order %s to %s failed, kept %s: %s", order_id, payload.status, previous.status, e)
        raise HTTPException(status_code=503, detail={"message": "Order status not saved", "status": previous.status})
    if saved is None:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("order %s: %s -> %s", order_id, previous.status, saved.status)
    return saved


@app.get("/dashboard")
def dashboard(products: ProductRepository = Depends(get_products), orders: OrderStore = Depends(get_orders)):
    placed = orders.list()
    return {
        "total_sales": sum(o.total for o in placed),
        "total_orders": len(placed),
        "total_products": len(products.list()),
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
