"""
MongoDB access and the storage contracts the storefront core depends on.

When DATABASE_URL is not set ``db`` is None and the host falls back to the in-memory
implementations, which is also what the tests use.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from schemas import CartLine, Order, Product

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def _as_dict(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude={"id"})
    return dict(data)


def create_document(collection_name: str, data: Any, database=None) -> str:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Set DATABASE_URL.")
    doc = _as_dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    logger.debug("inserted %s into %s", result.inserted_id, collection_name)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None) -> List[dict]:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Set DATABASE_URL.")
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _object_id(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


def _from_doc(doc: dict) -> dict:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc.pop("updated_at", None)
    return doc


# Contracts

class ProductRepository(Protocol):
    def list(self) -> List[Product]: ...
    def get(self, product_id: str) -> Optional[Product]: ...
    def create(self, product: Product) -> Product: ...
    def replace(self, product_id: str, product: Product) -> Optional[Product]: ...
    def delete(self, product_id: str) -> bool: ...


class CartStore(Protocol):
    def load(self, cart_id: str) -> List[CartLine]: ...
    def save(self, cart_id: str, lines: List[CartLine]) -> None: ...


class OrderStore(Protocol):
    def list(self) -> List[Order]: ...
    def get(self, order_id: str) -> Optional[Order]: ...
    def create(self, order: Order) -> Order: ...
    def replace(self, order_id: str, order: Order) -> Optional[Order]: ...


# MongoDB implementations

class MongoProductRepository:
    collection_name = "product"

    def __init__(self, database):
        self.collection = database[self.collection_name]

    def list(self) -> List[Product]:
        docs = get_documents(self.collection_name, database=self.collection.database)
        return [Product(**_from_doc(d)) for d in docs]

    def get(self, product_id: str) -> Optional[Product]:
        oid = _object_id(product_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        return Product(**_from_doc(doc)) if doc else None

    def create(self, product: Product) -> Product:
        pid = create_document(self.collection_name, product, database=self.collection.database)
        return product.model_copy(update={"id": pid})

    def replace(self, product_id: str, product: Product) -> Optional[Product]:
        oid = _object_id(product_id)
        if oid is None:
            return None
        doc = _as_dict(product)
        doc["updated_at"] = datetime.now(timezone.utc)
        result = self.collection.replace_one({"_id": oid}, doc)
        if result.matched_count == 0:
            return None
        return product.model_copy(update={"id": product_id})

    def delete(self, product_id: str) -> bool:
        oid = _object_id(product_id)
        return bool(oid) and self.collection.delete_one({"_id": oid}).deleted_count > 0


class MongoCartStore:
    collection_name = "cart"

    def __init__(self, database):
        self.collection = database[self.collection_name]

    def load(self, cart_id: str) -> List[CartLine]:
        doc = self.collection.find_one({"cart_id": cart_id})
        if not doc:
            return []
        return [CartLine(**it) for it in doc.get("items", [])]

    def save(self, cart_id: str, lines: List[CartLine]) -> None:
        items = [CartLine.model_validate(line).model_dump() for line in lines]
        self.collection.update_one(
            {"cart_id": cart_id},
            {"$set": {"items": items, "updated_at": datetime.now(timezone.utc)}},
            upsert=True,
        )


class MongoOrderStore:
    collection_name = "order"

    def __init__(self, database):
        self.collection = database[self.collection_name]

    def list(self) -> List[Order]:
        return [Order(**_from_doc(d)) for d in self.collection.find({}).sort("created_at", -1)]

    def get(self, order_id: str) -> Optional[Order]:
        oid = _object_id(order_id)
        doc = self.collection.find_one({"_id": oid}) if oid else None
        return Order(**_from_doc(doc)) if doc else None

    def create(self, order: Order) -> Order:
        oid = create_document(self.collection_name, order, database=self.collection.database)
        return order.model_copy(update={"id": oid})

    def replace(self, order_id: str, order: Order) -> Optional[Order]:
        oid = _object_id(order_id)
        if oid is None:
            return None
        doc = _as_dict(order)
        doc["updated_at"] = datetime.now(timezone.utc)
        if self.collection.replace_one({"_id": oid}, doc).matched_count == 0:
            return None
        return order.model_copy(update={"id": order_id})


# In-memory implementations

class InMemoryProductRepository:
    def __init__(self, products: Optional[List[Product]] = None):
        self._products: Dict[str, Product] = {}
        for product in products or []:
            self.create(product)

    def list(self) -> List[Product]:
        return list(self._products.values())

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def create(self, product: Product) -> Product:
        product = product.model_copy(update={"id": product.id or uuid.uuid4().hex})
        self._products[product.id] = product
        return product

    def replace(self, product_id: str, product: Product) -> Optional[Product]:
        if product_id not in self._products:
            return None
        product = product.model_copy(update={"id": product_id})
        self._products[product_id] = product
        return product

    def delete(self, product_id: str) -> bool:
        return self._products.pop(product_id, None) is not None


class InMemoryCartStore:
    def __init__(self):
        self._carts: Dict[str, List[dict]] = {}

    def load(self, cart_id: str) -> List[CartLine]:
        return [CartLine(**it) for it in self._carts.get(cart_id, [])]

    def save(self, cart_id: str, lines: List[CartLine]) -> None:
        self._carts[cart_id] = [CartLine.model_validate(line).model_dump() for line in lines]


class InMemoryOrderStore:
    def __init__(self):
        self._orders: Dict[str, Order] = {}

    def list(self) -> List[Order]:
        return sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def create(self, order: Order) -> Order:
        order = order.model_copy(update={"id": uuid.uuid4().hex})
        self._orders[order.id] = order
        return order

    def replace(self, order_id: str, order: Order) -> Optional[Order]:
        if order_id not in self._orders:
            return None
        order = order.model_copy(update={"id": order_id})
        self._orders[order_id] = order
        return order
