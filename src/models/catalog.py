"""Catalog and customer collections owned by the CRUD side of the backend.

The order engine only reads these.
"""

from typing import TypedDict

from bson import ObjectId

PRODUCTS_COLLECTION = "products"
USERS_COLLECTION = "users"


class Product(TypedDict, total=False):
    """Subset of the product document the order engine reads."""

    _id: ObjectId
    title: str
    price: float
    isActive: bool


class User(TypedDict, total=False):
    """Subset of the user document used for order hydration."""

    _id: ObjectId
    firstName: str
    lastName: str
    email: str
