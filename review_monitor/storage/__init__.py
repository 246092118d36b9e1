"""Persistence module."""

from .database import Base, Database
from .repository import StoreRepository
from .tables import Product, ProductHistory, Review, ReviewViolation

__all__ = [
    "Base",
    "Database",
    "Product",
    "ProductHistory",
    "Review",
    "ReviewViolation",
    "StoreRepository",
]
