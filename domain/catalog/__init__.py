"""Catalog domain exports."""
from .entity import CatalogItem, ItemKind, ItemRef
from .repository import CatalogRepository

__all__ = ["CatalogItem", "ItemKind", "ItemRef", "CatalogRepository"]
