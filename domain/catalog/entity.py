"""
Catalog read model - the purchasable items checkout resolves against.

The catalog itself is managed elsewhere; the payment core only reads it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class ItemKind(str, Enum):
    COURSE = "course"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class ItemRef:
    """Reference to exactly one purchasable item."""

    kind: ItemKind
    id: str

    def __post_init__(self):
        if not self.id:
            raise DomainValidationException("Item id is required", field="item_id")

    @classmethod
    def course(cls, course_id: str) -> "ItemRef":
        return cls(kind=ItemKind.COURSE, id=course_id)

    @classmethod
    def bundle(cls, bundle_id: str) -> "ItemRef":
        return cls(kind=ItemKind.BUNDLE, id=bundle_id)


@dataclass
class CatalogItem:
    """A resolved item: what the buyer pays for and which courses it unlocks.

    For a course `course_ids` holds the course itself. For a bundle it is the
    ordered course list as stored when the item was resolved, and
    `list_price` is the sum of the contained course prices.
    """

    ref: ItemRef
    title: str
    price: Decimal
    currency: str
    course_ids: list[str] = field(default_factory=list)
    list_price: Optional[Decimal] = None
    slug: Optional[str] = None
    is_published: bool = True

    @property
    def kind(self) -> ItemKind:
        return self.ref.kind

    @property
    def is_bundle(self) -> bool:
        return self.ref.kind == ItemKind.BUNDLE

    @property
    def bundle_savings(self) -> Decimal:
        """How much cheaper the bundle is than buying its courses separately."""
        if not self.is_bundle or self.list_price is None:
            return Decimal("0")
        return max(Decimal("0"), self.list_price - self.price)
