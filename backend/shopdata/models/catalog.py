from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from shopdata.time_utils import utcnow
from .base import RecordMixin


UNCATEGORIZED_SLUG = "uncategorized"

SUPPLIER_MANUAL = "manual"
SUPPLIER_TAPHOAMMO = "taphoammo"
SUPPLIER_PROVIDERS = {SUPPLIER_MANUAL, SUPPLIER_TAPHOAMMO}

PRODUCT_BADGES = {"new", "hot"}


@dataclass
class ProductOption(RecordMixin):
    """A purchasable variant; its price replaces the product price."""
    DATETIME_FIELDS = frozenset()

    id: str
    label: str
    price: int
    stock: int = 0
    base_price: Optional[int] = None
    profit_margin: Optional[float] = None
    kiosk_token: Optional[str] = None


@dataclass
class SupplierInfo(RecordMixin):
    DATETIME_FIELDS = frozenset({"last_synced_at"})

    provider: str = SUPPLIER_MANUAL
    kiosk_token: Optional[str] = None
    base_price: Optional[int] = None
    markup_percent: Optional[float] = None
    last_stock: Optional[int] = None
    last_synced_at: Optional[datetime] = None
    auto_sync: bool = False


@dataclass
class Product(RecordMixin):
    """
    Catalog item. A non-null deleted_at means soft-deleted: hidden from
    listings but kept so historical orders still resolve.
    """
    ID_PREFIX = "product"
    DATETIME_FIELDS = frozenset({"created_at", "updated_at", "deleted_at"})
    NESTED = {"options": (ProductOption, True), "supplier": (SupplierInfo, False)}

    id: str
    title: str
    description: str = ""
    price: Optional[int] = None
    currency: str = "VND"
    category: str = UNCATEGORIZED_SLUG
    stock: int = 0
    sold: int = 0
    is_active: bool = True
    options: list[ProductOption] = field(default_factory=list)
    supplier: Optional[SupplierInfo] = None
    image_emoji: Optional[str] = None
    image_url: Optional[str] = None
    badge: Optional[str] = None
    long_description: Optional[str] = None
    faqs: list[dict[str, Any]] = field(default_factory=list)
    created_by: str = "system"
    last_modified_by: str = "system"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def get_option(self, option_id: Optional[str]) -> Optional[ProductOption]:
        if not option_id:
            return None
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    @property
    def display_price(self) -> Optional[int]:
        """Product price, or the cheapest variant when only variants are priced."""
        if self.price is not None:
            return self.price
        prices = [o.price for o in self.options if o.price is not None]
        return min(prices) if prices else None


@dataclass
class Category(RecordMixin):
    ID_PREFIX = "category"

    id: str
    name: str
    slug: str
    description: Optional[str] = None
    icon: Optional[str] = None
    featured_product_ids: list[str] = field(default_factory=list)
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
