"""
Catalog data models.

Designs come from two backend listings: the home feed (no filters) and the
search endpoint (free text and/or category). Both are paginated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any, List, Optional


@dataclass(frozen=True)
class CatalogFilter:
    """
    Search text and category currently applied to the candidate pool.

    Hashable, so it can be compared against the filter that was active
    when a page fetch started.
    """

    query: str = ""
    category_id: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.query and self.category_id is None

    def to_dict(self) -> Dict[str, Any]:
        """Shape sent as `search_filters` with a generation request."""
        data: Dict[str, Any] = {}
        if self.query:
            data["q"] = self.query
        if self.category_id is not None:
            data["category"] = str(self.category_id)
        return data


@dataclass(frozen=True)
class MediaItem:
    """One image attached to a design."""

    url: str
    file_name: str = ""
    is_mockup: bool = False

    @classmethod
    def from_api(cls, data: Any) -> "MediaItem":
        # Bare URL strings carry no mockup information
        if isinstance(data, str):
            return cls(url=data)

        file_name = data.get("file_name") or ""
        is_mockup = bool(data.get("is_mockup")) or "mockup" in file_name.lower()
        return cls(url=data.get("url") or "", file_name=file_name, is_mockup=is_mockup)


@dataclass(frozen=True)
class DesignSummary:
    """
    A design as shown in the selection grid.

    Only `id` matters for bundle generation; the rest is display data.
    """

    id: int
    title: str = "Untitled Product"
    category: str = "Uncategorized"
    price: float = 0.0
    media: tuple[MediaItem, ...] = ()

    @property
    def has_mockup(self) -> bool:
        """Bundles are built from mockup images, so designs without one are skipped."""
        return any(item.is_mockup for item in self.media)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "price": self.price,
            "media": [item.url for item in self.media],
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DesignSummary":
        category = data.get("category")
        if isinstance(category, dict):
            category = category.get("name")

        media = data.get("media") or []
        if not isinstance(media, list):
            media = []

        return cls(
            id=int(data["id"]),
            title=data.get("title") or "Untitled Product",
            category=category or "Uncategorized",
            price=float(data.get("price") or 0.0),
            media=tuple(MediaItem.from_api(item) for item in media),
        )


@dataclass(frozen=True)
class CatalogPage:
    """One page of designs, already reduced to mockup-bearing designs."""

    items: tuple[DesignSummary, ...]
    page: int
    has_next: bool

    @property
    def next_page(self) -> Optional[int]:
        return self.page + 1 if self.has_next else None


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    product_count: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or data.get("title") or "",
            product_count=int(data.get("product_count") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "product_count": self.product_count}


def mockup_designs(raw_products: List[Dict[str, Any]]) -> List[DesignSummary]:
    """Parse raw products, keeping only those with at least one mockup image."""
    designs = [DesignSummary.from_api(product) for product in raw_products]
    return [design for design in designs if design.has_mockup]
