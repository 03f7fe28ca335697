"""
Bundle request data models.

A bundle request is what the workflow hands to the generation service:
which designs, how many, under which strategy, and who pays.

Lifecycle:
    1. Selection engine captures an ordered id list
    2. Orchestrator builds a BundleRequest (is_free computed, price quoted)
    3. Request is submitted once; the backend assigns a job id
    4. Nothing about the request changes afterwards (frozen dataclass)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional

from models.catalog import CatalogFilter


CONTACT_DIGITS = 10


class SelectionStrategy(Enum):
    """How the designs in a bundle are chosen."""

    FIRST_N = "first_n"
    """Take the first N designs of the current filtered results, in display order."""

    SPECIFIC = "specific"
    """User hand-picks exactly N designs."""

    @classmethod
    def parse(cls, value: Any) -> "SelectionStrategy":
        if isinstance(value, cls):
            return value
        aliases = {"firstn": cls.FIRST_N, "first_n": cls.FIRST_N, "selected": cls.SPECIFIC}
        key = str(value or "").strip().lower()
        if key in aliases:
            return aliases[key]
        return cls(key)


def normalize_contact(raw: str) -> str:
    """Strip everything except digits."""
    return re.sub(r"\D", "", raw or "")


@dataclass(frozen=True)
class CustomerDetails:
    """Name and contact printed on a paid bundle."""

    name: str
    contact: str
    """Digits only."""

    @classmethod
    def from_input(cls, name: str, contact: str) -> "CustomerDetails":
        return cls(name=(name or "").strip(), contact=normalize_contact(contact))

    @property
    def has_valid_contact(self) -> bool:
        return len(self.contact) == CONTACT_DIGITS


@dataclass(frozen=True)
class BundleRequest:
    """
    Immutable generation request.

    `product_ids` keeps the order the designs were captured in. For FIRST_N
    that is the order the user saw on screen, and the PDF pages follow it.
    """

    strategy: SelectionStrategy
    required_count: int
    product_ids: tuple[int, ...]
    is_free: bool
    amount: Decimal = Decimal("0")
    use_subscription_allowance: bool = False
    customer: Optional[CustomerDetails] = None
    search_filters: CatalogFilter = field(default_factory=CatalogFilter)

    def __post_init__(self):
        if self.required_count <= 0:
            raise ValueError("required_count must be positive")
        if len(self.product_ids) != self.required_count:
            raise ValueError(
                f"product_ids holds {len(self.product_ids)} ids, expected {self.required_count}"
            )
        if len(set(self.product_ids)) != len(self.product_ids):
            raise ValueError("product_ids must be unique")
        if not self.is_free and self.customer is None:
            raise ValueError("customer details are required for paid bundles")

    @property
    def download_type(self) -> str:
        return "free" if self.is_free else "paid"

    def to_payload(self) -> Dict[str, Any]:
        """
        Body for the generation service.

        selection_type is always "specific" on the wire: the backend then
        uses selected_products as given instead of re-running the search,
        which keeps FIRST_N bundles in on-screen order.
        """
        payload: Dict[str, Any] = {
            "download_type": self.download_type,
            "total_pages": self.required_count,
            "selection_type": "specific",
            "selected_products": list(self.product_ids),
            "use_subscription_mock_pdf": self.use_subscription_allowance,
        }
        if self.strategy is SelectionStrategy.FIRST_N:
            payload["search_filters"] = self.search_filters.to_dict()
        if self.customer is not None:
            payload["customer_name"] = self.customer.name
            payload["customer_mobile"] = self.customer.contact
        return payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "required_count": self.required_count,
            "product_ids": list(self.product_ids),
            "is_free": self.is_free,
            "amount": str(self.amount),
            "use_subscription_allowance": self.use_subscription_allowance,
        }
