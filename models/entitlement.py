"""
Entitlement data models.

These models capture what the backend says the current account may have:
the one-time free bundle, subscription-granted bundles, and the price table
for everything else.

Thread Safety:
    - Both models are frozen dataclasses (immutable)
    - The eligibility resolver replaces cached snapshots, never mutates them
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Optional

from core.exceptions import APIError
from models.bundle import SelectionStrategy


DEFAULT_FREE_TIER_SIZE = 50


@dataclass(frozen=True)
class EligibilitySnapshot:
    """
    Point-in-time view of the account's bundle entitlements.

    The two entitlements are separate and may both be present. A user can
    still have the one-time free bundle while also holding subscription
    allowance; nothing here folds them into a single counter.

    Values are advisory. The backend re-validates on submission.
    """

    is_free_eligible: bool
    """One-time free bundle has never been consumed."""

    subscription_allowance_remaining: int
    """Bundles still grantable from an active subscription."""

    fetched_at: datetime
    """When this snapshot was fetched."""

    free_downloads_used: int = 0
    """Free bundles consumed so far (display only)."""

    free_limit_per_month: Optional[int] = None
    """Monthly free limit reported by the backend, if any (display only)."""

    def __post_init__(self):
        if self.subscription_allowance_remaining < 0:
            raise ValueError("subscription_allowance_remaining cannot be negative")

    @property
    def has_subscription_allowance(self) -> bool:
        return self.subscription_allowance_remaining > 0

    @property
    def age_seconds(self) -> float:
        """How old this snapshot is in seconds."""
        now = datetime.now(timezone.utc)
        return (now - self.fetched_at).total_seconds()

    def is_stale(self, ttl_seconds: float) -> bool:
        return self.age_seconds > ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_free_eligible": self.is_free_eligible,
            "subscription_allowance_remaining": self.subscription_allowance_remaining,
            "free_downloads_used": self.free_downloads_used,
            "free_limit_per_month": self.free_limit_per_month,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_api(
        cls,
        eligibility: Dict[str, Any],
        free_downloads: Optional[Dict[str, Any]] = None,
    ) -> "EligibilitySnapshot":
        """
        Build a snapshot from the two entitlement endpoints.

        Args:
            eligibility: Response of the PDF eligibility check
            free_downloads: Response of the subscription free-downloads check
                (None when the account has no subscription data)
        """
        free_downloads = free_downloads or {}
        remaining = free_downloads.get("remaining_mock_pdf_downloads") or 0
        limit = eligibility.get("free_pdf_downloads_limit_per_month")

        try:
            return cls(
                is_free_eligible=bool(eligibility.get("is_eligible", False)),
                subscription_allowance_remaining=max(0, int(remaining)),
                fetched_at=datetime.now(timezone.utc),
                free_downloads_used=int(eligibility.get("free_downloads_used") or 0),
                free_limit_per_month=int(limit) if limit is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise invalid_response("/api/catalog/pdf/check-eligibility/", e) from e


def invalid_response(endpoint: str, error: Exception) -> APIError:
    """APIError for a 2xx body that does not parse into a model."""
    return APIError(
        "Invalid response from server",
        status_code=200,
        endpoint=endpoint,
        payload={"error": str(error)},
    )


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid {name}: {value!r}") from e


@dataclass(frozen=True)
class PriceTable:
    """
    Server-supplied bundle sizes and per-design prices.

    Prices are in major currency units (rupees). Picking designs by hand
    costs more per design than taking the first N of a result set.
    """

    free_tier_size: int
    """Bundle size that qualifies for the free bundle / subscription allowance."""

    allowed_sizes: tuple[int, ...]
    """Bundle sizes a user may pay for."""

    first_n_unit_price: Decimal
    """Price per design for FIRST_N bundles."""

    specific_unit_price: Decimal
    """Price per design for SPECIFIC bundles."""

    def __post_init__(self):
        if self.free_tier_size <= 0:
            raise ValueError("free_tier_size must be positive")
        if any(size <= 0 for size in self.allowed_sizes):
            raise ValueError("allowed_sizes must all be positive")
        if self.first_n_unit_price <= 0 or self.specific_unit_price <= 0:
            raise ValueError("unit prices must be positive")
        if self.specific_unit_price <= self.first_n_unit_price:
            raise ValueError("specific_unit_price must be higher than first_n_unit_price")

    def unit_price(self, strategy: SelectionStrategy) -> Decimal:
        if strategy is SelectionStrategy.SPECIFIC:
            return self.specific_unit_price
        return self.first_n_unit_price

    def is_allowed_size(self, count: int) -> bool:
        return count == self.free_tier_size or count in self.allowed_sizes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "free_tier_size": self.free_tier_size,
            "allowed_sizes": list(self.allowed_sizes),
            "pricing": {
                "first_n_per_design": str(self.first_n_unit_price),
                "selected_per_design": str(self.specific_unit_price),
            },
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PriceTable":
        """
        Parse the PDF config endpoint.

        The first paid size doubles as the free-tier size; older backends
        only send free_pdf_designs_count.
        """
        try:
            options = tuple(int(size) for size in data.get("paid_pdf_designs_options") or ())
            free_tier_size = (
                (options[0] if options else None)
                or data.get("free_pdf_designs_count")
                or DEFAULT_FREE_TIER_SIZE
            )
            pricing = data.get("pricing") or {}

            return cls(
                free_tier_size=int(free_tier_size),
                allowed_sizes=options,
                first_n_unit_price=_to_decimal(pricing.get("first_n_per_design"), "first_n_per_design"),
                specific_unit_price=_to_decimal(pricing.get("selected_per_design"), "selected_per_design"),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise invalid_response("/api/catalog/pdf/config/", e) from e
