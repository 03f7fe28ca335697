"""
Bundle pricing.

Free iff the account holds an entitlement (the one-time free bundle or
subscription allowance) AND the bundle is FIRST_N at exactly the free-tier
size. Everything else is paid at required_count * per-design price, where
SPECIFIC costs more per design than FIRST_N.

The two functions at the top are pure; PriceQuoter adds the fetch of the
price table from the backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional, Tuple

from models.bundle import SelectionStrategy
from models.entitlement import PriceTable
from logging_config import get_logger


logger = get_logger(__name__)


def is_free_bundle(
    strategy: SelectionStrategy,
    required_count: int,
    is_eligible_free: bool,
    using_subscription_allowance: bool,
    price_table: PriceTable,
) -> bool:
    """True when the bundle costs nothing."""
    has_entitlement = is_eligible_free or using_subscription_allowance
    return (
        has_entitlement
        and strategy is SelectionStrategy.FIRST_N
        and required_count == price_table.free_tier_size
    )


def calculate_amount(
    strategy: SelectionStrategy,
    required_count: int,
    is_eligible_free: bool,
    using_subscription_allowance: bool,
    price_table: PriceTable,
) -> Decimal:
    """
    Amount to charge, in major currency units.

    Args:
        strategy: How the designs are chosen
        required_count: Number of designs in the bundle
        is_eligible_free: One-time free bundle still available
        using_subscription_allowance: User opted to spend subscription allowance
        price_table: Server-supplied sizes and prices

    Returns:
        Decimal("0") for a free bundle, otherwise count * unit price
    """
    if required_count <= 0:
        raise ValueError("required_count must be positive")

    if is_free_bundle(strategy, required_count, is_eligible_free,
                      using_subscription_allowance, price_table):
        return Decimal("0")
    return required_count * price_table.unit_price(strategy)


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise, as the payment gateway expects."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceQuote:
    """Price of one (strategy, count) combination against one price table."""

    strategy: SelectionStrategy
    required_count: int
    amount: Decimal
    is_free: bool
    unit_price: Decimal
    price_table: PriceTable

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "required_count": self.required_count,
            "amount": str(self.amount),
            "amount_minor": self.amount_minor,
            "is_free": self.is_free,
            "unit_price": str(self.unit_price),
            "price_table": self.price_table.to_dict(),
        }


class PriceQuoter:
    """
    Quotes bundle prices, refetching the price table when the inputs change.

    The backend owns the price table, so a new (strategy, count) pair always
    triggers a fresh fetch. Repeating the last pair reuses the last table.

    Usage:
        quoter = PriceQuoter(api_client)
        quote = quoter.quote(SelectionStrategy.SPECIFIC, 100, snapshot.is_free_eligible, False)
    """

    def __init__(self, api_client):
        """
        Args:
            api_client: MarketplaceAPIClient (anything with get_pdf_config())
        """
        self._api_client = api_client
        self._price_table: Optional[PriceTable] = None
        self._last_key: Optional[Tuple[SelectionStrategy, int]] = None

    @property
    def price_table(self) -> Optional[PriceTable]:
        """Last fetched table (None until the first quote)."""
        return self._price_table

    def fetch_price_table(self) -> PriceTable:
        data = self._api_client.get_pdf_config()
        self._price_table = PriceTable.from_api(data)
        logger.debug(
            f"Price table: free tier {self._price_table.free_tier_size}, "
            f"sizes {self._price_table.allowed_sizes}"
        )
        return self._price_table

    def quote(
        self,
        strategy: SelectionStrategy,
        required_count: int,
        is_eligible_free: bool,
        using_subscription_allowance: bool,
    ) -> PriceQuote:
        key = (strategy, required_count)
        if self._price_table is None or key != self._last_key:
            self.fetch_price_table()
            self._last_key = key

        table = self._price_table
        amount = calculate_amount(
            strategy, required_count, is_eligible_free, using_subscription_allowance, table
        )
        return PriceQuote(
            strategy=strategy,
            required_count=required_count,
            amount=amount,
            is_free=amount == 0,
            unit_price=table.unit_price(strategy),
            price_table=table,
        )
