"""
Selection engine for bundle designs.

Produces the exact, ordered list of design ids a bundle is built from.

Two strategies:
    FIRST_N   - ids are the first `required_count` designs of the candidate
                pool, in the order the pages were fetched (= on-screen order)
    SPECIFIC  - ids are the designs the user toggled on, in the order they
                were toggled; exactly `required_count` of them

Candidate pool:
    - Built page by page from the catalog source for one filter tuple
    - Append-only while the filter (and required count) stays the same
    - Any change of filter or required count starts a new fetch generation;
      a page fetched for an older generation is discarded on arrival

Destructive operations (clear the chosen ids):
    set_mode, set_required_count, lock_first_n

Thread Safety:
    State is guarded by an RLock. Network fetches run outside the lock and
    are reconciled through FetchTickets, so a slow response can never be
    merged into a pool it was not fetched for.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, List, Optional

from core.exceptions import BundleValidationError, SelectionCountError
from models.bundle import SelectionStrategy
from models.catalog import CatalogFilter, CatalogPage, DesignSummary
from logging_config import get_logger


logger = get_logger(__name__)


class ToggleOutcome(Enum):
    """Result of toggling a design in SPECIFIC mode."""

    ADDED = "added"
    REMOVED = "removed"
    LIMIT_REACHED = "limit_reached"
    """Selection already holds required_count ids; nothing changed."""
    NOT_IN_POOL = "not_in_pool"
    IGNORED = "ignored"
    """FIRST_N mode has no manual selection."""


@dataclass(frozen=True)
class FetchTicket:
    """Identifies which pool a page fetch was started for."""

    generation: int
    catalog_filter: CatalogFilter
    page: int


@dataclass(frozen=True)
class SelectionReadiness:
    """Whether the current selection can be submitted, and if not, why."""

    ready: bool
    selected: int
    required: int
    shortfall: int
    """Designs still missing (negative if too many are selected)."""
    can_load_more: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "selected": self.selected,
            "required": self.required,
            "shortfall": self.shortfall,
            "can_load_more": self.can_load_more,
            "message": self.message,
        }


class SelectionEngine:
    """
    Holds the selection state of one bundle request.

    Attributes:
        mode: Active SelectionStrategy
        required_count: Designs the bundle must contain
        catalog_filter: Filter the candidate pool was fetched for
        pool: Candidate designs in fetch order
        chosen_ids: Hand-picked ids in selection order (SPECIFIC only)
    """

    def __init__(
        self,
        catalog,
        required_count: int,
        mode: SelectionStrategy = SelectionStrategy.FIRST_N,
        catalog_filter: Optional[CatalogFilter] = None,
    ):
        """
        Args:
            catalog: CatalogService (anything with fetch_page(filter, page))
            required_count: Designs the bundle must contain
            mode: Initial strategy
            catalog_filter: Initial filter (empty = home feed)
        """
        _check_count(required_count)

        self._catalog = catalog
        self._required_count = required_count
        self._mode = mode
        self._filter = catalog_filter or CatalogFilter()
        self._subscription_locked = False

        self._lock = threading.RLock()
        self._generation = 0
        self._pool: List[DesignSummary] = []
        self._pool_ids: set = set()
        self._next_page: Optional[int] = 1

        # dict keeps insertion order
        self._chosen: Dict[int, None] = {}

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def mode(self) -> SelectionStrategy:
        return self._mode

    @property
    def required_count(self) -> int:
        return self._required_count

    @property
    def catalog_filter(self) -> CatalogFilter:
        return self._filter

    @property
    def subscription_locked(self) -> bool:
        return self._subscription_locked

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pool(self) -> tuple[DesignSummary, ...]:
        with self._lock:
            return tuple(self._pool)

    @property
    def chosen_ids(self) -> tuple[int, ...]:
        with self._lock:
            return tuple(self._chosen)

    @property
    def has_more_pages(self) -> bool:
        return self._next_page is not None

    # =========================================================================
    # DESTRUCTIVE CHANGES
    # =========================================================================

    def set_mode(self, mode: SelectionStrategy) -> None:
        """Switch strategy. Always clears the chosen ids."""
        if self._subscription_locked and mode is not SelectionStrategy.FIRST_N:
            raise BundleValidationError(
                "subscription_allowance",
                "Subscription downloads are only available for first-N bundles.",
            )
        with self._lock:
            self._mode = mode
            self._chosen.clear()
        logger.debug(f"Selection mode set to {mode.value}")

    def set_required_count(self, required_count: int) -> None:
        """Change the bundle size. Clears the chosen ids and restarts the pool."""
        _check_count(required_count)
        with self._lock:
            self._required_count = required_count
            self._chosen.clear()
            self._reset_pool()
        logger.debug(f"Required count set to {required_count}")

    def lock_first_n(self, locked: bool = True) -> None:
        """
        Pin the engine to FIRST_N while subscription allowance is in use.

        Turning the lock on forces FIRST_N and clears the chosen ids.
        """
        with self._lock:
            self._subscription_locked = locked
            if locked:
                self._mode = SelectionStrategy.FIRST_N
                self._chosen.clear()

    def set_filters(self, catalog_filter: CatalogFilter) -> List[int]:
        """
        Apply a new search/category filter.

        The pool is refetched from page 1 right away, then every chosen id
        that is not in the refreshed pool is dropped.

        Returns:
            Ids removed from the selection, in selection order
        """
        with self._lock:
            self._filter = catalog_filter
            self._reset_pool()

        self.load_next_page()

        with self._lock:
            dropped = [pid for pid in self._chosen if pid not in self._pool_ids]
            for pid in dropped:
                del self._chosen[pid]

        if dropped:
            logger.info(f"Filter change dropped {len(dropped)} selected designs")
        return dropped

    def refresh(self) -> bool:
        """Restart the pool for the current filter and fetch page 1."""
        with self._lock:
            self._reset_pool()
        return self.load_next_page()

    def _reset_pool(self) -> None:
        self._generation += 1
        self._pool = []
        self._pool_ids = set()
        self._next_page = 1

    # =========================================================================
    # PAGINATION
    # =========================================================================

    def begin_fetch(self) -> Optional[FetchTicket]:
        """Ticket for the next page, or None when the listing is exhausted."""
        with self._lock:
            if self._next_page is None:
                return None
            return FetchTicket(self._generation, self._filter, self._next_page)

    def apply_page(self, ticket: FetchTicket, page: CatalogPage) -> bool:
        """
        Merge a fetched page into the pool.

        Returns:
            False when the page was discarded (pool moved on, or the same
            page was already applied)
        """
        with self._lock:
            if ticket.generation != self._generation or ticket.catalog_filter != self._filter:
                logger.debug(
                    f"Discarding stale page {ticket.page} "
                    f"(generation {ticket.generation}, current {self._generation})"
                )
                return False
            if ticket.page != self._next_page:
                logger.debug(f"Page {ticket.page} already applied")
                return False

            for design in page.items:
                if design.id not in self._pool_ids:
                    self._pool.append(design)
                    self._pool_ids.add(design.id)
            self._next_page = page.next_page
            return True

    def load_next_page(self) -> bool:
        """Fetch and merge the next page. Returns True if the pool changed."""
        ticket = self.begin_fetch()
        if ticket is None:
            return False
        page = self._catalog.fetch_page(ticket.catalog_filter, ticket.page)
        return self.apply_page(ticket, page)

    def needs_more(self) -> bool:
        """
        Whether reaching the end of the list should trigger a fetch.

        FIRST_N only needs enough designs to cover required_count;
        SPECIFIC keeps offering more while pages remain.
        """
        with self._lock:
            if self._next_page is None:
                return False
            if self._mode is SelectionStrategy.FIRST_N:
                return len(self._pool) < self._required_count
            return True

    def on_end_reached(self) -> bool:
        """Visibility signal from the end of the rendered list."""
        if not self.needs_more():
            return False
        return self.load_next_page()

    def fill_to_required(self, max_pages: int = 50) -> int:
        """
        Keep fetching until FIRST_N has enough designs or pages run out.

        Returns:
            Number of pages fetched
        """
        fetched = 0
        while fetched < max_pages and self._mode is SelectionStrategy.FIRST_N and self.needs_more():
            if not self.load_next_page():
                break
            fetched += 1
        return fetched

    # =========================================================================
    # SELECTION
    # =========================================================================

    def toggle(self, product_id: int) -> ToggleOutcome:
        """
        Add or remove a design (SPECIFIC mode).

        At the cap, adding is refused with LIMIT_REACHED; no existing
        selection is evicted.
        """
        with self._lock:
            if self._mode is not SelectionStrategy.SPECIFIC:
                return ToggleOutcome.IGNORED
            if product_id in self._chosen:
                del self._chosen[product_id]
                return ToggleOutcome.REMOVED
            if product_id not in self._pool_ids:
                return ToggleOutcome.NOT_IN_POOL
            if len(self._chosen) >= self._required_count:
                return ToggleOutcome.LIMIT_REACHED
            self._chosen[product_id] = None
            return ToggleOutcome.ADDED

    def readiness(self) -> SelectionReadiness:
        with self._lock:
            required = self._required_count
            can_load_more = self._next_page is not None

            if self._mode is SelectionStrategy.FIRST_N:
                available = len(self._pool)
                selected = min(available, required)
                shortfall = max(0, required - available)
                if not shortfall:
                    message = f"The first {required} designs will be included."
                elif can_load_more:
                    message = f"{available} of {required} designs loaded; loading more."
                else:
                    message = SelectionCountError(required, available).message
            else:
                selected = len(self._chosen)
                shortfall = required - selected
                if not shortfall:
                    message = f"{required} designs selected."
                else:
                    message = _specific_count_message(required, selected)

            return SelectionReadiness(
                ready=shortfall == 0,
                selected=selected,
                required=required,
                shortfall=shortfall,
                can_load_more=can_load_more,
                message=message,
            )

    def capture(self) -> tuple[int, ...]:
        """
        Ordered ids to submit.

        Raises:
            SelectionCountError: The selection does not hold exactly
                required_count designs
        """
        with self._lock:
            required = self._required_count
            if self._mode is SelectionStrategy.FIRST_N:
                if len(self._pool) < required:
                    raise SelectionCountError(required, len(self._pool))
                return tuple(design.id for design in self._pool[:required])

            selected = len(self._chosen)
            if selected != required:
                raise SelectionCountError(required, selected, _specific_count_message(required, selected))
            return tuple(self._chosen)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "mode": self._mode.value,
                "required_count": self._required_count,
                "filters": {
                    "query": self._filter.query,
                    "category_id": self._filter.category_id,
                },
                "subscription_locked": self._subscription_locked,
                "pool": [design.to_dict() for design in self._pool],
                "chosen_ids": list(self._chosen),
                "readiness": self.readiness().to_dict(),
            }


def _check_count(required_count: int) -> None:
    if not isinstance(required_count, int) or required_count <= 0:
        raise BundleValidationError("required_count", "Bundle size must be a positive number.")


def _specific_count_message(required: int, selected: int) -> str:
    if selected < required:
        return f"{selected} of {required} designs selected; need {required - selected} more."
    return f"{selected} designs selected; remove {selected - required} to reach {required}."
