"""
Eligibility resolver.

Answers "what is this account entitled to right now?" by reading two
backend endpoints:
    - PDF eligibility check      -> one-time free bundle
    - Subscription free downloads -> remaining subscription allowance

Read-only. Snapshots are cached per identity for a short TTL so that the
pricing panel can be redrawn without hammering the backend; anything that
decides whether money is charged passes force_refresh=True.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from core.exceptions import APIError, AuthenticationRequiredError
from models.entitlement import EligibilitySnapshot
from logging_config import get_logger


logger = get_logger(__name__)


class EligibilityResolver:
    """
    Session-scoped cache of EligibilitySnapshots.

    Thread Safety:
        - Cache access is guarded by a lock
        - Snapshots are immutable and replaced, never updated
    """

    def __init__(self, api_client, ttl_seconds: float = 30.0):
        """
        Args:
            api_client: MarketplaceAPIClient carrying the user's token
            ttl_seconds: How long a snapshot may be served from cache
        """
        self._api_client = api_client
        self._ttl_seconds = ttl_seconds
        self._cache: Dict[str, EligibilitySnapshot] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def resolve(self, identity: Optional[str], force_refresh: bool = False) -> EligibilitySnapshot:
        """
        Current entitlements of `identity`.

        Args:
            identity: Opaque user key (None or empty when signed out)
            force_refresh: Skip the cache

        Raises:
            AuthenticationRequiredError: Signed out
            APIError / ServiceUnavailableError: Backend failures
        """
        if not identity or not self._api_client.is_authenticated:
            raise AuthenticationRequiredError("Please sign in to download PDFs")

        if not force_refresh:
            with self._lock:
                cached = self._cache.get(identity)
            if cached is not None and not cached.is_stale(self._ttl_seconds):
                return cached

        eligibility = self._api_client.check_pdf_eligibility()
        free_downloads = self._fetch_free_downloads()
        snapshot = EligibilitySnapshot.from_api(eligibility, free_downloads)

        with self._lock:
            self._cache[identity] = snapshot

        logger.info(
            f"Eligibility for {identity}: free={snapshot.is_free_eligible}, "
            f"allowance={snapshot.subscription_allowance_remaining}"
        )
        return snapshot

    def invalidate(self, identity: Optional[str] = None) -> None:
        """Drop the cached snapshot of one identity, or all of them."""
        with self._lock:
            if identity is None:
                self._cache.clear()
            else:
                self._cache.pop(identity, None)

    def _fetch_free_downloads(self) -> Optional[dict]:
        try:
            return self._api_client.check_free_downloads()
        except AuthenticationRequiredError:
            raise
        except APIError as e:
            # 404 means the account has no subscription record
            if e.status_code == 404:
                logger.debug("No subscription record; allowance is 0")
                return None
            raise
