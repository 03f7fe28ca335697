"""
Unit tests for the Eligibility Resolver.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from core.exceptions import APIError, AuthenticationRequiredError
from models.entitlement import EligibilitySnapshot
from modules.eligibility import EligibilityResolver

from conftest import FakeMarketplace


class TestEligibilitySnapshot:

    def test_entitlements_kept_separate(self):
        snapshot = EligibilitySnapshot.from_api(
            {"is_eligible": True, "free_downloads_used": 0},
            {"remaining_mock_pdf_downloads": 3},
        )
        assert snapshot.is_free_eligible is True
        assert snapshot.subscription_allowance_remaining == 3
        assert snapshot.has_subscription_allowance

    def test_missing_subscription_data_means_no_allowance(self):
        snapshot = EligibilitySnapshot.from_api({"is_eligible": False})
        assert snapshot.subscription_allowance_remaining == 0
        assert snapshot.has_subscription_allowance is False

    def test_negative_allowance_rejected(self):
        with pytest.raises(ValueError):
            EligibilitySnapshot(False, -1, datetime.now(timezone.utc))

    def test_non_numeric_allowance_is_invalid_response(self):
        with pytest.raises(APIError) as exc:
            EligibilitySnapshot.from_api({"is_eligible": True}, {"remaining_mock_pdf_downloads": "lots"})
        assert exc.value.status_code == 200
        assert exc.value.endpoint == "/api/catalog/pdf/check-eligibility/"

    def test_staleness(self):
        old = EligibilitySnapshot(True, 0, datetime.now(timezone.utc) - timedelta(seconds=45))
        assert old.is_stale(30)
        assert not old.is_stale(60)


class TestEligibilityResolver:

    def test_resolve_reads_both_endpoints(self, backend):
        backend.free_downloads = {"remaining_mock_pdf_downloads": 2}
        snapshot = EligibilityResolver(backend).resolve("user-1")

        assert snapshot.is_free_eligible is True
        assert snapshot.subscription_allowance_remaining == 2
        assert backend.count("check_pdf_eligibility") == 1
        assert backend.count("check_free_downloads") == 1

    def test_cached_within_ttl(self, backend):
        resolver = EligibilityResolver(backend, ttl_seconds=30)
        first = resolver.resolve("user-1")
        second = resolver.resolve("user-1")

        assert first is second
        assert backend.count("check_pdf_eligibility") == 1

    def test_force_refresh_bypasses_cache(self, backend):
        resolver = EligibilityResolver(backend)
        resolver.resolve("user-1")
        backend.eligibility = {"is_eligible": False}

        assert resolver.resolve("user-1", force_refresh=True).is_free_eligible is False
        assert backend.count("check_pdf_eligibility") == 2

    def test_stale_entry_refetched(self, backend):
        resolver = EligibilityResolver(backend, ttl_seconds=30)
        resolver.resolve("user-1")

        with patch.object(EligibilitySnapshot, "is_stale", return_value=True):
            resolver.resolve("user-1")
        assert backend.count("check_pdf_eligibility") == 2

    def test_invalidate(self, backend):
        resolver = EligibilityResolver(backend)
        resolver.resolve("user-1")
        resolver.resolve("user-2")

        resolver.invalidate("user-1")
        resolver.resolve("user-1")
        resolver.resolve("user-2")
        assert backend.count("check_pdf_eligibility") == 3

        resolver.invalidate()
        resolver.resolve("user-2")
        assert backend.count("check_pdf_eligibility") == 4

    def test_signed_out_rejected(self):
        backend = FakeMarketplace(authenticated=False)
        with pytest.raises(AuthenticationRequiredError):
            EligibilityResolver(backend).resolve("user-1")

        with pytest.raises(AuthenticationRequiredError):
            EligibilityResolver(FakeMarketplace()).resolve(None)

    def test_no_subscription_record_is_zero_allowance(self, backend):
        def missing():
            raise APIError("Not found", status_code=404)

        backend.check_free_downloads = missing
        snapshot = EligibilityResolver(backend).resolve("user-1")
        assert snapshot.subscription_allowance_remaining == 0

    def test_other_subscription_errors_propagate(self, backend):
        def broken():
            raise APIError("Server error", status_code=500)

        backend.check_free_downloads = broken
        with pytest.raises(APIError):
            EligibilityResolver(backend).resolve("user-1")
