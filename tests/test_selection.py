"""
Unit tests for the Selection Engine.

Covers exact-count capture, FIRST_N order, the SPECIFIC cap, destructive
mode/count changes, filter changes and stale page handling.
"""

import random

import pytest

from core.exceptions import BundleValidationError, SelectionCountError
from models.bundle import SelectionStrategy
from models.catalog import CatalogFilter, CatalogPage, DesignSummary
from modules.catalog import CatalogService
from modules.selection import SelectionEngine, ToggleOutcome

from conftest import FakeMarketplace, make_product


# Fixtures

@pytest.fixture
def catalog(backend):
    return CatalogService(backend)


def first_n_engine(catalog, count):
    engine = SelectionEngine(catalog, count, SelectionStrategy.FIRST_N)
    engine.refresh()
    return engine


def specific_engine(catalog, count):
    engine = SelectionEngine(catalog, count, SelectionStrategy.SPECIFIC)
    engine.refresh()
    return engine


def design(product_id):
    return DesignSummary.from_api(make_product(product_id))


# Tests for FIRST_N

class TestFirstN:

    def test_captures_first_n_in_fetch_order(self, catalog):
        engine = first_n_engine(catalog, 50)
        engine.fill_to_required()
        assert engine.capture() == tuple(range(1, 51))

    def test_fetches_only_while_short(self, catalog, backend):
        engine = first_n_engine(catalog, 30)
        assert engine.on_end_reached() is True       # 20 -> 40
        assert engine.on_end_reached() is False      # 40 >= 30, no fetch
        assert backend.count("get_home_feed") == 2

    def test_blocks_when_pool_short(self, catalog):
        engine = first_n_engine(catalog, 50)
        with pytest.raises(SelectionCountError) as exc:
            engine.capture()
        assert exc.value.shortfall == 30

    def test_insufficient_pool_names_shortfall(self):
        backend = FakeMarketplace(product_count=120)
        engine = first_n_engine(CatalogService(backend), 200)
        engine.fill_to_required()

        readiness = engine.readiness()
        assert readiness.ready is False
        assert readiness.can_load_more is False
        assert readiness.shortfall == 80

        with pytest.raises(SelectionCountError) as exc:
            engine.capture()
        assert "need 80 more" in exc.value.message
        assert exc.value.field == "selection"

    def test_designs_without_mockups_never_enter_pool(self):
        backend = FakeMarketplace(product_count=0)
        backend.products = [make_product(1), make_product(2, mockup=False), make_product(3)]
        engine = first_n_engine(CatalogService(backend), 2)
        assert engine.capture() == (1, 3)

    def test_toggle_is_ignored(self, catalog):
        engine = first_n_engine(catalog, 10)
        assert engine.toggle(1) is ToggleOutcome.IGNORED
        assert engine.chosen_ids == ()

    def test_order_depends_only_on_first_n(self):
        """Shuffling designs after position n does not change the submission."""
        rng = random.Random(1842)
        for _ in range(25):
            size = rng.randint(1, 150)
            n = rng.randint(1, size)
            ids = rng.sample(range(1, 10_000), size)

            backend = FakeMarketplace(product_count=0, page_size=rng.randint(1, 40))
            backend.products = [make_product(i) for i in ids]
            engine = first_n_engine(CatalogService(backend), n)
            engine.fill_to_required(max_pages=1000)

            tail = ids[n:]
            rng.shuffle(tail)
            other = FakeMarketplace(product_count=0, page_size=rng.randint(1, 40))
            other.products = [make_product(i) for i in ids[:n] + tail]
            other_engine = first_n_engine(CatalogService(other), n)
            other_engine.fill_to_required(max_pages=1000)

            assert engine.capture() == tuple(ids[:n])
            assert other_engine.capture() == engine.capture()


# Tests for SPECIFIC

class TestSpecific:

    def test_captures_in_selection_order(self, catalog):
        engine = specific_engine(catalog, 3)
        for pid in (7, 2, 15):
            assert engine.toggle(pid) is ToggleOutcome.ADDED
        assert engine.capture() == (7, 2, 15)

    def test_toggle_removes(self, catalog):
        engine = specific_engine(catalog, 3)
        engine.toggle(4)
        assert engine.toggle(4) is ToggleOutcome.REMOVED
        assert engine.chosen_ids == ()

    def test_limit_reached_does_not_evict(self, catalog):
        engine = specific_engine(catalog, 2)
        engine.toggle(1)
        engine.toggle(2)
        assert engine.toggle(3) is ToggleOutcome.LIMIT_REACHED
        assert engine.chosen_ids == (1, 2)

    def test_unknown_id_rejected(self, catalog):
        engine = specific_engine(catalog, 2)
        assert engine.toggle(9999) is ToggleOutcome.NOT_IN_POOL

    def test_too_few_blocks_submission(self, catalog):
        engine = specific_engine(catalog, 3)
        engine.toggle(1)
        with pytest.raises(SelectionCountError) as exc:
            engine.capture()
        assert exc.value.shortfall == 2
        assert "need 2 more" in exc.value.message

    def test_always_offers_more_pages(self, catalog, backend):
        engine = specific_engine(catalog, 5)
        assert engine.on_end_reached() is True
        assert backend.count("get_home_feed") == 2

    def test_cap_and_exact_count_over_random_toggles(self):
        rng = random.Random(7)
        for _ in range(40):
            pool_size = rng.randint(1, 100)
            required = rng.randint(1, 60)
            backend = FakeMarketplace(product_count=pool_size, page_size=100)
            engine = specific_engine(CatalogService(backend), required)

            for _ in range(rng.randint(0, 200)):
                before = len(engine.chosen_ids)
                outcome = engine.toggle(rng.randint(1, pool_size))
                assert len(engine.chosen_ids) <= required
                if outcome is ToggleOutcome.LIMIT_REACHED:
                    assert len(engine.chosen_ids) == before == required

            if len(engine.chosen_ids) == required:
                assert len(engine.capture()) == required
            else:
                with pytest.raises(SelectionCountError):
                    engine.capture()


# Tests for destructive changes

class TestStateResets:

    def test_mode_switch_clears_selection(self, catalog):
        engine = specific_engine(catalog, 3)
        engine.toggle(1)
        engine.set_mode(SelectionStrategy.FIRST_N)
        assert engine.chosen_ids == ()
        engine.set_mode(SelectionStrategy.SPECIFIC)
        assert engine.chosen_ids == ()

    def test_count_change_clears_selection_and_pool(self, catalog):
        engine = specific_engine(catalog, 3)
        engine.toggle(1)
        generation = engine.generation

        engine.set_required_count(5)
        assert engine.chosen_ids == ()
        assert engine.pool == ()
        assert engine.generation == generation + 1

    def test_invalid_count_rejected(self, catalog):
        engine = specific_engine(catalog, 3)
        with pytest.raises(BundleValidationError) as exc:
            engine.set_required_count(0)
        assert exc.value.field == "required_count"

    def test_subscription_lock_forces_first_n(self, catalog):
        engine = specific_engine(catalog, 3)
        engine.toggle(1)
        engine.lock_first_n()

        assert engine.mode is SelectionStrategy.FIRST_N
        assert engine.chosen_ids == ()
        with pytest.raises(BundleValidationError):
            engine.set_mode(SelectionStrategy.SPECIFIC)


# Tests for filters and stale pages

class TestFilters:

    def test_filter_change_drops_missing_ids(self, backend):
        engine = specific_engine(CatalogService(backend), 3)
        engine.toggle(2)
        engine.toggle(5)

        backend.search_products_list = [make_product(5), make_product(300)]
        dropped = engine.set_filters(CatalogFilter(query="poster"))

        assert dropped == [2]
        assert engine.chosen_ids == (5,)
        assert [d.id for d in engine.pool] == [5, 300]

    def test_filter_uses_search_endpoint(self, backend):
        engine = first_n_engine(CatalogService(backend), 10)
        engine.set_filters(CatalogFilter(category_id=3))
        assert backend.calls[-1] == ("search_products", ("", 3, 1))

    def test_stale_page_discarded(self, catalog):
        engine = specific_engine(catalog, 3)
        ticket = engine.begin_fetch()

        engine.set_required_count(4)  # pool restarted while the fetch was in flight
        late_page = CatalogPage(items=(design(900),), page=ticket.page, has_next=False)

        assert engine.apply_page(ticket, late_page) is False
        assert 900 not in [d.id for d in engine.pool]

    def test_page_for_old_filter_discarded(self, backend):
        engine = SelectionEngine(CatalogService(backend), 3, SelectionStrategy.SPECIFIC)
        ticket = engine.begin_fetch()

        backend.search_products_list = [make_product(42)]
        engine.set_filters(CatalogFilter(query="new"))

        old_page = CatalogPage(items=(design(1), design(2)), page=1, has_next=True)
        assert engine.apply_page(ticket, old_page) is False
        assert [d.id for d in engine.pool] == [42]

    def test_duplicate_ids_across_pages_kept_once(self, catalog):
        engine = SelectionEngine(catalog, 3, SelectionStrategy.FIRST_N)
        ticket = engine.begin_fetch()
        engine.apply_page(ticket, CatalogPage(items=(design(1), design(2)), page=1, has_next=True))
        ticket = engine.begin_fetch()
        engine.apply_page(ticket, CatalogPage(items=(design(2), design(3)), page=2, has_next=False))

        assert [d.id for d in engine.pool] == [1, 2, 3]
        assert engine.has_more_pages is False
