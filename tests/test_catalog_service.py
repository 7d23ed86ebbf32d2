from decimal import Decimal

import pytest

from storefront.errors import NotFound
from storefront.services import CatalogService


class Timer:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def timer():
    return Timer()


@pytest.fixture
def catalog(promotions, session_factory, timer):
    return CatalogService(promotions, session_factory=session_factory, timer=timer)


def test_listing_is_cached_until_invalidated(catalog, seed):
    mango = seed.product(price=Decimal("1000.00"))
    assert catalog.list_products()["total"] == 1

    seed.product(name="Pineapple")
    assert catalog.list_products()["total"] == 1

    catalog.invalidate_cache()
    assert catalog.list_products()["total"] == 2
    assert catalog.get_product(mango.id)["effectivePrice"] == "1000.00"


def test_entries_expire_after_ttl(catalog, seed, timer):
    seed.product()
    catalog.list_products()
    seed.product(name="Pineapple")

    timer.now += 31
    assert catalog.list_products()["total"] == 2


def test_expired_entries_are_evicted(catalog, seed, timer):
    seed.product()
    for q in ("a", "b", "c"):
        catalog.list_products(query=q)

    timer.now += 31
    catalog.list_products(query="d")

    assert list(catalog._cache) == [("d", 1, 20)]


def test_cache_size_is_bounded(catalog, seed, timer):
    catalog._cache_max_entries = 3
    seed.product()
    for i in range(10):
        timer.now += 1
        catalog.list_products(query=f"search-{i}")

    assert len(catalog._cache) == 3
    assert ("search-9", 1, 20) in catalog._cache
    assert ("search-0", 1, 20) not in catalog._cache


def test_query_is_normalized_for_caching(catalog, seed):
    seed.product(name="Mango")
    catalog.list_products(query="Mango ")
    catalog.list_products(query="mango")
    assert len(catalog._cache) == 1


def test_unavailable_product_is_hidden(catalog, seed):
    hidden = seed.product(is_available=False)
    with pytest.raises(NotFound):
        catalog.get_product(hidden.id)
