import httpx
import pytest

from sushi_client.core.errors import AuthenticationError
from sushi_client.remote.client import RemoteSource
from sushi_client.sync.catalog import CatalogSyncCoordinator

from fake_api import BASE_URL, offline_transport


@pytest.fixture
def offline_catalog(offline_remote, category_store, product_store, clock):
    return CatalogSyncCoordinator(offline_remote, category_store, product_store, refresh_interval_minutes=60, clock=clock)


def product_gets(api):
    return [c for c in api.calls if c == ('GET', '/api/products')]


async def test_forced_refresh_mirrors_exact_remote_set(api, catalog, product_store, clock):
    await catalog.get_products()
    api.products = [p for p in api.products if p['id'] != 2]

    products = await catalog.get_products(force_refresh=True)

    assert [p.id for p in products] == [1, 3]
    assert [p.id for p in await product_store.get_all()] == [1, 3]
    assert catalog.last_product_sync == clock.now


async def test_refresh_is_skipped_within_interval(api, catalog, clock):
    await catalog.get_products()
    clock.advance(minutes=30)
    cached = await catalog.get_products()

    assert len(product_gets(api)) == 1
    assert [p.name for p in cached] == ['Salmon Nigiri', 'Tuna Nigiri', 'California Roll']

    clock.advance(minutes=31)
    await catalog.get_products()
    assert len(product_gets(api)) == 2


async def test_categories_and_products_have_separate_timestamps(catalog, clock):
    await catalog.get_categories()
    assert catalog.last_category_sync == clock.now
    assert catalog.last_product_sync is None


async def test_offline_serves_the_cached_catalog(catalog, offline_catalog):
    await catalog.sync_with_api()

    products = await offline_catalog.get_products(force_refresh=True)
    categories = await offline_catalog.get_categories()

    assert [p.id for p in products] == [1, 2, 3]
    assert [c.name for c in categories] == ['Nigiri', 'Maki']
    assert offline_catalog.last_product_sync is None


async def test_offline_with_empty_cache_returns_empty_list(offline_catalog):
    assert await offline_catalog.get_products() == []
    assert await offline_catalog.get_categories() == []


async def test_server_error_falls_back_to_cache(api, catalog):
    await catalog.get_products()
    api.down = True
    assert len(await catalog.get_products(force_refresh=True)) == 3


async def test_empty_remote_list_does_not_wipe_cache(api, catalog, product_store):
    await catalog.get_products()
    api.products = []
    products = await catalog.get_products(force_refresh=True)
    assert len(products) == 3
    assert await product_store.count() == 3


async def test_targeted_reads_prefer_remote(catalog, product_store):
    product = await catalog.get_product_by_id(3)
    assert product.name == 'California Roll'
    assert [p.id for p in await catalog.get_products_by_category(1)] == [1, 2]
    assert [p.id for p in await catalog.search_products('roll')] == [3]
    assert [p.id for p in await catalog.get_in_stock_products()] == [1, 3]
    category = await catalog.get_category_by_id(1)
    assert [p.id for p in category.products] == [1, 2]
    assert [c.name for c in await catalog.search_categories('mak')] == ['Maki']
    # targeted reads never populate the mirror
    assert await product_store.count() == 0
    assert catalog.last_product_sync is None


async def test_targeted_reads_fall_back_to_cache(catalog, offline_catalog):
    await catalog.sync_with_api()

    assert (await offline_catalog.get_product_by_id(1)).name == 'Salmon Nigiri'
    assert await offline_catalog.get_product_by_id(99) is None
    assert [p.id for p in await offline_catalog.get_products_by_category(2)] == [3]
    assert [p.id for p in await offline_catalog.search_products('NIGIRI')] == [1, 2]
    assert [p.name for p in await offline_catalog.get_in_stock_products()] == ['California Roll', 'Salmon Nigiri']
    category = await offline_catalog.get_category_by_id(2)
    assert [p.id for p in category.products] == [3]
    assert [c.id for c in await offline_catalog.search_categories('nig')] == [1]


async def test_blank_search_makes_no_call(api, catalog):
    assert await catalog.search_products('  ') == []
    assert await catalog.search_categories('') == []
    assert api.calls == []


async def test_diagnostics_reports_cache_state(catalog, clock):
    before = await catalog.diagnostics()
    assert (before.cached_categories, before.cached_products) == (0, 0)

    await catalog.sync_with_api()
    after = await catalog.diagnostics()
    assert (after.cached_categories, after.cached_products) == (2, 3)
    assert after.last_category_sync == clock.now
    assert after.last_product_sync == clock.now


async def test_unauthorized_propagates(api, catalog, remote):
    api.required_token = 'good'
    remote.set_token('stale')
    with pytest.raises(AuthenticationError):
        await catalog.get_categories(force_refresh=True)


async def test_category_refresh_drops_products_of_removed_category(api, catalog, product_store):
    await catalog.sync_with_api()
    api.categories = [c for c in api.categories if c['id'] != 2]

    categories = await catalog.get_categories(force_refresh=True)

    assert [c.id for c in categories] == [1]
    assert [p.id for p in await product_store.get_all()] == [1, 2]


async def test_product_refresh_caches_categories_first(api, catalog, category_store, product_store):
    await catalog.get_products()

    assert api.calls[:2] == [('GET', '/api/products'), ('GET', '/api/categories')]
    assert await category_store.count() == 2
    assert await product_store.count() == 3


async def test_undecodable_response_falls_back_to_cache(catalog, category_store, product_store, clock):
    await catalog.sync_with_api()
    async with RemoteSource(BASE_URL, transport=offline_transport(httpx.DecodingError)) as broken:
        fallback = CatalogSyncCoordinator(broken, category_store, product_store, clock=clock)
        assert len(await fallback.get_products(force_refresh=True)) == 3
        assert (await fallback.get_product_by_id(3)).name == 'California Roll'
