"""Read-through cache for categories and products.

Full lists are refreshed from the API at most once per refresh interval
(or when forced) and replace the local mirror in one transaction. Targeted
reads always try the API first and fall back to filtering the mirror.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sushi_client.core.config import settings
from sushi_client.core.metrics import SERVED_FROM_CACHE
from sushi_client.remote.client import RemoteSource
from sushi_client.schemas import CatalogDiagnostics, Category, Product, now_utc
from sushi_client.store.local_store import CategoryStore, ProductStore

logger = logging.getLogger(__name__)


class CatalogSyncCoordinator:
    def __init__(
        self,
        remote: RemoteSource,
        categories: CategoryStore,
        products: ProductStore,
        refresh_interval_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.remote = remote
        self.categories = categories
        self.products = products
        self.refresh_interval = timedelta(
            minutes=settings.CATALOG_REFRESH_MINUTES if refresh_interval_minutes is None else refresh_interval_minutes
        )
        self._clock = clock
        self.last_category_sync: Optional[datetime] = None
        self.last_product_sync: Optional[datetime] = None

    def _is_stale(self, last_sync: Optional[datetime]) -> bool:
        return last_sync is None or (self._clock() - last_sync) > self.refresh_interval

    def _from_cache(self, resource: str, rows: list) -> list:
        SERVED_FROM_CACHE.labels(resource=resource).inc()
        if rows:
            logger.info('Serving %d cached %s', len(rows), resource)
        else:
            logger.warning('No %s available: API unavailable and local cache empty', resource)
        return rows

    async def _categories_missing(self, products: List[Product]) -> bool:
        for category_id in {p.category_id for p in products}:
            if not await self.categories.exists(category_id):
                return True
        return False

    # ---------- categories ----------
    async def get_categories(self, force_refresh: bool = False) -> List[Category]:
        if force_refresh or self._is_stale(self.last_category_sync):
            result = await self.remote.get('categories', List[Category])
            if result.ok and result.value:
                logger.info('Fetched %d categories from API', len(result.value))
                if await self.categories.replace_all(result.value):
                    self.last_category_sync = self._clock()
                return result.value
            if result.ok:
                logger.warning('API returned no categories')
        return self._from_cache('categories', await self.categories.get_all())

    async def get_category_by_id(self, category_id: int) -> Optional[Category]:
        result = await self.remote.get(f'categories/{category_id}', Category)
        if result.ok and result.value is not None:
            return result.value
        SERVED_FROM_CACHE.labels(resource='categories').inc()
        return await self.categories.get_by_id(category_id)

    async def search_categories(self, name: str) -> List[Category]:
        if not name or not name.strip():
            return []
        result = await self.remote.get('categories/search', List[Category], params={'name': name.strip()})
        if result.ok and result.value:
            return result.value
        return self._from_cache('categories', await self.categories.search_by_name(name))

    # ---------- products ----------
    async def get_products(self, force_refresh: bool = False) -> List[Product]:
        if force_refresh or self._is_stale(self.last_product_sync):
            result = await self.remote.get('products', List[Product])
            if result.ok and result.value:
                logger.info('Fetched %d products from API', len(result.value))
                if await self._categories_missing(result.value):
                    # products are only mirrored under cached categories
                    await self.get_categories(force_refresh=True)
                if await self.products.replace_all(result.value):
                    self.last_product_sync = self._clock()
                return result.value
            if result.ok:
                logger.warning('API returned no products')
        return self._from_cache('products', await self.products.get_all())

    async def get_products_by_category(self, category_id: int) -> List[Product]:
        result = await self.remote.get(f'products/category/{category_id}', List[Product])
        if result.ok and result.value:
            return result.value
        return self._from_cache('products', await self.products.get_by_category(category_id))

    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        result = await self.remote.get(f'products/{product_id}', Product)
        if result.ok and result.value is not None:
            return result.value
        SERVED_FROM_CACHE.labels(resource='products').inc()
        cached = await self.products.get_by_id(product_id)
        logger.debug('Product %s in local cache: %s', product_id, cached is not None)
        return cached

    async def search_products(self, term: str) -> List[Product]:
        if not term or not term.strip():
            return []
        result = await self.remote.get('products/search', List[Product], params={'term': term.strip()})
        if result.ok and result.value:
            return result.value
        return self._from_cache('products', await self.products.search(term))

    async def get_in_stock_products(self) -> List[Product]:
        result = await self.remote.get('products/instock', List[Product])
        if result.ok and result.value:
            return result.value
        return self._from_cache('products', await self.products.get_in_stock())

    # ---------- maintenance ----------
    async def sync_with_api(self) -> None:
        logger.info('Forcing catalog refresh')
        await self.get_categories(force_refresh=True)
        await self.get_products(force_refresh=True)

    async def diagnostics(self) -> CatalogDiagnostics:
        return CatalogDiagnostics(
            cached_categories=await self.categories.count(),
            cached_products=await self.products.count(),
            last_category_sync=self.last_category_sync,
            last_product_sync=self.last_product_sync,
        )
