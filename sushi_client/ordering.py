import logging
from typing import Optional

import httpx

from sushi_client.core.auth import TokenStore
from sushi_client.core.config import Settings, settings as default_settings
from sushi_client.db.session import init_schema, make_engine, make_session_factory
from sushi_client.remote.client import RemoteSource
from sushi_client.store.cart_store import Cart
from sushi_client.store.local_store import CategoryStore, OrderStore, ProductStore
from sushi_client.sync.catalog import CatalogSyncCoordinator
from sushi_client.sync.orders import OrderSyncCoordinator

logger = logging.getLogger(__name__)


class OrderingSession:
    """One client session: its own remote source, local mirror, cart and coordinators."""

    def __init__(self, settings: Optional[Settings] = None, token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or default_settings
        self.engine = make_engine(self.settings.LOCAL_DB_DSN)
        init_schema(self.engine)
        session_factory = make_session_factory(self.engine)

        self.tokens = TokenStore(token, leeway_seconds=self.settings.TOKEN_EXPIRY_LEEWAY_SECONDS)
        self.remote = RemoteSource(self.settings.API_BASE_URL, self.settings.HTTP_TIMEOUT_SECONDS, self.tokens, transport)
        self.cart = Cart()
        self.catalog = CatalogSyncCoordinator(
            self.remote, CategoryStore(session_factory), ProductStore(session_factory),
            refresh_interval_minutes=self.settings.CATALOG_REFRESH_MINUTES,
        )
        self.orders = OrderSyncCoordinator(self.remote, OrderStore(session_factory), self.cart)
        logger.debug('Ordering session opened on %s', self.settings.LOCAL_DB_DSN)

    async def __aenter__(self) -> 'OrderingSession':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self.remote.aclose()
        self.engine.dispose()
