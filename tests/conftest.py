from decimal import Decimal

import httpx
import pytest

from sushi_client.db.session import init_schema, make_engine, make_session_factory
from sushi_client.remote.client import RemoteSource
from sushi_client.schemas import OrderItem
from sushi_client.store.cart_store import Cart
from sushi_client.store.local_store import CategoryStore, OrderStore, ProductStore
from sushi_client.sync.catalog import CatalogSyncCoordinator
from sushi_client.sync.orders import OrderSyncCoordinator

from fake_api import BASE_URL, FakeClock, FakeOrderingApi, offline_transport


@pytest.fixture
def api():
    return FakeOrderingApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'local.db'}")
    init_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def category_store(session_factory):
    return CategoryStore(session_factory)


@pytest.fixture
def product_store(session_factory):
    return ProductStore(session_factory)


@pytest.fixture
def order_store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
async def remote(api):
    source = RemoteSource(BASE_URL, timeout=5, transport=httpx.ASGITransport(app=api.app))
    yield source
    await source.aclose()


@pytest.fixture
async def offline_remote():
    source = RemoteSource(BASE_URL, timeout=5, transport=offline_transport(httpx.ConnectTimeout))
    yield source
    await source.aclose()


@pytest.fixture
def cart():
    return Cart()


@pytest.fixture
def catalog(remote, category_store, product_store, clock):
    return CatalogSyncCoordinator(remote, category_store, product_store, refresh_interval_minutes=60, clock=clock)


@pytest.fixture
def order_sync(remote, order_store, cart, clock):
    return OrderSyncCoordinator(remote, order_store, cart, clock=clock)


@pytest.fixture
def salmon_line():
    return OrderItem(product_id=1, product_name='Salmon Nigiri', quantity=2, unit_price=Decimal('8.50'))
