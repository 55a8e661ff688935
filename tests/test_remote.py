from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import jwt
import pytest

from sushi_client.core.auth import TokenStore
from sushi_client.core.errors import AuthenticationError
from sushi_client.remote.client import Outcome, RemoteSource
from sushi_client.schemas import Category, OrderStatus, OrderStatusUpdate, Product

from fake_api import BASE_URL, offline_transport


def make_token(expires_in: timedelta) -> str:
    exp = datetime.now(timezone.utc) + expires_in
    return jwt.encode({'sub': 'jane@x.com', 'role': 'customer', 'exp': exp}, 'devsecret', algorithm='HS256')


async def test_get_parses_typed_list(remote):
    result = await remote.get('categories', List[Category])
    assert result.ok
    assert result.outcome is Outcome.SUCCESS
    assert [c.name for c in result.value] == ['Nigiri', 'Maki']


async def test_get_single_product_uses_camel_case_fields(remote):
    result = await remote.get('products/3', Product)
    assert result.value.image_url == 'california.png'
    assert result.value.category_id == 2
    assert result.value.in_stock


async def test_bearer_token_attached_only_when_present(api, remote):
    await remote.get('categories', List[Category])
    remote.set_token('opaque-token')
    await remote.get('categories', List[Category])
    assert api.auth_headers == [None, 'Bearer opaque-token']


async def test_expired_jwt_is_not_sent(api):
    tokens = TokenStore(make_token(timedelta(minutes=-5)))
    async with RemoteSource(BASE_URL, tokens=tokens, transport=httpx.ASGITransport(app=api.app)) as source:
        await source.get('categories', List[Category])
    assert api.auth_headers == [None]


async def test_valid_jwt_is_sent(api):
    token = make_token(timedelta(hours=1))
    async with RemoteSource(BASE_URL, tokens=TokenStore(token), transport=httpx.ASGITransport(app=api.app)) as source:
        await source.get('categories', List[Category])
    assert api.auth_headers == [f'Bearer {token}']


async def test_unauthorized_raises(api, remote):
    api.required_token = 'good'
    remote.set_token('bad')
    with pytest.raises(AuthenticationError):
        await remote.get('products', List[Product])


async def test_server_error_is_classified_not_raised(api, remote):
    api.down = True
    result = await remote.get('products', List[Product])
    assert not result.ok
    assert result.outcome is Outcome.SERVER_ERROR
    assert result.status_code == 503
    assert result.value is None
    assert result.error.kind == 'server_error'


async def test_not_found_is_server_error(remote):
    result = await remote.get('products/999', Product)
    assert result.outcome is Outcome.SERVER_ERROR
    assert result.status_code == 404


@pytest.mark.parametrize('exc_type, outcome', [
    (httpx.ConnectTimeout, Outcome.TIMEOUT),
    (httpx.ReadTimeout, Outcome.TIMEOUT),
    (httpx.ConnectError, Outcome.UNREACHABLE),
    (httpx.DecodingError, Outcome.UNREACHABLE),
    (httpx.TooManyRedirects, Outcome.UNREACHABLE),
])
async def test_transport_failures(exc_type, outcome):
    async with RemoteSource(BASE_URL, transport=offline_transport(exc_type)) as source:
        result = await source.get('categories', List[Category])
    assert result.outcome is outcome
    assert result.value is None


async def test_unparseable_body_is_server_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b'<html>maintenance</html>'))
    async with RemoteSource(BASE_URL, transport=transport) as source:
        result = await source.get('categories', List[Category])
    assert result.outcome is Outcome.SERVER_ERROR


async def test_put_and_delete(api, remote):
    api.orders[7] = {'id': 7, 'status': 0, 'customerEmail': 'a@b.c', 'orderDate': '2026-01-01T10:00:00'}
    put = await remote.put('orders/7/status', OrderStatusUpdate(status=OrderStatus.SHIPPED))
    assert put.ok
    assert api.orders[7]['status'] == 2
    deleted = await remote.delete('orders/7')
    assert deleted.ok
    assert 7 not in api.orders
    assert not (await remote.delete('orders/7')).ok


async def test_is_reachable(api, remote, offline_remote):
    assert await remote.is_reachable()
    assert not await offline_remote.is_reachable()
    api.required_token = 'needed'
    assert await remote.is_reachable()
