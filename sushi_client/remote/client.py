"""HTTP access to the ordering API.

Every call returns a ``RemoteResult`` that says how the call went. A 401 is
the one outcome that is raised (``AuthenticationError``): the caller has to
refresh the credential or send the user back to the login screen, and must
not be handed cached data instead. Nothing here retries.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Generic, Optional, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PayloadError

from sushi_client.core.auth import TokenStore
from sushi_client.core.config import settings
from sushi_client.core.errors import AuthenticationError, RemoteUnavailable
from sushi_client.core.metrics import REMOTE_CALLS
from sushi_client.version import VERSION

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Outcome(str, Enum):
    SUCCESS = 'success'
    UNREACHABLE = 'unreachable'
    TIMEOUT = 'timeout'
    SERVER_ERROR = 'server_error'


@dataclass
class RemoteResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[RemoteUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@lru_cache(maxsize=None)
def _adapter(model) -> TypeAdapter:
    return TypeAdapter(model)


def path_segment(value: Any) -> str:
    return quote(str(value), safe='')


class RemoteSource:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        tokens: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tokens = tokens or TokenStore()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=httpx.Timeout(timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS),
            headers={'Accept': 'application/json', 'User-Agent': f'sushi-client/{VERSION}'},
            transport=transport,
        )
        logger.debug('RemoteSource initialized with base URL %s', self._client.base_url)

    async def __aenter__(self) -> 'RemoteSource':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_token(self, token: Optional[str]) -> None:
        self.tokens.set(token)

    def _failed(self, method: str, path: str, outcome: Outcome, detail: str, status_code: Optional[int] = None) -> RemoteResult:
        REMOTE_CALLS.labels(method=method, outcome=outcome.value).inc()
        logger.warning('%s %s failed (%s): %s', method, path, outcome.value, detail)
        return RemoteResult(outcome, None, status_code, RemoteUnavailable(outcome.value, detail))

    async def _request(self, method: str, path: str, model=None, params: Optional[dict] = None, body: Any = None) -> RemoteResult:
        path = path.lstrip('/')
        if isinstance(body, BaseModel):
            body = body.model_dump(mode='json', by_alias=True)
        logger.debug('%s %s', method, path)
        try:
            resp = await self._client.request(method, path, params=params, json=body, headers=self.tokens.auth_headers())
        except httpx.TimeoutException as exc:
            return self._failed(method, path, Outcome.TIMEOUT, str(exc) or 'request timed out')
        except httpx.RequestError as exc:
            return self._failed(method, path, Outcome.UNREACHABLE, str(exc) or type(exc).__name__)

        if resp.status_code == 401:
            REMOTE_CALLS.labels(method=method, outcome='unauthorized').inc()
            logger.warning('%s %s rejected with 401', method, path)
            raise AuthenticationError(path=path)
        if not resp.is_success:
            return self._failed(method, path, Outcome.SERVER_ERROR, f'{resp.status_code} {resp.text[:200]}', resp.status_code)

        value = None
        if model is not None and resp.content and resp.content.strip() != b'null':
            try:
                value = _adapter(model).validate_json(resp.content)
            except PayloadError as exc:
                return self._failed(method, path, Outcome.SERVER_ERROR, f'unparseable response body ({exc.error_count()} errors)', resp.status_code)
        REMOTE_CALLS.labels(method=method, outcome=Outcome.SUCCESS.value).inc()
        logger.debug('%s %s -> %s', method, path, resp.status_code)
        return RemoteResult(Outcome.SUCCESS, value, resp.status_code)

    async def get(self, path: str, model, params: Optional[dict] = None) -> RemoteResult:
        return await self._request('GET', path, model=model, params=params)

    async def post(self, path: str, body: Any, model=None) -> RemoteResult:
        return await self._request('POST', path, model=model, body=body)

    async def put(self, path: str, body: Any) -> RemoteResult:
        return await self._request('PUT', path, body=body)

    async def delete(self, path: str) -> RemoteResult:
        return await self._request('DELETE', path)

    async def is_reachable(self) -> bool:
        try:
            result = await self._request('GET', 'categories')
        except AuthenticationError:
            # the server answered; only the credential is wrong
            return True
        return result.ok
