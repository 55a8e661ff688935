import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from sushi_client.core.config import settings

logger = logging.getLogger(__name__)


def token_expiry(token: str) -> Optional[datetime]:
    """Read the ``exp`` claim without verifying the signature.

    Returns None for opaque tokens and for JWTs that carry no expiry.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.DecodeError:
        return None
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


class TokenStore:
    """Holds the bearer credential used by RemoteSource.

    Issuing and validating tokens belongs to the auth service; this only
    avoids sending a token that is already known to be expired.
    """

    def __init__(self, token: Optional[str] = None, leeway_seconds: Optional[int] = None):
        self._token: Optional[str] = None
        self.leeway = timedelta(seconds=settings.TOKEN_EXPIRY_LEEWAY_SECONDS if leeway_seconds is None else leeway_seconds)
        if token:
            self.set(token)

    def set(self, token: Optional[str]) -> None:
        if not token or not token.strip():
            self.clear()
            return
        self._token = token.strip()
        logger.debug("Authorization token set")

    def clear(self) -> None:
        self._token = None
        logger.debug("Authorization token removed")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self._token:
            return False
        exp = token_expiry(self._token)
        if exp is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= exp - self.leeway

    def current(self) -> Optional[str]:
        if not self._token:
            return None
        if self.is_expired():
            logger.debug("Stored token is expired; sending request without it")
            return None
        return self._token

    def auth_headers(self) -> dict:
        token = self.current()
        return {"Authorization": f"Bearer {token}"} if token else {}
