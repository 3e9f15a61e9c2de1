import threading
import time
from typing import Callable

import httpx

from skillgap.config.settings import settings
from skillgap.core.errors import GraphConfigError, RecommendationSourceUnavailable
from skillgap.core.logging import logger


class TokenCache:
    """Process-wide OAuth2 client-credentials token holder.

    The token is fetched lazily and kept until ``expires_in`` minus a safety
    margin. Two threads may refresh at the same moment; both results are valid
    and the later one simply replaces the earlier.
    """

    def __init__(
        self,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        scope: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_url = token_url if token_url is not None else settings.graph_token_url
        self.client_id = client_id if client_id is not None else settings.graph_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.graph_client_secret.get_secret_value()
        )
        self.scope = scope or settings.graph_scope
        self.timeout = timeout or settings.graph_timeout_seconds
        self.transport = transport
        self.clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def get_access_token(self) -> str:
        if not (self.client_id and self.client_secret and self.token_url):
            raise GraphConfigError("Graph gateway client credentials are not configured")
        with self._lock:
            if self._token and self.clock() < self._expires_at:
                return self._token
        token, ttl = self._fetch()
        margin = settings.graph_token_safety_margin_seconds
        with self._lock:
            self._token = token
            self._expires_at = self.clock() + max(ttl - margin, 0)
        return token

    def _fetch(self) -> tuple[str, int]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(
                    self.token_url,
                    data={"grant_type": "client_credentials", "scope": self.scope},
                    auth=(self.client_id, self.client_secret),
                )
                r.raise_for_status()
                payload = r.json()
        except httpx.HTTPStatusError as e:
            logger.warning("graph_token_rejected", status=e.response.status_code)
            raise RecommendationSourceUnavailable(
                "Graph gateway authentication failed", status=e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("graph_token_unavailable", error=str(e))
            raise RecommendationSourceUnavailable("Graph gateway token endpoint unreachable") from e
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise RecommendationSourceUnavailable("Token response carried no access_token")
        try:
            ttl = int(payload.get("expires_in") or settings.graph_token_default_ttl_seconds)
        except (TypeError, ValueError):
            ttl = settings.graph_token_default_ttl_seconds
        logger.info("graph_token_refreshed", expires_in=ttl)
        return str(token), ttl


_cache: TokenCache | None = None


def get_token_cache() -> TokenCache:
    global _cache
    if _cache is None:
        _cache = TokenCache()
    return _cache


def get_access_token() -> str:
    return get_token_cache().get_access_token()
