from abc import ABC, abstractmethod
from typing import Any

import httpx
from cachetools import TTLCache
from loguru import logger

from src.signin.core.errors import InvalidIdentityToken, ProviderError
from src.signin.runtime.config.config_data import OIDCProviderConfig


class JWKSCache(ABC):
    @abstractmethod
    def get_jwks(self, jwks_uri: str) -> dict[str, Any]:
        """Return the cached JWKS for ``jwks_uri`` or an empty dict."""
        raise NotImplementedError

    @abstractmethod
    def set_jwks(self, jwks_uri: str, jwks: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear_jwks_cache(self) -> None:
        raise NotImplementedError


class JWKSCacheInMemory(JWKSCache):
    def __init__(self, ttl_seconds: int = 3600, maxsize: int = 10) -> None:
        self._cache: TTLCache[str, dict[str, Any]] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds
        )

    def get_jwks(self, jwks_uri: str) -> dict[str, Any]:
        return self._cache.get(jwks_uri, {})

    def set_jwks(self, jwks_uri: str, jwks: dict[str, Any]) -> None:
        self._cache[jwks_uri] = jwks

    def clear_jwks_cache(self) -> None:
        self._cache.clear()


class JwksService:
    """Fetches and caches provider signing keys."""

    def __init__(self, cache: JWKSCache) -> None:
        self._cache = cache

    async def fetch_jwks(
        self, provider: OIDCProviderConfig, force_refresh: bool = False
    ) -> dict[str, Any]:
        jwks_url = provider.jwks_uri
        if not jwks_url:
            raise InvalidIdentityToken("Provider has no JWKS URI configured")

        if not force_refresh:
            jwks = self._cache.get_jwks(jwks_url)
            if jwks:
                return jwks

        try:
            async with httpx.AsyncClient(timeout=provider.timeout_seconds) as client:
                resp = await client.get(jwks_url)
                resp.raise_for_status()
                jwks = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Failed to fetch JWKS from {jwks_url}: {exc}") from exc

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise ProviderError(f"Malformed JWKS document from {jwks_url}")

        logger.debug("Fetched {} signing keys from {}", len(jwks["keys"]), jwks_url)
        self._cache.set_jwks(jwks_url, jwks)
        return jwks
