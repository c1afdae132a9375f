"""Metadata catalog client for TMDB and BGM.TV with caching and rate limiting."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from cachetools import TTLCache  # type: ignore[import-untyped]

from catalog.models import TMDB_PATH, CatalogSource, MediaInfo, MediaKind
from core.exceptions import ExternalServiceError
from core.sentry import add_breadcrumb

logger = logging.getLogger(__name__)

TMDB_API_BASE = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"
BGM_API_BASE = "https://api.bgm.tv/v0"
USER_AGENT = "nyamedia-bot/1.0"


class CatalogService:
    """Fetches title, summary and poster for a catalog item.

    Successful lookups are kept in a TTL cache so the confirmation card and a
    later batch fetch of the same item hit the upstream API only once. Upstream
    calls share one per-minute limiter and a concurrency cap.
    """

    def __init__(
        self,
        tmdb_token: str | None = None,
        bgm_token: str | None = None,
        language: str = "zh-CN",
        timeout: float = 10.0,
        cache_ttl: int = 3600,
        cache_maxsize: int = 512,
        rate_limit: int = 40,
        max_concurrent: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.tmdb_token = tmdb_token
        self.bgm_token = bgm_token
        self.language = language
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache: TTLCache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl)
        self._limiter = AsyncLimiter(rate_limit, 60)
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def configured_sources(self) -> list[CatalogSource]:
        sources = []
        if self.tmdb_token:
            sources.append(CatalogSource.TMDB)
        if self.bgm_token:
            sources.append(CatalogSource.BGM)
        return sources

    async def fetch(self, source: CatalogSource, kind: MediaKind, media_id: str) -> MediaInfo:
        """Fetch metadata for one catalog item.

        Raises:
            ExternalServiceError: On missing credentials, upstream errors,
                timeouts or unparseable responses.
        """
        key = (source, kind if source == CatalogSource.TMDB else None, media_id)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Catalog cache hit for {source}/{media_id}")
            return cached

        if source == CatalogSource.TMDB:
            info = await self._fetch_tmdb(kind, media_id)
        elif source == CatalogSource.BGM:
            info = await self._fetch_bgm(media_id)
        else:
            raise ExternalServiceError(f"Unsupported catalog source: {source}", tag="Catalog")

        self._cache[key] = info
        return info

    async def _get_json(
        self, tag: str, url: str, token: str | None, params: dict | None = None
    ) -> dict[str, Any]:
        """GET a JSON document under the catalog rate limit."""
        if not token:
            raise ExternalServiceError(f"{tag} access token is not configured", tag=tag)

        add_breadcrumb("catalog", f"fetch_{tag}", {"url": url})
        client = await self._get_client()

        async with self._semaphore:
            await self._limiter.acquire()
            try:
                response = await client.get(
                    url, params=params, headers={"Authorization": f"Bearer {token}"}
                )
            except httpx.TimeoutException as e:
                logger.error(f"{tag} request timed out: {url}")
                raise ExternalServiceError(f"{tag} request timed out", tag=tag) from e
            except httpx.RequestError as e:
                logger.error(f"{tag} request failed: {e}")
                raise ExternalServiceError(f"{tag} request failed: {e}", tag=tag) from e

        if not response.is_success:
            logger.warning(f"{tag} returned {response.status_code} for {url}: {response.text}")
            raise ExternalServiceError(
                f"{tag} API returned status {response.status_code}",
                tag=tag,
                details={"status_code": response.status_code, "body": response.text},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"Failed to parse {tag} response", tag=tag) from e
        if not isinstance(data, dict):
            raise ExternalServiceError(f"Unexpected {tag} response shape", tag=tag)
        return data

    async def _fetch_tmdb(self, kind: MediaKind, media_id: str) -> MediaInfo:
        url = f"{TMDB_API_BASE}/{TMDB_PATH[kind]}/{media_id}"
        data = await self._get_json(
            "TMDB", url, self.tmdb_token, params={"language": self.language}
        )

        title = data.get("title") or data.get("name") or "Unknown Title"
        poster_path = data.get("poster_path")
        logger.info(f"Fetched TMDB {TMDB_PATH[kind]} {media_id}: '{title}'")
        return MediaInfo(
            title=title,
            summary=data.get("overview") or None,
            poster=f"{TMDB_IMAGE_BASE}{poster_path}" if poster_path else None,
        )

    async def _fetch_bgm(self, media_id: str) -> MediaInfo:
        data = await self._get_json("BGM.TV", f"{BGM_API_BASE}/subjects/{media_id}", self.bgm_token)

        title = data.get("name_cn") or data.get("name") or "Unknown Title"
        images = data.get("images") or {}
        logger.info(f"Fetched BGM.TV subject {media_id}: '{title}'")
        return MediaInfo(
            title=title,
            summary=data.get("summary") or None,
            poster=images.get("common") or None,
        )
