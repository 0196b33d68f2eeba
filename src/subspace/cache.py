"""Cached JSON snapshots and gateway documents served over plain HTTP."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from subspace.config import ConfigStore, Settings
from subspace.errors import CacheReadError, RetryExhaustedError
from subspace.retry import RetryPolicy

PROCESS_DEVICE = "process@1.0"


def process_cache_path(process_id: str, *segments: str) -> str:
    """Path of a value a process exposes in its cache, e.g. ``<pid>~process@1.0/now/cache/bots``."""

    parts = [f"{process_id}~{PROCESS_DEVICE}", "now", "cache"]
    parts.extend(quote(segment.strip("/"), safe="@~") for segment in segments if segment.strip("/"))
    return "/".join(parts)


class CacheReader:
    """Fetch cache documents and gateway sources over HTTP with bounded retry."""

    def __init__(
        self,
        config: ConfigStore,
        *,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        retries: int | None = None,
    ) -> None:
        self.config = config
        self.retry = retry or RetryPolicy()
        self.retries = retries
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def read(
        self,
        path: str,
        *,
        retries: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Any:
        """Return the decoded JSON document at ``path``.

        Transport errors, non-2xx answers and bodies that are not JSON are
        all treated as transient and retried.
        """

        settings = self.config.settings
        url = f"{settings.hyperbeam_url.rstrip('/')}/{path.lstrip('/')}"
        document = await self._get(
            settings,
            url,
            lambda response: response.json(),
            accept="application/json",
            retries=retries,
            cancel=cancel,
            label=f"cache:{path}",
        )
        logger.debug("cache.read path={}", path)
        return document

    async def read_source(
        self,
        source_id: str,
        *,
        retries: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Return the text of a transaction stored on the gateway."""

        settings = self.config.settings
        url = f"{settings.gateway_url.rstrip('/')}/{quote(source_id, safe='')}"
        text = await self._get(
            settings,
            url,
            lambda response: response.text,
            accept="text/plain, */*",
            retries=retries,
            cancel=cancel,
            label=f"gateway:{source_id}",
        )
        logger.debug("gateway.read id={} size={}", source_id, len(text))
        return text

    async def _get[T](
        self,
        settings: Settings,
        url: str,
        decode: Callable[[httpx.Response], T],
        *,
        accept: str,
        retries: int | None,
        cancel: asyncio.Event | None,
        label: str,
    ) -> T:
        attempts = retries or self.retries or settings.default_retries

        async def _fetch() -> T:
            response = await self.client.get(url, headers={"Accept": accept}, timeout=settings.http_timeout_seconds)
            response.raise_for_status()
            return decode(response)

        try:
            return await self.retry.execute(_fetch, attempts, cancel=cancel, label=label)
        except RetryExhaustedError as exc:
            raise CacheReadError(url, exc.last_error) from exc
