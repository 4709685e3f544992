"""Lightweight repository reachability check."""

import asyncio
import logging
from typing import Iterable, Optional

import httpx

from pubrisk import config
from pubrisk.collectors.gate import ConcurrencyGate
from pubrisk.services.cache import DiskCache

logger = logging.getLogger(__name__)


class ReachabilityProbe:
    """
    HEAD-request a repository URL to see whether it still exists.

    Used only for repositories whose health could not be fetched. Shares the
    pub.dev collector's gate and HTTP client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        gate: ConcurrencyGate,
        cache: Optional[DiskCache] = None,
        timeout: float = config.PROBE_TIMEOUT,
    ):
        self.client = client
        self.gate = gate
        self.cache = cache
        self.timeout = timeout

    async def probe(self, url: str) -> Optional[bool]:
        """
        Check a repository URL.

        Returns:
            True for status < 400, False otherwise, None if the connection failed.
        """
        cache_key = f"probe:{url}"
        if self.cache is not None:
            hit = self.cache.get(cache_key)
            if isinstance(hit, dict) and isinstance(hit.get("reachable"), bool):
                return hit["reachable"]

        try:
            async with self.gate:
                response = await self.client.head(url, timeout=self.timeout, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Probe of {url} failed: {e}")
            return None

        reachable = response.status_code < 400
        if self.cache is not None:
            self.cache.set(cache_key, {"reachable": reachable}, ttl=config.PROBE_TTL)
        return reachable

    async def probe_all(self, urls: Iterable[str]) -> dict[str, Optional[bool]]:
        """Probe every distinct URL concurrently."""
        unique = list(dict.fromkeys(urls))
        results = await asyncio.gather(*(self.probe(url) for url in unique))
        return dict(zip(unique, results))
