# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Knowledge base content fetching from an IPFS HTTP gateway."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import Protocol

import httpx

from .errors import ContentFetchFailed
from .logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_GATEWAY_URL = "https://w3s.link/ipfs/"
CACHE_MAX_ENTRIES = 500
CACHE_TTL_SECONDS = 600.0


class ContentFetcher(Protocol):
    async def fetch(self, reference: str) -> str: ...


class GatewayContentFetcher:
    """Fetches content by CID with retries and a bounded TTL cache.

    A 404 is final: the gateway has nothing under that CID and retrying will
    not change that. Other HTTP errors and transport failures are retried
    with exponential backoff.
    """

    def __init__(
        self,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = 25.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        cache_size: int = CACHE_MAX_ENTRIES,
        cache_ttl: float = CACHE_TTL_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.gateway_url = gateway_url if gateway_url.endswith("/") else gateway_url + "/"
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.cache_size = cache_size
        self.cache_ttl = cache_ttl
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._cache: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def _cached(self, reference: str) -> str | None:
        hit = self._cache.get(reference)
        if hit is None:
            return None
        content, stored_at = hit
        if time.monotonic() - stored_at > self.cache_ttl:
            del self._cache[reference]
            return None
        return content

    def _store(self, reference: str, content: str) -> None:
        self._cache[reference] = (content, time.monotonic())
        self._cache.move_to_end(reference)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def fetch(self, reference: str) -> str:
        if not reference:
            raise ContentFetchFailed("Empty content reference", reference=reference)
        cached = self._cached(reference)
        if cached is not None:
            logger.debug("content.cache_hit", reference=reference)
            return cached

        url = self.gateway_url + reference
        last_error = ""
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.get(url)
                if response.status_code == 404:
                    raise ContentFetchFailed(f"Content not found: {reference}", reference=reference, details={"status": 404})
                if response.status_code >= 400:
                    last_error = f"HTTP {response.status_code}"
                else:
                    content = response.text
                    if not content.strip():
                        raise ContentFetchFailed(f"Gateway returned empty content for {reference}", reference=reference)
                    self._store(reference, content)
                    logger.info("content.fetched", reference=reference, chars=len(content), attempt=attempt + 1)
                    return content
            except httpx.RequestError as e:
                last_error = str(e) or type(e).__name__

            if attempt < self.max_retries:
                wait_time = self.backoff_base * 2**attempt
                logger.warning("content.retry", reference=reference, attempt=attempt + 1, wait_s=wait_time, error=last_error)
                await asyncio.sleep(wait_time)

        raise ContentFetchFailed(
            f"Failed to fetch {reference} after {self.max_retries + 1} attempts: {last_error}",
            reference=reference,
        )

    async def close(self) -> None:
        await self.client.aclose()
