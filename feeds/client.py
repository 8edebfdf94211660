"""Outbound HTTP for every source.

``FetchClient.fetch`` wraps httpx with three behaviours that all sources
share: hosts on cooldown are refused up front, ``ETag``/``Last-Modified``
validators are replayed so unchanged feeds answer ``304``, and failing
requests are retried with a rotated User-Agent before the host is put on
cooldown.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import httpx

from core.errors import FetchFailed
from core.models import FetchResponse
from feeds.breaker import HostBreaker, parse_retry_after
from feeds.conditional import ConditionalCache

log = logging.getLogger(__name__)

ACCEPT_PROFILES: dict[str, str] = {
    "xml": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
    "json": "application/feed+json,application/json,text/json;q=0.9,*/*;q=0.8",
    "html": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "auto": "application/rss+xml,application/atom+xml,application/xml,application/json;q=0.9,*/*;q=0.8",
}

# Rejections that rotating the identity will not fix.
HARD_REJECT_STATUSES = frozenset({401, 403, 429})


def build_accept(profile: str | None) -> str:
    return ACCEPT_PROFILES.get((profile or "auto").lower(), ACCEPT_PROFILES["auto"])


class FetchClient:
    def __init__(
        self,
        *,
        breaker: HostBreaker,
        conditional: ConditionalCache,
        user_agents: list[str],
        max_attempts: int = 4,
        timeout: float = 15.0,
        proxy: str | None = None,
        retry_delay: tuple[float, float] = (0.4, 1.0),
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        if not user_agents:
            raise ValueError("at least one user agent is required")
        self.breaker = breaker
        self.conditional = conditional
        self._user_agents = list(user_agents)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            proxy=proxy,
            transport=transport,
        )
        if proxy:
            log.info("HTTP proxy enabled: %s", proxy)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FetchClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _base_headers(self, url: str, accept: str | None) -> dict[str, str]:
        parts = urlsplit(url)
        headers = {
            "Accept": build_accept(accept),
            "Accept-Language": "en-US,en;q=0.9",
        }
        if parts.scheme and parts.netloc:
            headers["Referer"] = f"{parts.scheme}://{parts.netloc}/"
        return headers

    async def fetch(
        self,
        url: str,
        *,
        accept: str | None = "auto",
        headers: Mapping[str, str] | None = None,
        method: str = "GET",
        data: Mapping[str, str] | None = None,
        conditional: bool = True,
    ) -> FetchResponse:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise FetchFailed(f"unsupported URL: {url}", url=url, reason="unsupported-protocol")
        host = parts.netloc.lower()

        self.breaker.check(host, url=url)

        request_headers = self._base_headers(url, accept)
        use_conditional = conditional and method.upper() == "GET"
        if use_conditional:
            request_headers.update(self.conditional.headers_for(url))
        if headers:
            request_headers.update(headers)

        last_status: int | None = None
        last_error: str = ""
        for attempt in range(self._max_attempts):
            request_headers["User-Agent"] = self._user_agents[attempt % len(self._user_agents)]
            if attempt:
                await self._sleep(random.uniform(*self._retry_delay))
                log.debug("Retrying %s with rotated identity (attempt %d)", url, attempt + 1)
            try:
                resp = await self._client.request(
                    method, url, headers=request_headers, data=data
                )
            except httpx.HTTPError as exc:
                last_status = None
                last_error = f"{type(exc).__name__}: {exc}"
                log.debug("Network error for %s: %s", url, last_error)
                continue

            status = resp.status_code
            resp_headers = {k.lower(): v for k, v in resp.headers.items()}

            if status == 304:
                self.breaker.record_success(host)
                log.debug("Not modified: %s", url)
                return FetchResponse(url=url, status=304, headers=resp_headers, not_modified=True)

            if 200 <= status < 300:
                self.breaker.record_success(host)
                if use_conditional:
                    self.conditional.update(url, resp_headers)
                return FetchResponse(
                    url=str(resp.url), status=status, headers=resp_headers, body=resp.content
                )

            last_status = status
            last_error = f"HTTP {status}"
            if status in HARD_REJECT_STATUSES:
                retry_after = parse_retry_after(resp_headers.get("retry-after")) if status == 429 else None
                self.breaker.record_failure(
                    host, status=status, reason="hard-reject", retry_after=retry_after
                )
                raise FetchFailed(
                    f"{url} rejected with HTTP {status}",
                    url=url,
                    host=host,
                    status=status,
                    reason="hard-reject",
                )
            log.debug("HTTP %d for %s (attempt %d)", status, url, attempt + 1)

        self.breaker.record_failure(host, status=last_status, reason="exhausted-retries")
        log.error("All %d attempts failed for %s: %s", self._max_attempts, url, last_error)
        raise FetchFailed(
            f"all attempts failed for {url}: {last_error}",
            url=url,
            host=host,
            status=last_status,
            reason="exhausted-retries",
        )
