from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from feed_discovery.exceptions import FetchTimeoutError, HttpError, NetworkError
from feed_discovery.models import FetchResponse

DEFAULT_USER_AGENT = "feed-discovery/0.1"
ACCEPT_ANY_FEED = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/xml;q=0.9, text/xml;q=0.9, text/html;q=0.8, */*;q=0.5"
)


class ContentFetcher(Protocol):
    async def fetch(self, url: str, timeout: float) -> FetchResponse:
        ...


@dataclass
class HttpFetcher:
    """Single GET per call; any non-2xx status or transport failure is an error."""

    user_agent: str = DEFAULT_USER_AGENT
    headers: dict[str, str] = field(default_factory=dict)
    transport: httpx.AsyncBaseTransport | None = None

    async def fetch(self, url: str, timeout: float) -> FetchResponse:
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(self._get(url, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise FetchTimeoutError(url, timeout) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NetworkError(f"{type(exc).__name__}: {exc}", url) from exc

        if not response.is_success:
            raise HttpError(url, response.status_code)

        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            body=response.text,
            content=response.content,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        headers = {"User-Agent": self.user_agent, "Accept": ACCEPT_ANY_FEED}
        headers.update(self.headers)
        async with httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            return await client.get(url)
