from __future__ import annotations

import asyncio
from typing import Callable, Union

from feed_discovery.exceptions import HttpError
from feed_discovery.models import FetchResponse

Outcome = Union[FetchResponse, Exception, Callable[[str], FetchResponse]]

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://example.com</link>
    <description>Sample channel</description>
    <item>
      <title>News Item</title>
      <link>https://example.com/article</link>
      <pubDate>Mon, 26 Jan 2026 10:00:00 GMT</pubDate>
      <description>Summary</description>
    </item>
  </channel>
</rss>
"""

SAMPLE_ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>{title}</title>
  <link href="https://example.com/"/>
  <updated>2026-01-26T10:00:00Z</updated>
  <entry>
    <title>Entry One</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:1</id>
    <updated>2026-01-26T10:00:00Z</updated>
  </entry>
</feed>
"""


def rss(title: str = "Sample Feed") -> str:
    return SAMPLE_RSS.format(title=title)


def atom(title: str = "Sample Atom") -> str:
    return SAMPLE_ATOM.format(title=title)


def response(url: str, body: str, content_type: str | None = "text/html", via: str = "direct") -> FetchResponse:
    headers = {"content-type": content_type} if content_type else {}
    return FetchResponse(url=url, status_code=200, headers=headers, body=body, via=via)


class ScriptedFetcher:
    """ContentFetcher double: each URL maps to a response, an error, or a callable."""

    def __init__(self, routes: dict[str, Outcome] | None = None, delays: dict[str, float] | None = None) -> None:
        self.routes: dict[str, Outcome] = dict(routes or {})
        self.delays = dict(delays or {})
        self.calls: list[str] = []
        self.timeouts: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str, timeout: float) -> FetchResponse:
        self.calls.append(url)
        self.timeouts.append(timeout)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if url in self.delays:
                await asyncio.sleep(self.delays[url])
            outcome = self.routes.get(url)
            if outcome is None:
                raise HttpError(url, 404)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                return outcome(url)
            return outcome
        finally:
            self.in_flight -= 1


LATIN1_RSS = """<?xml version="1.0" encoding="ISO-8859-1"?>
<rss version="2.0">
  <channel>
    <title>Café News</title>
    <link>https://example.com</link>
    <item><title>Crème brûlée</title><link>https://example.com/creme</link></item>
  </channel>
</rss>
""".encode("iso-8859-1")
