"""Content fetching and relay failover."""

from __future__ import annotations

__all__ = [
    "ContentFetcher",
    "DEFAULT_RELAYS",
    "HttpFetcher",
    "ProxyFailoverManager",
    "RelayEndpoint",
]

from feed_discovery.fetchers.http import ContentFetcher, HttpFetcher
from feed_discovery.fetchers.relays import DEFAULT_RELAYS, ProxyFailoverManager, RelayEndpoint
