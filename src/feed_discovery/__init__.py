"""Resilient feed discovery: direct fetch, relay failover, feed recognition."""

from __future__ import annotations

__all__ = [
    "AppConfig",
    "DiscoveryResult",
    "FeedDiscoveryOrchestrator",
    "FeedParser",
    "HttpFetcher",
    "ParsedFeed",
    "ProxyFailoverManager",
    "RelayEndpoint",
    "load_config",
]

__version__ = "0.1.0"

from feed_discovery.config import AppConfig, load_config
from feed_discovery.discovery import FeedDiscoveryOrchestrator, FeedParser
from feed_discovery.fetchers import HttpFetcher, ProxyFailoverManager, RelayEndpoint
from feed_discovery.models import DiscoveryResult, ParsedFeed
