"""Feed recognition, link sniffing and the discovery orchestrator."""

from __future__ import annotations

__all__ = [
    "FeedCandidate",
    "FeedDiscoveryOrchestrator",
    "FeedFormatParser",
    "FeedParser",
    "canonicalise_url",
    "extract_feed_links",
    "scan_content_links",
    "validate_url",
]

from feed_discovery.discovery.links import FeedCandidate, extract_feed_links, scan_content_links
from feed_discovery.discovery.orchestrator import FeedDiscoveryOrchestrator
from feed_discovery.discovery.parser import FeedFormatParser, FeedParser
from feed_discovery.discovery.url_utils import canonicalise_url, validate_url
