from __future__ import annotations

import re
from dataclasses import dataclass
from html import unescape
from typing import Iterable
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from feed_discovery.discovery.url_utils import HTTP_SCHEMES, canonicalise_url, site_origin

LINK_TAG = "link-tag"
META_TAG = "meta-tag"
COMMON_PATH = "common-path"
CONTENT_SCAN = "content-scan"
YOUTUBE = "youtube"

FEED_LINK_TYPES = {
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
    "application/feed+json",
}
FEED_TYPE_HINTS = ("xml", "rss", "atom")
FEED_META_TAGS = (("property", "og:rss"), ("name", "rss"), ("name", "feed"))
COMMON_FEED_PATHS: tuple[str, ...] = ("/feed", "/rss", "/rss.xml", "/atom.xml")
HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}

YOUTUBE_FEED_BASE = "https://www.youtube.com/feeds/videos.xml"
_YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be"}
_YOUTUBE_CHANNEL_RE = re.compile(r"/channel/(UC[\w-]+)")
_YOUTUBE_USER_RE = re.compile(r"/user/([\w-]+)")
_YOUTUBE_PLAYLIST_RE = re.compile(r"[?&]list=(PL[\w-]+)")
_YOUTUBE_CHANNEL_ID_JSON_RE = re.compile(r'"channelId"\s*:\s*"(UC[\w-]+)"')
_HTML_SNIFF_RE = re.compile(r"<(!doctype\s+html|html[\s>]|head[\s>]|body[\s>])", re.IGNORECASE)
_CONTENT_SCAN_PATTERNS = (
    re.compile(r"""href\s*=\s*["']([^"']*(?:rss|feed|atom)[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""url\s*=\s*["']([^"']*(?:rss|feed|atom)[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""(https?://[^\s<>"']*(?:rss|feed|atom)[^\s<>"']*)""", re.IGNORECASE),
)


@dataclass(frozen=True)
class FeedCandidate:
    url: str
    method: str
    title: str | None = None


def is_html_document(text: str, content_type: str | None = None) -> bool:
    if content_type and content_type.split(";", 1)[0].strip().lower() in HTML_CONTENT_TYPES:
        return True
    return bool(_HTML_SNIFF_RE.search(text[:2048]))


def extract_feed_links(html: str, base_url: str) -> list[FeedCandidate]:
    """Return feed references from ``<link>`` and ``<meta>`` tags in document order."""
    soup = BeautifulSoup(html, "html.parser")
    candidates: list[FeedCandidate] = []
    for tag in soup.find_all(["link", "meta"]):
        if tag.name == "link":
            if not _is_feed_link(tag):
                continue
            href = tag.get("href")
            method = LINK_TAG
        else:
            if not any((tag.get(attr) or "").strip().lower() == value for attr, value in FEED_META_TAGS):
                continue
            href = tag.get("content")
            method = META_TAG
        absolute = _absolute_http_url(href, base_url)
        if absolute is None:
            continue
        title = (tag.get("title") or "").strip() or None
        candidates.append(FeedCandidate(url=absolute, method=method, title=title))
    return candidates


def scan_content_links(html: str, base_url: str) -> list[FeedCandidate]:
    """Last-resort scan of raw markup for URLs that look like feeds."""
    candidates: list[FeedCandidate] = []
    for pattern in _CONTENT_SCAN_PATTERNS:
        for match in pattern.finditer(html):
            raw = unescape(match.group(1)).strip()
            if not raw.lower().startswith(("http", "/")):
                continue
            absolute = _absolute_http_url(raw, base_url)
            if absolute is not None:
                candidates.append(FeedCandidate(url=absolute, method=CONTENT_SCAN))
    return candidates


def _is_feed_link(link) -> bool:
    link_type = (link.get("type") or "").split(";", 1)[0].strip().lower()
    if link_type in FEED_LINK_TYPES:
        return True
    rel = {value.lower() for value in (link.get("rel") or [])}
    if "alternate" not in rel or link_type in HTML_CONTENT_TYPES:
        return False
    return any(hint in link_type for hint in FEED_TYPE_HINTS)


def _absolute_http_url(href: str | None, base_url: str) -> str | None:
    href = (href or "").strip()
    if not href:
        return None
    absolute = urljoin(base_url, href)
    if urlsplit(absolute).scheme not in HTTP_SCHEMES:
        return None
    return absolute


def common_path_candidates(base_url: str, paths: Iterable[str] = COMMON_FEED_PATHS) -> list[FeedCandidate]:
    origin = site_origin(base_url)
    return [FeedCandidate(url=urljoin(origin, path), method=COMMON_PATH) for path in paths]


def youtube_feed_url(url: str, html: str | None = None) -> str | None:
    """Map a YouTube channel, user or playlist page to its Atom feed URL."""
    if (urlsplit(url).hostname or "").lower() not in _YOUTUBE_HOSTS:
        return None
    match = _YOUTUBE_CHANNEL_RE.search(url)
    if match:
        return f"{YOUTUBE_FEED_BASE}?channel_id={match.group(1)}"
    match = _YOUTUBE_USER_RE.search(url)
    if match:
        return f"{YOUTUBE_FEED_BASE}?user={match.group(1)}"
    match = _YOUTUBE_PLAYLIST_RE.search(url)
    if match:
        return f"{YOUTUBE_FEED_BASE}?playlist_id={match.group(1)}"
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find("meta", attrs={"itemprop": "channelId"})
    if meta is not None and (meta.get("content") or "").startswith("UC"):
        return f"{YOUTUBE_FEED_BASE}?channel_id={meta['content']}"
    match = _YOUTUBE_CHANNEL_ID_JSON_RE.search(html)
    if match:
        return f"{YOUTUBE_FEED_BASE}?channel_id={match.group(1)}"
    return None


def dedupe_candidates(candidates: Iterable[FeedCandidate], exclude: Iterable[str] = ()) -> list[FeedCandidate]:
    """Drop candidates whose normalised URL was already seen, keeping the first."""
    seen = {canonicalise_url(url) for url in exclude}
    unique: list[FeedCandidate] = []
    for candidate in candidates:
        key = canonicalise_url(candidate.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique
