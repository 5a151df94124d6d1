from __future__ import annotations

import codecs
import io
import json
import xml.sax
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Protocol

import feedparser

from feed_discovery.discovery.url_utils import host_of
from feed_discovery.exceptions import FeedFormatError
from feed_discovery.models import FeedFormat, FeedItem, ParsedFeed

JSON_CONTENT_TYPES = {"application/json", "application/feed+json", "text/json"}
XML_CONTENT_TYPES = {
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
    "application/xml",
    "text/xml",
}
JSON_FEED_VERSION_PREFIX = "https://jsonfeed.org/version/"
UNTITLED = "Untitled feed"


class FeedFormatParser(Protocol):
    def parse(
        self,
        raw_text: str | bytes,
        declared_content_type: str | None,
        source_url: str | None = None,
    ) -> ParsedFeed:
        ...


@dataclass
class FeedParser:
    """Recognise RSS, Atom and JSON Feed documents.

    The declared content type picks the JSON or XML reader when it names one;
    otherwise the first significant character decides. Within XML, feedparser
    reports which dialect the root element belongs to. Undecoded bytes are
    handed to feedparser as-is so the XML declaration's encoding applies
    unless the content type names a charset.
    """

    def parse(
        self,
        raw_text: str | bytes,
        declared_content_type: str | None,
        source_url: str | None = None,
    ) -> ParsedFeed:
        document = _strip_leading(raw_text)
        if not document:
            raise FeedFormatError("Document is empty")

        media_type = _media_type(declared_content_type)
        if media_type in JSON_CONTENT_TYPES:
            return _parse_json(document, source_url)
        if media_type in XML_CONTENT_TYPES:
            return _parse_xml(document, _charset(declared_content_type), source_url)
        if document[:1] in ("{", "[", b"{", b"["):
            return _parse_json(document, source_url)
        return _parse_xml(document, _charset(declared_content_type), source_url)


def _strip_leading(raw: str | bytes | None) -> str | bytes:
    if isinstance(raw, bytes):
        return raw.removeprefix(codecs.BOM_UTF8).lstrip()
    return (raw or "").lstrip("\ufeff \t\r\n")


def _media_type(content_type: str | None) -> str | None:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


def _charset(content_type: str | None) -> str | None:
    if not content_type:
        return None
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return None


def _parse_xml(document: str | bytes, charset: str | None, source_url: str | None) -> ParsedFeed:
    headers: dict[str, str] = {}
    if isinstance(document, str):
        document = document.encode("utf-8")
        charset = "utf-8"
    if charset:
        headers["content-type"] = f"application/xml; charset={charset}"
    parsed = feedparser.parse(io.BytesIO(document), response_headers=headers)
    version = parsed.get("version") or ""
    if version.startswith("rss"):
        feed_format = FeedFormat.RSS
    elif version.startswith("atom"):
        feed_format = FeedFormat.ATOM
    else:
        raise FeedFormatError("Document root is not an RSS or Atom feed")

    if isinstance(parsed.get("bozo_exception"), xml.sax.SAXException):
        raise FeedFormatError(f"Feed markup is not well-formed: {parsed.bozo_exception}")

    feed = parsed.get("feed", {})
    link = feed.get("link") or None
    return ParsedFeed(
        format=feed_format,
        title=_normalise_title(feed.get("title"), source_url or link),
        link=link,
        description=_clean(feed.get("subtitle")),
        items=tuple(_item_from_entry(entry) for entry in parsed.get("entries", [])),
        feed_url=source_url,
    )


def _item_from_entry(entry: Any) -> FeedItem:
    return FeedItem(
        title=_clean(entry.get("title")) or "",
        link=entry.get("link") or None,
        published_at=_entry_datetime(entry),
        description=_clean(entry.get("summary")),
        image=_entry_image(entry),
    )


def _entry_datetime(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        value = entry.get(key)
        if value:
            return datetime(*value[:6], tzinfo=timezone.utc)
    for key in ("published", "updated"):
        parsed = _parse_timestamp(entry.get(key))
        if parsed is not None:
            return parsed
    return None


def _entry_image(entry: Any) -> str | None:
    for key in ("media_thumbnail", "media_content"):
        for media in entry.get(key) or []:
            url = media.get("url")
            medium = (media.get("medium") or media.get("type") or "image").lower()
            if url and medium.startswith("image"):
                return url
    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").lower().startswith("image/") and enclosure.get("href"):
            return enclosure["href"]
    image = entry.get("image")
    if isinstance(image, dict) and image.get("href"):
        return image["href"]
    return None


def _parse_json(document: str | bytes, source_url: str | None) -> ParsedFeed:
    try:
        data = json.loads(document)
    except ValueError as exc:
        raise FeedFormatError(f"Document is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise FeedFormatError("JSON document is not an object")

    if isinstance(data.get("feed"), dict) and "items" in data and "status" in data:
        return _from_rss2json(data, source_url)
    version = data.get("version")
    if (isinstance(version, str) and version.startswith(JSON_FEED_VERSION_PREFIX)) or "feed_url" in data:
        return _from_json_feed(data, source_url)
    raise FeedFormatError("JSON document is not a JSON Feed")


def _from_json_feed(data: dict[str, Any], source_url: str | None) -> ParsedFeed:
    link = data.get("home_page_url") or None
    items = []
    for raw in _dict_items(data.get("items")):
        items.append(
            FeedItem(
                title=_clean(raw.get("title")) or "",
                link=raw.get("url") or raw.get("external_url") or None,
                published_at=_parse_timestamp(raw.get("date_published") or raw.get("date_modified")),
                description=_clean(
                    raw.get("summary") or raw.get("content_text") or raw.get("content_html")
                ),
                image=raw.get("image") or raw.get("banner_image") or None,
            )
        )
    return ParsedFeed(
        format=FeedFormat.JSON_FEED,
        title=_normalise_title(data.get("title"), source_url or link),
        link=link,
        description=_clean(data.get("description")),
        items=tuple(items),
        feed_url=data.get("feed_url") or source_url,
    )


def _from_rss2json(data: dict[str, Any], source_url: str | None) -> ParsedFeed:
    if data.get("status") != "ok":
        raise FeedFormatError(f"Feed conversion failed: {data.get('message') or data.get('status')}")
    feed = data["feed"]
    link = feed.get("link") or None
    items = []
    for raw in _dict_items(data.get("items")):
        enclosure = raw.get("enclosure") if isinstance(raw.get("enclosure"), dict) else {}
        image = raw.get("thumbnail") or None
        if not image and (enclosure.get("type") or "").startswith("image/"):
            image = enclosure.get("link") or None
        items.append(
            FeedItem(
                title=_clean(raw.get("title")) or "",
                link=raw.get("link") or None,
                published_at=_parse_timestamp(raw.get("pubDate")),
                description=_clean(raw.get("description")),
                image=image,
            )
        )
    return ParsedFeed(
        format=FeedFormat.RSS,
        title=_normalise_title(feed.get("title"), source_url or link),
        link=link,
        description=_clean(feed.get("description")),
        items=tuple(items),
        feed_url=feed.get("url") or source_url,
    )


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    value = raw.strip()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = " ".join(value.split())
    return cleaned or None


def _normalise_title(title: Any, fallback_url: str | None) -> str:
    cleaned = _clean(title)
    if cleaned:
        return cleaned
    if fallback_url:
        host = host_of(fallback_url)
        if host:
            return host
    return UNTITLED
