from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

DIRECT_ENDPOINT = "direct"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FeedFormat(str, Enum):
    RSS = "rss"
    ATOM = "atom"
    JSON_FEED = "json_feed"


class FailureKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP = "http"
    RELAY_RESPONSE = "relay_response"


class DiagnosticCode(str, Enum):
    INVALID_URL = "INVALID_URL"
    ALL_RELAYS_FAILED = "ALL_RELAYS_FAILED"
    NOT_A_FEED = "NOT_A_FEED"
    NO_FEED_FOUND = "NO_FEED_FOUND"
    CANDIDATE_FAILED = "CANDIDATE_FAILED"
    MULTIPLE_FEEDS_FOUND = "MULTIPLE_FEEDS_FOUND"
    DISCOVERY_FAILED = "DISCOVERY_FAILED"


@dataclass(frozen=True)
class DiscoveryRequest:
    url: str
    timeout: float | None = None


@dataclass(frozen=True)
class FetchResponse:
    url: str
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    elapsed_ms: int | None = None
    via: str = DIRECT_ENDPOINT
    content: bytes | None = None

    @property
    def content_type(self) -> str | None:
        raw = self.headers.get("content-type")
        if not raw:
            return None
        return raw.split(";", 1)[0].strip().lower() or None

    @property
    def document(self) -> str | bytes:
        """Undecoded bytes when available, so feed parsing can honour the XML encoding."""
        return self.content if self.content is not None else self.body


@dataclass(frozen=True)
class FetchFailure:
    kind: FailureKind
    endpoint: str
    message: str
    status_code: int | None = None

    def describe(self) -> str:
        return f"{self.endpoint}: {self.kind.value} ({self.message})"


@dataclass(frozen=True)
class FetchAttempt:
    endpoint: str
    url: str
    success: bool
    elapsed_ms: int
    failure: FetchFailure | None = None
    started_at: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class FeedItem:
    title: str = ""
    link: str | None = None
    published_at: datetime | None = None
    description: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class ParsedFeed:
    format: FeedFormat
    title: str
    link: str | None = None
    items: tuple[FeedItem, ...] = ()
    description: str | None = None
    feed_url: str | None = None
    discovery_method: str = "direct"
    via: str = DIRECT_ENDPOINT


@dataclass(frozen=True)
class Diagnostic:
    code: DiagnosticCode
    message: str
    url: str | None = None
    causes: tuple[FetchFailure, ...] = ()

    def __str__(self) -> str:
        return self.message


@dataclass
class DiscoveryResult:
    original_url: str
    discovered_feeds: list[ParsedFeed] = field(default_factory=list)
    suggestions: list[Diagnostic] = field(default_factory=list)
    attempts: list[FetchAttempt] = field(default_factory=list)
    discovery_time_ms: int = 0

    @property
    def codes(self) -> list[DiagnosticCode]:
        return [suggestion.code for suggestion in self.suggestions]

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value
