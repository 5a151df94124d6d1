from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Iterable, Protocol, Sequence

from feed_discovery.discovery.links import (
    COMMON_FEED_PATHS,
    COMMON_PATH,
    CONTENT_SCAN,
    YOUTUBE,
    FeedCandidate,
    common_path_candidates,
    dedupe_candidates,
    extract_feed_links,
    is_html_document,
    scan_content_links,
    youtube_feed_url,
)
from feed_discovery.discovery.parser import FeedFormatParser, FeedParser
from feed_discovery.discovery.url_utils import host_of, validate_url
from feed_discovery.exceptions import (
    AggregateRelayError,
    FeedFormatError,
    FetchError,
    InvalidUrlError,
)
from feed_discovery.fetchers.http import ContentFetcher, HttpFetcher
from feed_discovery.fetchers.relays import ProxyFailoverManager
from feed_discovery.models import (
    DIRECT_ENDPOINT,
    Diagnostic,
    DiagnosticCode,
    DiscoveryRequest,
    DiscoveryResult,
    FetchAttempt,
    FetchFailure,
    FetchResponse,
    ParsedFeed,
)
from feed_discovery.reporting.logging import EventLogger, null_logger

if TYPE_CHECKING:
    import httpx

    from feed_discovery.config import AppConfig

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_CONCURRENCY = 4
GUESSED_METHODS = {COMMON_PATH, CONTENT_SCAN}


class RelayFailover(Protocol):
    async def try_proxies_with_failover(
        self,
        target_url: str,
        timeout: float,
        attempts: list[FetchAttempt] | None = None,
    ) -> FetchResponse:
        ...


@dataclass
class _Session:
    original_url: str
    started: float = field(default_factory=time.monotonic)
    feeds: list[ParsedFeed] = field(default_factory=list)
    suggestions: list[Diagnostic] = field(default_factory=list)
    attempts: list[FetchAttempt] = field(default_factory=list)

    def suggest(
        self,
        code: DiagnosticCode,
        message: str,
        url: str | None = None,
        causes: Sequence[FetchFailure] = (),
    ) -> None:
        self.suggestions.append(Diagnostic(code=code, message=message, url=url, causes=tuple(causes)))

    def finish(self) -> DiscoveryResult:
        return DiscoveryResult(
            original_url=self.original_url,
            discovered_feeds=list(self.feeds),
            suggestions=list(self.suggestions),
            attempts=list(self.attempts),
            discovery_time_ms=int((time.monotonic() - self.started) * 1000),
        )


@dataclass
class _ProbeOutcome:
    candidate: FeedCandidate
    feed: ParsedFeed | None
    error: Exception | None
    attempts: list[FetchAttempt]


class FeedDiscoveryOrchestrator:
    """Find the feeds a website publishes without ever raising to the caller.

    The target is fetched directly first and through the relay chain when that
    fails. A payload that parses as a feed ends the search. An HTML page is
    scanned for advertised feeds and conventional feed paths, and only when none
    of those yields a feed, for feed-like URLs anywhere in its markup. Each
    candidate is fetched and parsed once, never scanned again.
    """

    def __init__(
        self,
        fetcher: ContentFetcher,
        proxies: RelayFailover,
        parser: FeedFormatParser | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        common_paths: Iterable[str] = COMMON_FEED_PATHS,
        probe_common_paths: bool = True,
        scan_content: bool = True,
        log: EventLogger | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.fetcher = fetcher
        self.proxies = proxies
        self.parser = parser or FeedParser()
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.common_paths = tuple(common_paths)
        self.probe_common_paths = probe_common_paths
        self.scan_content = scan_content
        self.log = log or null_logger

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        log: EventLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> FeedDiscoveryOrchestrator:
        fetcher = HttpFetcher(user_agent=config.fetch.user_agent, transport=transport)
        return cls(
            fetcher=fetcher,
            proxies=ProxyFailoverManager(fetcher, config.relays, log=log),
            timeout=config.fetch.timeout,
            max_concurrency=config.discovery.max_concurrency,
            common_paths=config.discovery.common_paths,
            probe_common_paths=config.discovery.probe_common_paths,
            scan_content=config.discovery.scan_content,
            log=log,
        )

    async def discover_from_website(self, url: str, timeout: float | None = None) -> DiscoveryResult:
        session = _Session(original_url=url if isinstance(url, str) else repr(url))
        try:
            request = DiscoveryRequest(
                url=validate_url(url),
                timeout=timeout if timeout is not None and timeout > 0 else None,
            )
        except InvalidUrlError as exc:
            message = f"{exc.reason}; enter a full address such as https://example.com"
            if exc.suggestion:
                message = f"{exc.reason}; did you mean {exc.suggestion}?"
            session.suggest(DiagnosticCode.INVALID_URL, message, url=session.original_url)
            self.log("discovery.rejected", {"url": session.original_url, "reason": exc.reason})
            return session.finish()

        self.log("discovery.started", {"url": request.url})
        try:
            await self._discover(request, session)
        except Exception as exc:
            self.log("discovery.error", {"url": request.url, "error": repr(exc)})
            session.suggest(
                DiagnosticCode.DISCOVERY_FAILED,
                f"Discovery stopped unexpectedly: {exc}",
                url=request.url,
            )

        result = session.finish()
        self.log(
            "discovery.finished",
            {
                "url": request.url,
                "feeds": len(result.discovered_feeds),
                "suggestions": [suggestion.code for suggestion in result.suggestions],
                "attempts": len(result.attempts),
                "elapsed_ms": result.discovery_time_ms,
            },
        )
        return result

    async def discover_many(self, urls: Iterable[str], timeout: float | None = None) -> list[DiscoveryResult]:
        return list(await asyncio.gather(*(self.discover_from_website(url, timeout) for url in urls)))

    def discover(self, url: str, timeout: float | None = None) -> DiscoveryResult:
        return asyncio.run(self.discover_from_website(url, timeout))

    async def _discover(self, request: DiscoveryRequest, session: _Session) -> None:
        timeout = request.timeout or self.timeout
        host = host_of(request.url)
        try:
            response = await self._retrieve(request.url, timeout, session.attempts)
        except AggregateRelayError as exc:
            session.suggest(
                DiagnosticCode.ALL_RELAYS_FAILED,
                f"Could not reach {host} directly or through any of {len(exc.failures)} relays",
                url=request.url,
                causes=_failures(session.attempts),
            )
            return

        try:
            feed = self.parser.parse(
                response.document, response.headers.get("content-type"), source_url=request.url
            )
        except FeedFormatError as exc:
            if not is_html_document(response.body, response.content_type):
                session.suggest(
                    DiagnosticCode.NOT_A_FEED,
                    f"{host} returned neither a feed nor a web page ({exc.reason})",
                    url=request.url,
                )
                return
        else:
            session.feeds.append(replace(feed, feed_url=request.url, discovery_method="direct", via=response.via))
            return

        base_url = response.url if response.via == DIRECT_ENDPOINT else request.url
        candidates = self._candidates(request.url, base_url, response.body)
        await self._probe_all(candidates, timeout, session)
        checked = len(candidates)

        if not session.feeds and self.scan_content:
            fallback = dedupe_candidates(
                scan_content_links(response.body, base_url),
                exclude=(request.url, base_url, *(candidate.url for candidate in candidates)),
            )
            await self._probe_all(fallback, timeout, session)
            checked += len(fallback)

        if not session.feeds:
            message = f"{host} does not advertise a feed"
            if checked:
                message = f"No feed found on {host} after checking {checked} candidate locations"
            session.suggest(DiagnosticCode.NO_FEED_FOUND, message, url=request.url)
        elif len(session.feeds) > 1:
            session.suggest(
                DiagnosticCode.MULTIPLE_FEEDS_FOUND,
                f"Found {len(session.feeds)} feeds on {host}; choose the one that best matches your interests",
                url=request.url,
            )

    def _candidates(self, page_url: str, base_url: str, html: str) -> list[FeedCandidate]:
        candidates: list[FeedCandidate] = []
        youtube = youtube_feed_url(page_url, html)
        if youtube:
            candidates.append(FeedCandidate(url=youtube, method=YOUTUBE))
        candidates.extend(extract_feed_links(html, base_url))
        if self.probe_common_paths:
            candidates.extend(common_path_candidates(base_url, self.common_paths))
        return dedupe_candidates(candidates, exclude=(page_url, base_url))

    async def _probe_all(self, candidates: Sequence[FeedCandidate], timeout: float, session: _Session) -> None:
        if not candidates:
            return
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._probe(candidate, timeout, semaphore) for candidate in candidates)
        )
        for outcome in outcomes:
            session.attempts.extend(outcome.attempts)
            if outcome.feed is not None:
                session.feeds.append(outcome.feed)
            elif outcome.candidate.method not in GUESSED_METHODS:
                session.suggest(
                    DiagnosticCode.CANDIDATE_FAILED,
                    f"Feed advertised at {outcome.candidate.url} could not be loaded: {_reason(outcome.error)}",
                    url=outcome.candidate.url,
                    causes=_failures(outcome.attempts),
                )

    async def _probe(
        self,
        candidate: FeedCandidate,
        timeout: float,
        semaphore: asyncio.Semaphore,
    ) -> _ProbeOutcome:
        attempts: list[FetchAttempt] = []
        async with semaphore:
            try:
                response = await self._retrieve(candidate.url, timeout, attempts)
                feed = self.parser.parse(
                    response.document, response.headers.get("content-type"), source_url=candidate.url
                )
            except Exception as exc:
                self.log(
                    "candidate.failed",
                    {"url": candidate.url, "method": candidate.method, "error": _reason(exc)},
                )
                return _ProbeOutcome(candidate, None, exc, attempts)
        feed = replace(feed, feed_url=candidate.url, discovery_method=candidate.method, via=response.via)
        return _ProbeOutcome(candidate, feed, None, attempts)

    async def _retrieve(self, url: str, timeout: float, attempts: list[FetchAttempt]) -> FetchResponse:
        self.log("fetch.started", {"endpoint": DIRECT_ENDPOINT, "url": url, "timeout": timeout})
        started = time.monotonic()
        try:
            response = await self.fetcher.fetch(url, timeout)
        except FetchError as exc:
            failure = exc.to_failure(DIRECT_ENDPOINT)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            attempts.append(
                FetchAttempt(
                    endpoint=DIRECT_ENDPOINT,
                    url=url,
                    success=False,
                    elapsed_ms=elapsed_ms,
                    failure=failure,
                )
            )
            self.log(
                "fetch.failed",
                {
                    "endpoint": DIRECT_ENDPOINT,
                    "url": url,
                    "kind": failure.kind,
                    "cause": failure.message,
                    "elapsed_ms": elapsed_ms,
                },
            )
            return await self.proxies.try_proxies_with_failover(url, timeout, attempts)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        attempts.append(FetchAttempt(endpoint=DIRECT_ENDPOINT, url=url, success=True, elapsed_ms=elapsed_ms))
        self.log("fetch.succeeded", {"endpoint": DIRECT_ENDPOINT, "url": url, "elapsed_ms": elapsed_ms})
        return response


def _reason(error: Exception | None) -> str:
    if isinstance(error, AggregateRelayError):
        return "unreachable directly and through every relay"
    if isinstance(error, FeedFormatError):
        return error.reason
    return str(error) if error is not None else "unknown error"


def _failures(attempts: Iterable[FetchAttempt]) -> list[FetchFailure]:
    return [attempt.failure for attempt in attempts if attempt.failure is not None]
