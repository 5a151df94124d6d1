from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from feed_discovery.discovery.orchestrator import FeedDiscoveryOrchestrator
from feed_discovery.exceptions import NetworkError
from feed_discovery.fetchers.http import HttpFetcher
from feed_discovery.fetchers.relays import ProxyFailoverManager, RelayEndpoint
from feed_discovery.models import DiagnosticCode, FailureKind, FeedFormat

from support import LATIN1_RSS, ScriptedFetcher, atom, response, rss

ALPHA = RelayEndpoint(name="alpha", template="https://alpha.test/?u={url}", priority=0)
BETA = RelayEndpoint(name="beta", template="https://beta.test/?u={url}", priority=1)


def build(fetcher, relays=(ALPHA,), **kwargs) -> FeedDiscoveryOrchestrator:
    return FeedDiscoveryOrchestrator(fetcher, ProxyFailoverManager(fetcher, relays), **kwargs)


def page(*hrefs: str) -> str:
    links = "\n".join(
        f'<link rel="alternate" type="application/rss+xml" href="{href}">' for href in hrefs
    )
    return f"<!DOCTYPE html><html><head><title>Site</title>{links}</head><body></body></html>"


def test_direct_feed_is_returned_without_relays() -> None:
    url = "https://example.com/feed"
    fetcher = ScriptedFetcher({url: response(url, rss("Fallback Feed"), "application/rss+xml")})

    result = build(fetcher).discover(url)

    assert [feed.title for feed in result.discovered_feeds] == ["Fallback Feed"]
    feed = result.discovered_feeds[0]
    assert feed.format is FeedFormat.RSS
    assert feed.feed_url == url
    assert feed.discovery_method == "direct"
    assert feed.via == "direct"
    assert result.suggestions == []
    assert fetcher.calls == [url]
    assert result.discovery_time_ms >= 0


def test_unreachable_site_reports_every_cause() -> None:
    fetcher = ScriptedFetcher()

    result = build(fetcher, relays=(ALPHA, BETA)).discover("https://broken.com")

    assert result.discovered_feeds == []
    assert result.codes == [DiagnosticCode.ALL_RELAYS_FAILED]
    diagnostic = result.suggestions[0]
    assert [cause.endpoint for cause in diagnostic.causes] == ["direct", "alpha", "beta"]
    assert {cause.kind for cause in diagnostic.causes} == {FailureKind.HTTP}
    assert [attempt.endpoint for attempt in result.attempts] == ["direct", "alpha", "beta"]
    assert not any(attempt.success for attempt in result.attempts)


def test_relay_is_used_when_direct_fetch_fails() -> None:
    url = "https://blocked.example.com/rss"
    relay_url = ALPHA.url_for(url)
    fetcher = ScriptedFetcher(
        {
            url: NetworkError("CORS blocked", url),
            relay_url: response(relay_url, atom("Relayed"), "application/atom+xml", via="direct"),
        }
    )

    result = build(fetcher).discover(url)

    feed = result.discovered_feeds[0]
    assert feed.title == "Relayed"
    assert feed.format is FeedFormat.ATOM
    assert feed.via == "alpha"
    assert feed.feed_url == url
    assert [(attempt.endpoint, attempt.success) for attempt in result.attempts] == [
        ("direct", False),
        ("alpha", True),
    ]


def test_advertised_feeds_are_deduplicated_and_ordered() -> None:
    site = "https://example.com/"
    fetcher = ScriptedFetcher(
        {
            site: response(site, page("/feed.xml", "https://example.com/atom.xml", "/feed.xml#dup", "/")),
            "https://example.com/feed.xml": response("https://example.com/feed.xml", rss("Posts")),
            "https://example.com/atom.xml": response("https://example.com/atom.xml", atom("Updates")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(site)

    assert [feed.title for feed in result.discovered_feeds] == ["Posts", "Updates"]
    assert [feed.discovery_method for feed in result.discovered_feeds] == ["link-tag", "link-tag"]
    assert result.codes == [DiagnosticCode.MULTIPLE_FEEDS_FOUND]
    assert fetcher.calls == [site, "https://example.com/feed.xml", "https://example.com/atom.xml"]


def test_relative_links_resolve_against_final_url() -> None:
    requested = "https://example.com/blog"
    fetcher = ScriptedFetcher(
        {
            requested: response("https://example.com/blog/", page("feed.xml")),
            "https://example.com/blog/feed.xml": response("https://example.com/blog/feed.xml", rss("Blog")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(requested)

    assert [feed.feed_url for feed in result.discovered_feeds] == ["https://example.com/blog/feed.xml"]


def test_relayed_page_links_resolve_against_requested_url() -> None:
    site = "https://example.com/news/"
    relay_url = ALPHA.url_for(site)
    fetcher = ScriptedFetcher(
        {
            site: NetworkError("blocked", site),
            relay_url: response(relay_url, page("/feed.xml")),
            "https://example.com/feed.xml": response("https://example.com/feed.xml", rss("News")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(site)

    assert [feed.title for feed in result.discovered_feeds] == ["News"]
    assert result.discovered_feeds[0].via == "direct"


def test_common_paths_are_probed_when_page_advertises_nothing() -> None:
    site = "https://example.com"
    fetcher = ScriptedFetcher(
        {
            site: response(site, page()),
            "https://example.com/rss": response("https://example.com/rss", rss("Guessed")),
        }
    )

    result = build(fetcher).discover(site)

    assert [feed.title for feed in result.discovered_feeds] == ["Guessed"]
    assert result.discovered_feeds[0].discovery_method == "common-path"
    assert result.suggestions == []
    assert "https://example.com/atom.xml" in fetcher.calls


def test_page_without_any_feed() -> None:
    site = "https://example.com"
    fetcher = ScriptedFetcher({site: response(site, page())})

    result = build(fetcher).discover(site)

    assert result.discovered_feeds == []
    assert result.codes == [DiagnosticCode.NO_FEED_FOUND]


def test_candidates_are_not_scanned_for_further_links() -> None:
    site = "https://example.com"
    fetcher = ScriptedFetcher(
        {
            site: response(site, page("/feed.xml")),
            "https://example.com/feed.xml": response("https://example.com/feed.xml", page("/deeper.xml")),
            "https://example.com/deeper.xml": response("https://example.com/deeper.xml", rss("Too deep")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(site)

    assert result.discovered_feeds == []
    assert result.codes == [DiagnosticCode.CANDIDATE_FAILED, DiagnosticCode.NO_FEED_FOUND]
    assert result.suggestions[0].url == "https://example.com/feed.xml"
    assert result.suggestions[0].causes == ()
    assert "https://example.com/deeper.xml" not in fetcher.calls


def test_invalid_url_never_touches_the_network(fetcher: ScriptedFetcher) -> None:
    result = build(fetcher).discover("example.com")

    assert fetcher.calls == []
    assert result.codes == [DiagnosticCode.INVALID_URL]
    assert "did you mean https://example.com?" in result.suggestions[0].message


@pytest.mark.parametrize("url", ["", "ftp://example.com/feed", "https://", 42])
def test_other_invalid_inputs(url) -> None:
    result = build(ScriptedFetcher()).discover(url)

    assert result.discovered_feeds == []
    assert result.codes == [DiagnosticCode.INVALID_URL]


def test_unexpected_errors_become_a_suggestion() -> None:
    class ExplodingParser:
        def parse(self, raw_text, declared_content_type, source_url=None):
            raise RuntimeError("parser exploded")

    url = "https://example.com/feed"
    fetcher = ScriptedFetcher({url: response(url, rss())})

    result = build(fetcher, parser=ExplodingParser()).discover(url)

    assert result.discovered_feeds == []
    assert result.codes == [DiagnosticCode.DISCOVERY_FAILED]
    assert "parser exploded" in result.suggestions[0].message


def test_non_feed_non_html_payload() -> None:
    url = "https://example.com/notes.txt"
    fetcher = ScriptedFetcher({url: response(url, "just some text", "text/plain")})

    result = build(fetcher).discover(url)

    assert result.codes == [DiagnosticCode.NOT_A_FEED]
    assert fetcher.calls == [url]


def test_candidate_probes_respect_concurrency_cap_and_order() -> None:
    site = "https://example.com"
    hrefs = [f"/f{index}.xml" for index in range(6)]
    routes = {site: response(site, page(*hrefs))}
    delays = {}
    for index, href in enumerate(hrefs):
        url = f"https://example.com{href}"
        routes[url] = response(url, rss(f"Feed {index}"))
        delays[url] = 0.01 * (6 - index)
    fetcher = ScriptedFetcher(routes, delays)

    result = build(fetcher, max_concurrency=2, probe_common_paths=False).discover(site)

    assert fetcher.max_in_flight == 2
    assert [feed.title for feed in result.discovered_feeds] == [f"Feed {index}" for index in range(6)]


def test_slow_endpoints_are_bounded_by_timeout() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, text="late")

    fetcher = HttpFetcher(transport=httpx.MockTransport(handler))
    orchestrator = FeedDiscoveryOrchestrator(fetcher, ProxyFailoverManager(fetcher, [ALPHA, BETA]))
    started = time.monotonic()

    result = orchestrator.discover("https://slow.example.com", timeout=0.1)

    assert time.monotonic() - started < 3
    assert result.codes == [DiagnosticCode.ALL_RELAYS_FAILED]
    assert [cause.kind for cause in result.suggestions[0].causes] == [FailureKind.TIMEOUT] * 3


def test_youtube_channel_maps_to_its_feed() -> None:
    channel = "https://www.youtube.com/channel/UC34Qdd5Z5KN30A8aJ2eIMPA"
    feed_url = "https://www.youtube.com/feeds/videos.xml?channel_id=UC34Qdd5Z5KN30A8aJ2eIMPA"
    fetcher = ScriptedFetcher(
        {
            channel: response(channel, "<html><head><title>Channel</title></head></html>"),
            feed_url: response(feed_url, atom("Channel Uploads"), "application/atom+xml"),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(channel)

    assert [(feed.title, feed.discovery_method) for feed in result.discovered_feeds] == [
        ("Channel Uploads", "youtube")
    ]


def test_cancellation_propagates() -> None:
    url = "https://example.com"
    fetcher = ScriptedFetcher({url: response(url, rss())}, delays={url: 5})
    orchestrator = build(fetcher)

    async def scenario() -> None:
        task = asyncio.create_task(orchestrator.discover_from_website(url))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())


def test_discover_many_keeps_input_order_and_isolates_results() -> None:
    url = "https://example.com/feed"
    fetcher = ScriptedFetcher({url: response(url, rss("One"))})

    results = asyncio.run(build(fetcher).discover_many([url, "nope", url]))

    assert [result.original_url for result in results] == [url, "nope", url]
    assert [len(result.discovered_feeds) for result in results] == [1, 0, 1]
    assert results[1].codes == [DiagnosticCode.INVALID_URL]
    assert results[0].attempts is not results[2].attempts


def test_events_are_logged_and_result_serialises() -> None:
    url = "https://example.com/feed"
    events: list[str] = []
    fetcher = ScriptedFetcher({url: response(url, rss())})
    orchestrator = FeedDiscoveryOrchestrator(
        fetcher,
        ProxyFailoverManager(fetcher, [ALPHA]),
        log=lambda event, payload: events.append(event),
    )

    result = orchestrator.discover(url)

    assert events == ["discovery.started", "fetch.started", "fetch.succeeded", "discovery.finished"]
    payload = json.loads(json.dumps(result.to_dict()))
    assert payload["discovered_feeds"][0]["format"] == "rss"
    assert payload["discovered_feeds"][0]["items"][0]["published_at"].startswith("2026-01-26T10:00:00")


def test_per_call_timeout_overrides_default() -> None:
    url = "https://example.com/feed"
    fetcher = ScriptedFetcher({url: response(url, rss())})
    orchestrator = build(fetcher, timeout=4.0)

    orchestrator.discover(url)
    orchestrator.discover(url, timeout=1.5)

    assert fetcher.timeouts == [4.0, 1.5]


@pytest.mark.parametrize("kwargs", [{"timeout": 0}, {"max_concurrency": 0}])
def test_constructor_rejects_bad_limits(kwargs) -> None:
    with pytest.raises(ValueError):
        build(ScriptedFetcher(), **kwargs)


def test_generic_xml_link_and_meta_feed_are_probed() -> None:
    site = "https://example.com"
    html = (
        '<html><head><link rel="alternate" type="text/xml" href="/news.xml">'
        '<meta name="feed" content="/posts.xml"></head><body></body></html>'
    )
    fetcher = ScriptedFetcher(
        {
            site: response(site, html),
            "https://example.com/news.xml": response("https://example.com/news.xml", rss("News")),
            "https://example.com/posts.xml": response("https://example.com/posts.xml", rss("Posts")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(site)

    assert [(feed.title, feed.discovery_method) for feed in result.discovered_feeds] == [
        ("News", "link-tag"),
        ("Posts", "meta-tag"),
    ]
    assert result.codes == [DiagnosticCode.MULTIPLE_FEEDS_FOUND]


def test_content_scan_runs_after_other_candidates_fail() -> None:
    site = "https://example.com"
    html = '<html><body><a href="/blog/rss-latest">Subscribe</a></body></html>'
    fetcher = ScriptedFetcher(
        {
            site: response(site, html),
            "https://example.com/blog/rss-latest": response("https://example.com/blog/rss-latest", rss("Scanned")),
        }
    )

    result = build(fetcher).discover(site)

    assert [(feed.title, feed.discovery_method) for feed in result.discovered_feeds] == [
        ("Scanned", "content-scan")
    ]
    assert result.suggestions == []
    assert fetcher.calls.index("https://example.com/blog/rss-latest") > fetcher.calls.index(
        "https://example.com/atom.xml"
    )


def test_content_scan_is_skipped_when_a_feed_was_found() -> None:
    site = "https://example.com"
    html = (
        '<html><head><link rel="alternate" type="application/rss+xml" href="/feed.xml"></head>'
        '<body><a href="/archive/rss-old">Old feed</a></body></html>'
    )
    fetcher = ScriptedFetcher(
        {
            site: response(site, html),
            "https://example.com/feed.xml": response("https://example.com/feed.xml", rss("Main")),
        }
    )

    result = build(fetcher, probe_common_paths=False).discover(site)

    assert [feed.title for feed in result.discovered_feeds] == ["Main"]
    assert "https://example.com/archive/rss-old" not in fetcher.calls


def test_content_scan_can_be_disabled() -> None:
    site = "https://example.com"
    html = '<html><body><a href="/blog/rss-latest">Subscribe</a></body></html>'
    fetcher = ScriptedFetcher({site: response(site, html)})

    result = build(fetcher, probe_common_paths=False, scan_content=False).discover(site)

    assert result.codes == [DiagnosticCode.NO_FEED_FOUND]
    assert fetcher.calls == [site]


def test_failed_candidate_carries_every_attempt_failure() -> None:
    site = "https://example.com"
    fetcher = ScriptedFetcher({site: response(site, page("/gone.xml"))})

    result = build(fetcher, probe_common_paths=False, scan_content=False).discover(site)

    assert result.codes == [DiagnosticCode.CANDIDATE_FAILED, DiagnosticCode.NO_FEED_FOUND]
    causes = result.suggestions[0].causes
    assert [(cause.endpoint, cause.status_code) for cause in causes] == [("direct", 404), ("alpha", 404)]


def test_non_utf8_feed_keeps_its_characters() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "application/rss+xml"}, content=LATIN1_RSS)

    fetcher = HttpFetcher(transport=httpx.MockTransport(handler))
    orchestrator = FeedDiscoveryOrchestrator(fetcher, ProxyFailoverManager(fetcher, [ALPHA]))

    result = orchestrator.discover("https://example.com/feed")

    feed = result.discovered_feeds[0]
    assert feed.title == "Café News"
    assert [item.title for item in feed.items] == ["Crème brûlée"]
