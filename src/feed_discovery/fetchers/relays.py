from __future__ import annotations

import json
import time
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import quote, urlencode

from feed_discovery.exceptions import (
    AggregateRelayError,
    FetchError,
    HttpError,
    RelayResponseError,
)
from feed_discovery.fetchers.http import ContentFetcher
from feed_discovery.models import FetchAttempt, FetchFailure, FetchResponse
from feed_discovery.reporting.logging import EventLogger, null_logger

URL_PLACEHOLDER = "{url}"


@dataclass(frozen=True)
class RelayEndpoint:
    """A third-party relay that fetches ``{url}`` on our behalf."""

    name: str
    template: str
    priority: int = 0
    unwrap: str | None = None
    status_path: str | None = None
    timeout: float | None = None
    api_key: str | None = None

    def url_for(self, target_url: str) -> str:
        encoded = quote(target_url, safe="")
        if URL_PLACEHOLDER in self.template:
            url = self.template.replace(URL_PLACEHOLDER, encoded)
        else:
            url = self.template + encoded
        if self.api_key:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode({'api_key': self.api_key})}"
        return url

    def extract(self, response: FetchResponse) -> FetchResponse:
        """Check the relay's JSON envelope, if it has one, and strip it."""
        if not response.body.strip():
            raise RelayResponseError("Relay returned an empty body", response.url)
        if self.unwrap is None and self.status_path is None:
            return response

        try:
            envelope = json.loads(response.body)
        except ValueError as exc:
            raise RelayResponseError(f"Relay envelope is not JSON: {exc}", response.url) from exc

        if self.status_path is not None:
            status = _lookup(envelope, self.status_path)
            if isinstance(status, int) and not 200 <= status < 300:
                raise HttpError(response.url, status)
            if isinstance(status, str) and status.lower() != "ok":
                raise RelayResponseError(f"Relay reported status {status!r}", response.url)
        if self.unwrap is None:
            return response

        payload = _lookup(envelope, self.unwrap)
        if not isinstance(payload, str) or not payload.strip():
            raise RelayResponseError(
                f"Relay envelope has no {self.unwrap!r} payload", response.url
            )
        headers = {key: value for key, value in response.headers.items() if key != "content-type"}
        return replace(response, body=payload, headers=headers, content=None)


DEFAULT_RELAYS: tuple[RelayEndpoint, ...] = (
    RelayEndpoint(
        name="CodeTabs",
        template="https://api.codetabs.com/v1/proxy?quest={url}",
        priority=0,
    ),
    RelayEndpoint(
        name="AllOrigins",
        template="https://api.allorigins.win/get?url={url}",
        priority=1,
        unwrap="contents",
        status_path="status.http_code",
    ),
    RelayEndpoint(
        name="CorsProxy.io",
        template="https://corsproxy.io/?url={url}",
        priority=2,
    ),
    RelayEndpoint(
        name="RSS2JSON",
        template="https://api.rss2json.com/v1/api.json?rss_url={url}",
        priority=3,
        status_path="status",
    ),
)


class ProxyFailoverManager:
    """Try each relay in priority order until one returns the target's content."""

    def __init__(
        self,
        fetcher: ContentFetcher,
        relays: Iterable[RelayEndpoint] = DEFAULT_RELAYS,
        log: EventLogger | None = None,
    ) -> None:
        ordered = sorted(relays, key=lambda relay: relay.priority)
        if not ordered:
            raise ValueError("At least one relay endpoint must be configured")
        self.fetcher = fetcher
        self.relays: tuple[RelayEndpoint, ...] = tuple(ordered)
        self.log = log or null_logger

    async def try_proxies_with_failover(
        self,
        target_url: str,
        timeout: float,
        attempts: list[FetchAttempt] | None = None,
    ) -> FetchResponse:
        failures: list[FetchFailure] = []
        for relay in self.relays:
            relay_url = relay.url_for(target_url)
            relay_timeout = relay.timeout or timeout
            self.log(
                "fetch.started",
                {"endpoint": relay.name, "url": target_url, "timeout": relay_timeout},
            )
            started = time.monotonic()
            try:
                response = await self.fetcher.fetch(relay_url, relay_timeout)
                response = relay.extract(response)
            except FetchError as exc:
                failure = exc.to_failure(relay.name)
                failures.append(failure)
                elapsed_ms = _elapsed_ms(started)
                _record(attempts, relay.name, target_url, elapsed_ms, failure)
                self.log(
                    "fetch.failed",
                    {
                        "endpoint": relay.name,
                        "url": target_url,
                        "kind": failure.kind,
                        "cause": failure.message,
                        "elapsed_ms": elapsed_ms,
                    },
                )
                continue

            elapsed_ms = _elapsed_ms(started)
            _record(attempts, relay.name, target_url, elapsed_ms, None)
            self.log(
                "fetch.succeeded",
                {"endpoint": relay.name, "url": target_url, "elapsed_ms": elapsed_ms},
            )
            return replace(response, via=relay.name, elapsed_ms=elapsed_ms)

        error = AggregateRelayError(target_url, failures)
        self.log(
            "relays.exhausted",
            {"url": target_url, "causes": [failure.describe() for failure in failures]},
        )
        raise error


def relays_from_config(entries: Sequence[Mapping[str, Any]], env: Mapping[str, str]) -> list[RelayEndpoint]:
    relays: list[RelayEndpoint] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ValueError(f"relays[{index}] must be a mapping")
        name = entry.get("name")
        template = entry.get("template")
        if not name or not template:
            raise ValueError(f"relays[{index}] needs both 'name' and 'template'")
        api_key = entry.get("api_key")
        api_key_env = entry.get("api_key_env")
        if not api_key and api_key_env:
            api_key = env.get(str(api_key_env)) or None
        timeout = entry.get("timeout")
        relays.append(
            RelayEndpoint(
                name=str(name),
                template=str(template),
                priority=int(entry.get("priority", index)),
                unwrap=entry.get("unwrap"),
                status_path=entry.get("status_path"),
                timeout=float(timeout) if timeout is not None else None,
                api_key=api_key,
            )
        )
    return relays


def _lookup(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _record(
    attempts: list[FetchAttempt] | None,
    endpoint: str,
    url: str,
    elapsed_ms: int,
    failure: FetchFailure | None,
) -> None:
    if attempts is None:
        return
    attempts.append(
        FetchAttempt(
            endpoint=endpoint,
            url=url,
            success=failure is None,
            elapsed_ms=elapsed_ms,
            failure=failure,
        )
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
