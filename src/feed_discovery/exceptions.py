"""Error taxonomy for fetching, relaying and parsing feeds."""

from __future__ import annotations

from typing import Sequence

from feed_discovery.models import DIRECT_ENDPOINT, FailureKind, FetchFailure


class FeedDiscoveryError(Exception):
    """Base class for every error raised inside the discovery core."""


class InvalidUrlError(FeedDiscoveryError, ValueError):
    def __init__(self, url: str, reason: str, suggestion: str | None = None) -> None:
        super().__init__(f"Invalid URL {url!r}: {reason}")
        self.url = url
        self.reason = reason
        self.suggestion = suggestion


class FetchError(FeedDiscoveryError):
    """A single retrieval attempt failed."""

    kind: FailureKind = FailureKind.NETWORK

    def __init__(self, message: str, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code

    def to_failure(self, endpoint: str = DIRECT_ENDPOINT) -> FetchFailure:
        return FetchFailure(
            kind=self.kind,
            endpoint=endpoint,
            message=self.message,
            status_code=self.status_code,
        )


class NetworkError(FetchError):
    kind = FailureKind.NETWORK


class FetchTimeoutError(FetchError):
    kind = FailureKind.TIMEOUT

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"No response within {timeout:g}s", url)
        self.timeout = timeout


class HttpError(FetchError):
    kind = FailureKind.HTTP

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}", url, status_code=status_code)


class RelayResponseError(FetchError):
    """The relay answered, but its envelope could not be unwrapped."""

    kind = FailureKind.RELAY_RESPONSE


class AggregateRelayError(FeedDiscoveryError):
    def __init__(self, target_url: str, failures: Sequence[FetchFailure]) -> None:
        self.target_url = target_url
        self.failures = tuple(failures)
        summary = "; ".join(failure.describe() for failure in self.failures)
        super().__init__(f"All {len(self.failures)} relays failed for {target_url}: {summary}")

    @property
    def kinds(self) -> list[FailureKind]:
        return [failure.kind for failure in self.failures]


class FeedFormatError(FeedDiscoveryError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
