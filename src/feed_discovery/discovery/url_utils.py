from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from feed_discovery.exceptions import InvalidUrlError

UTM_PREFIX = "utm_"
HTTP_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def canonicalise_url(url: str) -> str:
    """Normalise a URL so that trivially different spellings compare equal."""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith(UTM_PREFIX)
    ]
    query = urlencode(query_pairs, doseq=True)
    path = parts.path.rstrip("/") if parts.path not in ("", "/") else ""
    return urlunsplit((scheme, netloc, path, query, ""))


def validate_url(url: object) -> str:
    """Return the stripped URL if it is an absolute http(s) URL, else raise."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError(str(url), "URL is empty")
    candidate = url.strip()
    if any(char.isspace() for char in candidate):
        raise InvalidUrlError(candidate, "URL contains whitespace")
    try:
        parts = urlsplit(candidate)
        _ = parts.port
    except ValueError as exc:
        raise InvalidUrlError(candidate, str(exc)) from exc

    if not parts.scheme:
        raise InvalidUrlError(
            candidate,
            "URL has no scheme",
            suggestion=f"https://{candidate.split('://', 1)[-1].lstrip('/')}",
        )
    if parts.scheme.lower() not in HTTP_SCHEMES:
        raise InvalidUrlError(candidate, f"unsupported scheme {parts.scheme!r}")
    if not parts.hostname:
        raise InvalidUrlError(candidate, "URL has no host")
    return candidate


def site_origin(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, "/", "", ""))


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()
