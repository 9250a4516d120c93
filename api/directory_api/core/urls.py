import hashlib
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_KEYS = {"ref", "fbclid", "gclid"}
DEFAULT_PORTS = {"http": "80", "https": "443"}


def _is_tracking_param(key: str) -> bool:
    return key.startswith("utm_") or key in TRACKING_KEYS


def normalize_url(raw_url: str) -> str:
    """Give bare domains an ``https://`` scheme and reject anything without a usable host."""
    candidate = (raw_url or "").strip()
    if not candidate:
        raise ValueError("url is empty")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in DEFAULT_PORTS:
        raise ValueError(f"unsupported url scheme: {parsed.scheme}")
    try:
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError as exc:
        raise ValueError("url has an invalid host or port") from exc
    if not hostname or " " in parsed.netloc:
        raise ValueError("url has no host")
    return candidate


def host_key(url: str) -> str:
    """Lowercased host without a leading ``www.``; the dedupe comparison key."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def comparable_url(url: str) -> str:
    """Scheme-less, tracking-free form of ``url`` used for exact-match comparison."""
    parsed = urlparse(url.strip())
    host = host_key(url)

    netloc = host
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None and str(port) != DEFAULT_PORTS.get(parsed.scheme.lower()):
        netloc = f"{host}:{port}"

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    filtered_query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    filtered_query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(filtered_query_pairs, doseq=True)

    return urlunparse(("", netloc, path, "", query, "")).lstrip("/")


def fingerprint(value: str | None, *, salt: str = "") -> str | None:
    """One-way hash of a throttling signal such as an IP address or user agent."""
    if not value:
        return None
    return hashlib.sha256(f"{salt}{value}".encode("utf-8")).hexdigest()
