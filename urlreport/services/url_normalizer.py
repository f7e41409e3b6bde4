import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from urlreport.models.submission import INVALID_URL_ERROR

_SCHEME_PREFIX = re.compile(r"^https?://", re.IGNORECASE)
_HOST_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_TOP_LEVEL_LABEL = re.compile(r"^(?:[a-z]{2,63}|xn--[a-z0-9-]{1,59})$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class NormalizedUrl:
    raw: str
    url: str | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.url is not None


def _canonical_host(hostname: str) -> str | None:
    try:
        host = hostname.rstrip(".").encode("idna").decode("ascii").lower()
    except UnicodeError:
        return None
    labels = host.split(".")
    if len(labels) < 2 or not all(_HOST_LABEL.match(label) for label in labels):
        return None
    if not _TOP_LEVEL_LABEL.match(labels[-1]):
        return None
    return host


def normalize_url(raw: str) -> NormalizedUrl:
    """
    Canonicalize one raw input line into an absolute http(s) URL.
    Bare hosts get an https:// prefix. Scheme and host are lowercased, default
    ports and fragments are dropped, path and query are kept verbatim.
    IP literals, single-label hosts and anything with whitespace are rejected.
    """
    rejected = NormalizedUrl(raw=raw, error=INVALID_URL_ERROR)
    candidate = raw.strip()
    if not candidate or any(ch.isspace() for ch in candidate):
        return rejected
    if not _SCHEME_PREFIX.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return rejected

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return rejected
    host = _canonical_host(parts.hostname)
    if host is None:
        return rejected

    userinfo, _, _ = parts.netloc.rpartition("@")
    netloc = host if port in (None, _DEFAULT_PORTS[scheme]) else f"{host}:{port}"
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return NormalizedUrl(raw=raw, url=urlunsplit((scheme, netloc, parts.path, parts.query, "")))
