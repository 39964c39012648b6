"""URL admission control for crawl targets.

``normalize_url`` turns arbitrary user input into an absolute http(s) URL
and refuses targets that point at loopback or private address space.
The private-host check is lexical: hostnames are compared as written and
never resolved, so a DNS name that resolves to a private address passes.
"""

from __future__ import annotations

import ipaddress
import re
import urllib.parse as urlparse
from dataclasses import dataclass
from enum import Enum

import structlog

from backend.errors import ValidationError

logger = structlog.get_logger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

LOOPBACK_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "0.0.0.0"})

PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
]

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_BARE_SCHEME_RE = re.compile(r"^(mailto|tel|javascript|data|file|about|blob):", re.IGNORECASE)
_IPV4_PART_RE = re.compile(r"^(0[xX][0-9a-fA-F]*|0[0-7]*|[1-9][0-9]*)$")


class RejectionReason(str, Enum):
    EMPTY_INPUT = "EmptyInput"
    MALFORMED_URL = "MalformedUrl"
    UNSUPPORTED_SCHEME = "UnsupportedScheme"
    MISSING_HOST = "MissingHost"
    PRIVATE_OR_LOOPBACK_HOST = "PrivateOrLoopbackHost"


_REJECTION_MESSAGES = {
    RejectionReason.EMPTY_INPUT: "URL cannot be empty",
    RejectionReason.MALFORMED_URL: "Invalid URL format",
    RejectionReason.UNSUPPORTED_SCHEME: "Only HTTP and HTTPS protocols are supported",
    RejectionReason.MISSING_HOST: "Invalid URL: missing hostname",
    RejectionReason.PRIVATE_OR_LOOPBACK_HOST: "Cannot scrape localhost or private IP addresses",
}


class UrlRejected(ValidationError):
    """Raised when input cannot be admitted as a crawl target."""

    def __init__(self, reason: RejectionReason, raw: str = "") -> None:
        super().__init__(_REJECTION_MESSAGES[reason])
        self.reason = reason
        self.raw = raw


@dataclass(frozen=True)
class NormalizedUrl:
    """Absolute http(s) URL with its scheme and lower-cased host split out."""

    scheme: str
    host: str
    href: str

    def __str__(self) -> str:
        return self.href

    @classmethod
    def from_href(cls, href: str) -> "NormalizedUrl":
        """Build from an already-absolute URL without admission checks."""
        parsed = urlparse.urlsplit(href)
        return cls(scheme=parsed.scheme.lower(), host=(parsed.hostname or ""), href=href)


def parse_ipv4_host(hostname: str) -> ipaddress.IPv4Address | None:
    """Read ``hostname`` the way browsers read numeric hosts.

    Accepts one to four dot-separated parts in decimal, octal (leading ``0``)
    or hex (``0x``), so ``2130706433``, ``0x7f000001``, ``0177.0.0.1`` and
    ``127.1`` all give ``127.0.0.1``. Returns ``None`` for anything that is
    not a numeric host.
    """

    parts = hostname.split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts.pop()
    if not 1 <= len(parts) <= 4:
        return None

    numbers = []
    for part in parts:
        if not _IPV4_PART_RE.match(part):
            return None
        if part[:2].lower() == "0x":
            numbers.append(int(part[2:] or "0", 16))
        elif len(part) > 1 and part.startswith("0"):
            numbers.append(int(part[1:], 8))
        else:
            numbers.append(int(part))

    *leading, last = numbers
    if any(number > 255 for number in leading) or last >= 256 ** (5 - len(numbers)):
        return None
    value = last
    for idx, number in enumerate(leading):
        value += number * 256 ** (3 - idx)
    return ipaddress.IPv4Address(value)


def is_private_host(hostname: str) -> bool:
    """Return ``True`` for loopback/private/link-local literals and ``localhost``."""

    host = hostname.strip().lower().strip("[]")
    if host in LOOPBACK_HOSTNAMES:
        return True
    ip = parse_ipv4_host(host)
    if ip is None:
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            return False
    if ip.version == 4:
        return any(ip in network for network in PRIVATE_IP_RANGES)
    return ip.is_loopback or ip.is_private or ip.is_link_local or ip.is_unspecified


def normalize_url(raw: str | None) -> NormalizedUrl:
    """Validate ``raw`` and return its canonical absolute form.

    Input without an explicit scheme is treated as ``https://``. Raises
    :class:`UrlRejected` with the matching :class:`RejectionReason`.
    """

    candidate = (raw or "").strip()
    if not candidate:
        raise UrlRejected(RejectionReason.EMPTY_INPUT, raw or "")

    if _BARE_SCHEME_RE.match(candidate):
        logger.warning("url_rejected", url=candidate, reason=RejectionReason.UNSUPPORTED_SCHEME.value)
        raise UrlRejected(RejectionReason.UNSUPPORTED_SCHEME, candidate)
    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parsed = urlparse.urlsplit(candidate)
        # Accessing ``port`` validates it.
        port = parsed.port
        hostname = parsed.hostname
    except ValueError:
        logger.warning("url_rejected", url=candidate, reason=RejectionReason.MALFORMED_URL.value)
        raise UrlRejected(RejectionReason.MALFORMED_URL, candidate) from None

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        logger.warning("url_rejected", url=candidate, reason=RejectionReason.UNSUPPORTED_SCHEME.value)
        raise UrlRejected(RejectionReason.UNSUPPORTED_SCHEME, candidate)
    if not hostname:
        logger.warning("url_rejected", url=candidate, reason=RejectionReason.MISSING_HOST.value)
        raise UrlRejected(RejectionReason.MISSING_HOST, candidate)
    if any(ch.isspace() for ch in hostname):
        raise UrlRejected(RejectionReason.MALFORMED_URL, candidate)
    numeric_host = parse_ipv4_host(hostname)
    if numeric_host is not None:
        hostname = str(numeric_host)
    if is_private_host(hostname):
        logger.warning(
            "url_rejected",
            url=candidate,
            reason=RejectionReason.PRIVATE_OR_LOOPBACK_HOST.value,
        )
        raise UrlRejected(RejectionReason.PRIVATE_OR_LOOPBACK_HOST, candidate)

    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if parsed.username or parsed.password:
        userinfo = parsed.username or ""
        if parsed.password:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"
    if port is not None and not (
        (scheme == "https" and port == 443) or (scheme == "http" and port == 80)
    ):
        netloc = f"{netloc}:{port}"
    path = parsed.path or "/"
    href = urlparse.urlunsplit((scheme, netloc, path, parsed.query, ""))
    return NormalizedUrl(scheme=scheme, host=hostname, href=href)


def same_origin(a: NormalizedUrl | str, b: NormalizedUrl | str) -> bool:
    """Compare hostnames only; scheme and port differences are ignored."""

    try:
        host_a = a.host if isinstance(a, NormalizedUrl) else urlparse.urlsplit(a).hostname
        host_b = b.host if isinstance(b, NormalizedUrl) else urlparse.urlsplit(b).hostname
    except ValueError:
        return False
    return bool(host_a) and host_a == host_b
