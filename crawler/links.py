"""Same-origin link discovery over raw HTML.

Anchors are found with a regular expression rather than a parser so broken
markup simply yields fewer matches instead of an exception.
"""

from __future__ import annotations

import re
import urllib.parse as urlparse
from typing import List

from backend.security import NormalizedUrl, same_origin

ANCHOR_HREF_RE = re.compile(r"""<a\s+(?:[^>]*?\s+)?href=(["'])(.*?)\1""", re.IGNORECASE)
SKIPPED_PREFIXES = ("#", "mailto:", "tel:")
DEFAULT_PORTS = {"http": 80, "https": 443}


def _strip_query_and_fragment(url: str) -> str:
    parts = urlparse.urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if parts.port is not None and DEFAULT_PORTS.get(scheme) == parts.port:
        netloc = netloc.rsplit(":", 1)[0]
    return urlparse.urlunsplit((scheme, netloc, parts.path or "/", "", ""))


def extract_links(
    html: str,
    page_url: NormalizedUrl | str,
    origin_url: NormalizedUrl | str,
) -> List[NormalizedUrl]:
    """Return de-duplicated same-origin links found in ``html``.

    Hrefs are resolved against ``page_url``; query strings and fragments are
    dropped before deduplication and first-seen order is preserved.
    """

    base = str(page_url)
    links: list[NormalizedUrl] = []
    seen: set[str] = set()

    for match in ANCHOR_HREF_RE.finditer(html or ""):
        href = match.group(2).strip()
        if not href or href.lower().startswith(SKIPPED_PREFIXES):
            continue
        try:
            absolute = urlparse.urljoin(base, href)
            parts = urlparse.urlsplit(absolute)
            hostname = parts.hostname
            if parts.scheme.lower() not in DEFAULT_PORTS or not hostname:
                continue
            clean = _strip_query_and_fragment(absolute)
        except ValueError:
            continue
        if not same_origin(absolute, origin_url):
            continue
        if clean in seen:
            continue
        seen.add(clean)
        links.append(NormalizedUrl.from_href(clean))

    return links
