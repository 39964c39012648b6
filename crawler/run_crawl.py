#!/usr/bin/env python
"""Bounded breadth-first crawler driven by a real browser.

The public surface is deliberately small:

- :class:`Crawler` – ``crawl(origin_url, max_pages, progress_sink)`` visits
  same-host pages in FIFO order and returns :class:`models.PageRecord`
  objects, reporting progress after every page attempt;
- :func:`main` – a convenience CLI that runs one crawl and prints the pages.

A page that fails to load is logged and skipped. Only failing to provision
or connect the browser aborts a crawl, and the browser is torn down on every
exit path.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import re
import sys
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol

import structlog

from backend.errors import PageFetchError, ProvisioningError, ValidationError
from backend.security import NormalizedUrl, normalize_url
from crawler.browser import NON_CONTENT_SELECTORS, BrowserHandle, BrowserProvider, build_browser_provider
from crawler.links import extract_links
from models import PageRecord
from observability.metrics import crawl_pages, crawl_runs

logger = structlog.get_logger(__name__)

# ----------------------------- Constants ----------------------------- #
DEFAULT_PAGE_TIMEOUT_MS = 30_000
DEFAULT_SETTLE_MS = 1_500
DEFAULT_DELAY_MS = 1_000
DEFAULT_CONTENT_LIMIT = 10_000

PROGRESS_PROVISIONING = 5
PROGRESS_CONNECTING = 10
PROGRESS_TRAVERSAL_START = 15
PROGRESS_TRAVERSAL_SPAN = 70
PROGRESS_FINALIZED = 90

_WHITESPACE_RE = re.compile(r"\s+")


class CrawlState(str, Enum):
    PROVISIONING = "provisioning"
    CONNECTING = "connecting"
    TRAVERSING = "traversing"
    FINALIZING = "finalizing"
    DONE = "done"


class ProgressSink(Protocol):
    async def send_status(self, message: str, progress: float, current_page: str = "") -> None: ...


class _LogSink:
    """Progress sink that only writes to the log (used by the CLI)."""

    async def send_status(self, message: str, progress: float, current_page: str = "") -> None:
        logger.info("crawl_status", message=message, progress=progress, current_page=current_page)


def clean_text(text: str, limit: int = DEFAULT_CONTENT_LIMIT) -> str:
    """Collapse runs of whitespace and clamp to ``limit`` characters."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()[:limit]


class CrawlFrontier:
    """FIFO queue plus visited set owned by a single crawl call.

    A URL is marked visited when it is popped, before any I/O, so it can
    never be processed twice however many pages link to it.
    """

    def __init__(self, seed: NormalizedUrl) -> None:
        self.queue: deque[NormalizedUrl] = deque()
        self.visited: set[NormalizedUrl] = set()
        self._queued: set[NormalizedUrl] = set()
        self.push(seed)

    def __len__(self) -> int:
        return len(self.queue)

    def push(self, url: NormalizedUrl) -> bool:
        if url in self.visited or url in self._queued:
            return False
        self.queue.append(url)
        self._queued.add(url)
        return True

    def extend(self, urls: Iterable[NormalizedUrl]) -> int:
        return sum(1 for url in urls if self.push(url))

    def pop(self) -> Optional[NormalizedUrl]:
        while self.queue:
            url = self.queue.popleft()
            self._queued.discard(url)
            if url in self.visited:
                continue
            self.visited.add(url)
            return url
        return None


class Crawler:
    """Breadth-first same-host crawler over a :class:`BrowserProvider`."""

    def __init__(
        self,
        provider: BrowserProvider,
        *,
        page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS,
        settle_ms: int = DEFAULT_SETTLE_MS,
        delay_ms: int = DEFAULT_DELAY_MS,
        content_limit: int = DEFAULT_CONTENT_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.page_timeout_ms = page_timeout_ms
        self.settle_ms = settle_ms
        self.delay_ms = delay_ms
        self.content_limit = content_limit
        self._sleep = sleep

    @classmethod
    def from_settings(cls, provider: BrowserProvider, crawl_settings) -> "Crawler":
        return cls(
            provider,
            page_timeout_ms=crawl_settings.page_timeout_ms,
            settle_ms=crawl_settings.settle_ms,
            delay_ms=crawl_settings.delay_ms,
            content_limit=crawl_settings.content_limit,
        )

    @staticmethod
    def _progress(pages_done: int, max_pages: int) -> int:
        return round(PROGRESS_TRAVERSAL_START + pages_done / max_pages * PROGRESS_TRAVERSAL_SPAN)

    async def crawl(
        self,
        origin_url: NormalizedUrl,
        max_pages: int,
        progress_sink: Optional[ProgressSink] = None,
    ) -> List[PageRecord]:
        """Visit up to ``max_pages`` pages reachable from ``origin_url``.

        Raises :class:`ProvisioningError` when the browser cannot be set up.
        """

        sink = progress_sink or _LogSink()
        pages: list[PageRecord] = []

        if max_pages <= 0:
            await sink.send_status("Crawling complete! Analyzed 0 pages.", PROGRESS_FINALIZED)
            return pages

        state = CrawlState.PROVISIONING
        logger.info("crawl_state", state=state.value, url=origin_url.href, max_pages=max_pages)
        await sink.send_status("Initializing browser session...", PROGRESS_PROVISIONING)
        try:
            handle = await self.provider.provision()
        except ProvisioningError as exc:
            logger.error("crawl_provisioning_failed", url=origin_url.href, error=exc.message)
            crawl_runs.labels("provisioning_failed").inc()
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("crawl_provisioning_failed", url=origin_url.href, error=str(exc))
            crawl_runs.labels("provisioning_failed").inc()
            raise ProvisioningError() from exc

        try:
            state = CrawlState.CONNECTING
            logger.info("crawl_state", state=state.value, url=origin_url.href)
            await sink.send_status("Connecting to browser...", PROGRESS_CONNECTING)
            try:
                await handle.connect()
            except Exception as exc:  # noqa: BLE001
                logger.error("crawl_connect_failed", url=origin_url.href, error=str(exc))
                crawl_runs.labels("provisioning_failed").inc()
                raise ProvisioningError("Failed to connect to browser session") from exc

            state = CrawlState.TRAVERSING
            logger.info("crawl_state", state=state.value, url=origin_url.href)
            await sink.send_status(
                "Browser connected, starting crawl...",
                PROGRESS_TRAVERSAL_START,
                origin_url.href,
            )
            frontier = CrawlFrontier(origin_url)
            await self._traverse(handle, frontier, origin_url, max_pages, pages, sink)

            state = CrawlState.FINALIZING
            logger.info("crawl_state", state=state.value, url=origin_url.href, pages=len(pages))
            await sink.send_status(
                f"Crawling complete! Analyzed {len(pages)} pages.",
                PROGRESS_FINALIZED,
            )
            crawl_runs.labels("completed").inc()
            return pages
        except ProvisioningError:
            raise
        except Exception as exc:
            logger.error("crawl_failed", url=origin_url.href, state=state.value, error=str(exc))
            crawl_runs.labels("error").inc()
            raise
        finally:
            await self._teardown(handle, origin_url)
            logger.info("crawl_state", state=CrawlState.DONE.value, url=origin_url.href, pages=len(pages))

    async def _traverse(
        self,
        handle: BrowserHandle,
        frontier: CrawlFrontier,
        origin_url: NormalizedUrl,
        max_pages: int,
        pages: list[PageRecord],
        sink: ProgressSink,
    ) -> None:
        while len(pages) < max_pages:
            url = frontier.pop()
            if url is None:
                break

            await sink.send_status(
                f"Crawling page {len(pages) + 1} of {max_pages}...",
                self._progress(len(pages), max_pages),
                url.href,
            )
            try:
                record, html = await self._visit(handle, url)
            except PageFetchError:
                crawl_pages.labels("failed").inc()
                await sink.send_status(
                    f"Skipped {url.href} (failed to load)",
                    self._progress(len(pages), max_pages),
                    url.href,
                )
            else:
                pages.append(record)
                crawl_pages.labels("ok").inc()
                discovered = extract_links(html, url, origin_url)
                added = frontier.extend(discovered)
                logger.info(
                    "crawl_page_scraped",
                    url=url.href,
                    links_found=len(discovered),
                    links_queued=added,
                    scraped=len(pages),
                    max_pages=max_pages,
                )
                await sink.send_status(
                    f"Scraped page {len(pages)} of {max_pages}",
                    self._progress(len(pages), max_pages),
                    url.href,
                )

            if len(pages) < max_pages and len(frontier) and self.delay_ms > 0:
                await self._sleep(self.delay_ms / 1000)

    async def _visit(self, handle: BrowserHandle, url: NormalizedUrl) -> tuple[PageRecord, str]:
        try:
            await handle.navigate(url.href, self.page_timeout_ms)
            await handle.wait(self.settle_ms)
            html = await handle.html()
            title = await handle.title()
            text = await handle.visible_text(NON_CONTENT_SELECTORS)
        except Exception as exc:  # noqa: BLE001
            logger.warning("crawl_page_failed", url=url.href, error=str(exc))
            raise PageFetchError(url.href, str(exc)) from exc
        record = PageRecord(
            url=url,
            title=(title or "").strip() or url.href,
            content=clean_text(text, self.content_limit),
        )
        return record, html

    async def _teardown(self, handle: BrowserHandle, origin_url: NormalizedUrl) -> None:
        try:
            await handle.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("crawl_teardown_failed", url=origin_url.href, error=str(exc))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl a site with a real browser and print its pages")
    parser.add_argument("--url", required=True, help="Start URL (scheme optional)")
    parser.add_argument("--max-pages", type=int, default=None, help="Page budget")
    parser.add_argument(
        "--provider",
        choices=("browserbase", "local"),
        default=None,
        help="Browser provider (defaults to BROWSER_PROVIDER)",
    )
    parser.add_argument("--delay-ms", type=int, default=None, help="Pause between pages")
    parser.add_argument("--json", action="store_true", help="Print pages as JSON")
    return parser


async def _run_cli(args: argparse.Namespace) -> int:
    from settings import get_settings

    settings = get_settings()
    if args.provider:
        settings = settings.model_copy(update={"browser_provider": args.provider})
    try:
        origin = normalize_url(args.url)
    except ValidationError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 2

    crawler = Crawler.from_settings(build_browser_provider(settings), settings.crawl)
    if args.delay_ms is not None:
        crawler.delay_ms = args.delay_ms
    max_pages = args.max_pages if args.max_pages is not None else settings.crawl.default_max_pages
    max_pages = min(max_pages, settings.crawl.max_pages_limit)
    try:
        pages = await crawler.crawl(origin, max_pages)
    except ProvisioningError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([page.to_dict() for page in pages], ensure_ascii=False, indent=2))
    else:
        for idx, page in enumerate(pages, 1):
            print(f"{idx}. {page.title}\n   {page.url.href}\n   {page.content[:200]}")
    return 0


def main(argv: list[str] | None = None) -> int:  # pragma: no cover - convenience CLI
    from observability.logging import configure_logging

    configure_logging()
    args = _build_parser().parse_args(argv)
    return asyncio.run(_run_cli(args))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
