"""Browser automation collaborators used by the crawler.

The crawler only needs a handful of capabilities from a browser: navigate,
wait, read HTML, read visible text, read the title and close. Two providers
implement them on top of Playwright:

- :class:`BrowserbaseProvider` creates a remote Browserbase session through
  its REST API and attaches to it over CDP;
- :class:`LocalChromiumProvider` launches a headless Chromium locally.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

import httpx
import structlog

from backend.errors import ProvisioningError
from settings import BrowserbaseSettings

logger = structlog.get_logger(__name__)

NON_CONTENT_SELECTORS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "iframe",
    "nav",
    "footer",
    "header",
)

_VISIBLE_TEXT_JS = """
(selectors) => {
  const body = document.body;
  if (!body) { return ''; }
  const clone = body.cloneNode(true);
  clone.querySelectorAll(selectors).forEach((el) => el.remove());
  return clone.innerText || clone.textContent || '';
}
"""

BROWSERBASE_REQUEST_TIMEOUT = 30.0


class BrowserHandle(Protocol):
    """A single navigable page owned by one crawl."""

    async def connect(self) -> None: ...

    async def navigate(self, url: str, timeout_ms: int) -> None: ...

    async def wait(self, ms: int) -> None: ...

    async def html(self) -> str: ...

    async def visible_text(self, exclude_selectors: Sequence[str]) -> str: ...

    async def title(self) -> str: ...

    async def close(self) -> None: ...


class BrowserProvider(Protocol):
    def is_configured(self) -> bool: ...

    async def provision(self) -> BrowserHandle: ...


class PlaywrightHandle:
    """Playwright-backed :class:`BrowserHandle`.

    ``cdp_url`` attaches to an existing remote browser; without it a local
    headless Chromium is launched. ``on_release`` runs after the browser is
    closed to end any remote session.
    """

    def __init__(
        self,
        *,
        cdp_url: str | None = None,
        on_release: Optional[Callable[[], Awaitable[None]]] = None,
        label: str = "local",
    ) -> None:
        self._cdp_url = cdp_url
        self._on_release = on_release
        self.label = label
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Any = None
        self._closed = False

    async def connect(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        if self._cdp_url:
            self._browser = await self._playwright.chromium.connect_over_cdp(self._cdp_url)
            contexts = self._browser.contexts
            context = contexts[0] if contexts else await self._browser.new_context()
        else:
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=["--disable-gpu", "--no-sandbox"],
            )
            context = await self._browser.new_context()
        pages = context.pages
        self._page = pages[0] if pages else await context.new_page()
        logger.info("browser_connected", browser=self.label)

    def _require_page(self) -> Any:
        if self._page is None:
            raise RuntimeError("browser handle is not connected")
        return self._page

    async def navigate(self, url: str, timeout_ms: int) -> None:
        await self._require_page().goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def wait(self, ms: int) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    async def html(self) -> str:
        return await self._require_page().content()

    async def visible_text(self, exclude_selectors: Sequence[str]) -> str:
        text = await self._require_page().evaluate(_VISIBLE_TEXT_JS, ", ".join(exclude_selectors))
        return text or ""

    async def title(self) -> str:
        return await self._require_page().title()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._browser is not None:
            with suppress(Exception):
                await self._browser.close()
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
        self._browser = None
        self._playwright = None
        self._page = None
        if self._on_release is not None:
            await self._on_release()


class LocalChromiumProvider:
    """Launch a headless Chromium on this machine for each crawl."""

    def is_configured(self) -> bool:
        return True

    async def provision(self) -> BrowserHandle:
        return PlaywrightHandle(label="local")


class BrowserbaseProvider:
    """Create Browserbase sessions and attach to them over CDP."""

    def __init__(
        self,
        settings: BrowserbaseSettings,
        *,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=BROWSERBASE_REQUEST_TIMEOUT)
        )
        if not settings.configured:
            logger.warning("browserbase_not_configured")

    def is_configured(self) -> bool:
        return self._settings.configured

    def _headers(self) -> dict[str, str]:
        return {"X-BB-API-Key": self._settings.api_key, "Content-Type": "application/json"}

    def connect_url(self, session_id: str) -> str:
        base = self._settings.connect_url.rstrip("/")
        return f"{base}?apiKey={self._settings.api_key}&sessionId={session_id}"

    async def create_session(self) -> tuple[str, str]:
        """Return ``(session_id, connect_url)`` for a fresh remote session."""

        url = f"{self._settings.api_url.rstrip('/')}/v1/sessions"
        try:
            async with self._client_factory() as client:
                resp = await client.post(
                    url,
                    headers=self._headers(),
                    json={"projectId": self._settings.project_id},
                )
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("browserbase_session_create_failed", error=str(exc))
            raise ProvisioningError() from exc

        session_id = payload.get("id") if isinstance(payload, dict) else None
        if not session_id:
            logger.error("browserbase_session_create_failed", error="missing session id")
            raise ProvisioningError()
        connect_url = payload.get("connectUrl") or self.connect_url(session_id)
        logger.info("browserbase_session_created", session_id=session_id)
        return session_id, connect_url

    async def end_session(self, session_id: str) -> None:
        """Ask Browserbase to release ``session_id``; failures are only logged."""

        url = f"{self._settings.api_url.rstrip('/')}/v1/sessions/{session_id}"
        try:
            async with self._client_factory() as client:
                resp = await client.post(
                    url,
                    headers=self._headers(),
                    json={"projectId": self._settings.project_id, "status": "REQUEST_RELEASE"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("browserbase_session_end_failed", session_id=session_id, error=str(exc))
            return
        logger.info("browserbase_session_ended", session_id=session_id)

    async def provision(self) -> BrowserHandle:
        if not self.is_configured():
            raise ProvisioningError(
                "Browserbase is not configured. Please add BROWSERBASE_API_KEY and "
                "BROWSERBASE_PROJECT_ID to your .env file."
            )
        session_id, connect_url = await self.create_session()

        async def _release() -> None:
            await self.end_session(session_id)

        return PlaywrightHandle(cdp_url=connect_url, on_release=_release, label="browserbase")


def build_browser_provider(settings: Any) -> BrowserProvider:
    """Return the provider selected by ``settings.browser_provider``."""

    if settings.browser_provider == "local":
        return LocalChromiumProvider()
    return BrowserbaseProvider(settings.browserbase)
