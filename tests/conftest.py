"""Pytest configuration with basic asyncio support and in-memory fakes.

The fakes stand in for the two outside systems the agent talks to: a
browser (``FakeProvider``/``FakeHandle`` serving a ``FakeSite``) and a text
generator (``FakeSummarizer``). ``FakeTransport`` plays the WebSocket for
``EventChannel`` unit tests.
"""

from __future__ import annotations

import asyncio
import json
from typing import Iterable, Sequence

import pytest
from starlette.websockets import WebSocketState

from backend.errors import GenerationFailedError, ProvisioningError


def pytest_configure(config):
    """Register the ``asyncio`` marker for asynchronous tests."""
    config.addinivalue_line(
        "markers", "asyncio: mark async test to run in event loop"
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Run functions marked with ``asyncio`` in a new event loop."""
    if pyfuncitem.get_closest_marker("asyncio"):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(pyfuncitem.obj(**pyfuncitem.funcargs))
        finally:
            loop.close()
            asyncio.set_event_loop(None)
        return True


class FakeSite:
    """In-memory website: ``href -> (title, outgoing link hrefs)``."""

    def __init__(self, pages: dict[str, tuple[str, Sequence[str]]], failing: Iterable[str] = ()) -> None:
        self.pages = dict(pages)
        self.failing = set(failing)

    def html(self, href: str) -> str:
        title, links = self.pages[href]
        anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
        return f"<html><head><title>{title}</title></head><body>{anchors}</body></html>"

    def text(self, href: str) -> str:
        title, _ = self.pages[href]
        return f"  Welcome to\n\n {title}   page  "


def hub_site(page_count: int, base: str = "https://example.com") -> FakeSite:
    """Home page linking to ``page_count - 1`` leaf pages that link back home."""

    pages: dict[str, tuple[str, Sequence[str]]] = {
        f"{base}/": ("Home", [f"/page-{idx}" for idx in range(1, page_count)]),
    }
    for idx in range(1, page_count):
        pages[f"{base}/page-{idx}"] = (f"Page {idx}", ["/"])
    return FakeSite(pages)


class FakeHandle:
    def __init__(self, site: FakeSite, *, fail_connect: bool = False) -> None:
        self.site = site
        self.fail_connect = fail_connect
        self.navigations: list[str] = []
        self.connected = False
        self.closed = 0
        self._current: str | None = None

    async def connect(self) -> None:
        if self.fail_connect:
            raise RuntimeError("cdp connect refused")
        self.connected = True

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.navigations.append(url)
        if url in self.site.failing or url not in self.site.pages:
            raise RuntimeError(f"net::ERR_FAILED at {url}")
        self._current = url

    async def wait(self, ms: int) -> None:
        return None

    async def html(self) -> str:
        return self.site.html(self._current)

    async def visible_text(self, exclude_selectors: Sequence[str]) -> str:
        return self.site.text(self._current)

    async def title(self) -> str:
        return self.site.pages[self._current][0]

    async def close(self) -> None:
        self.closed += 1


class FakeProvider:
    def __init__(self, site: FakeSite, *, fail: bool = False, fail_connect: bool = False) -> None:
        self.site = site
        self.fail = fail
        self.fail_connect = fail_connect
        self.provisioned = 0
        self.handles: list[FakeHandle] = []

    def is_configured(self) -> bool:
        return not self.fail

    async def provision(self) -> FakeHandle:
        self.provisioned += 1
        if self.fail:
            raise ProvisioningError()
        handle = FakeHandle(self.site, fail_connect=self.fail_connect)
        self.handles.append(handle)
        return handle


class FakeSummarizer:
    model = "fake-model"

    def __init__(self, *, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.summaries: list[tuple[int, str]] = []
        self.questions: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def summarize(self, pages, origin_url: str) -> str:
        if self.fail:
            raise GenerationFailedError("Failed to generate summary with AI")
        self.summaries.append((len(pages), origin_url))
        return f"Summary of {origin_url}"

    async def answer(self, question: str, pages, origin_url: str) -> str:
        if self.fail:
            raise GenerationFailedError("Failed to answer question with AI")
        self.questions.append(question)
        return f"Answer to {question} from {len(pages)} pages"


class FakeTransport:
    """Minimal WebSocket double recording every text frame sent."""

    def __init__(self, *, open: bool = True, fail_send: bool = False, close_after: int | None = None) -> None:
        state = WebSocketState.CONNECTED if open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state
        self.fail_send = fail_send
        self.close_after = close_after
        self.sent: list[dict] = []

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket closed mid-send")
        self.sent.append(json.loads(data))
        if self.close_after is not None and len(self.sent) >= self.close_after:
            self.close()

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def of_type(self, event_type: str) -> list[dict]:
        return [event for event in self.sent if event["type"] == event_type]


class RecordingSink:
    def __init__(self) -> None:
        self.statuses: list[tuple[str, float, str]] = []

    async def send_status(self, message: str, progress: float, current_page: str = "") -> None:
        self.statuses.append((message, progress, current_page))


@pytest.fixture
def fake_site():
    return FakeSite


@pytest.fixture
def make_hub_site():
    return hub_site


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    return RecordingSink()
