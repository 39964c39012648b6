from __future__ import annotations

import json

import httpx
import pytest

from backend.errors import ProvisioningError
from crawler.browser import (
    BrowserbaseProvider,
    LocalChromiumProvider,
    PlaywrightHandle,
    build_browser_provider,
)
from settings import BrowserbaseSettings, Settings


def _provider(handler, **overrides) -> tuple[BrowserbaseProvider, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    settings = BrowserbaseSettings(
        api_key=overrides.pop("api_key", "bb-key"),
        project_id=overrides.pop("project_id", "proj-1"),
        api_url="https://bb.test",
    )
    transport = httpx.MockTransport(recording)
    return BrowserbaseProvider(settings, client_factory=lambda: httpx.AsyncClient(transport=transport)), seen


@pytest.mark.asyncio
async def test_create_session_posts_project_with_api_key():
    provider, seen = _provider(
        lambda request: httpx.Response(201, json={"id": "sess-1", "connectUrl": "wss://connect.test/sess-1"})
    )

    session_id, connect_url = await provider.create_session()

    assert (session_id, connect_url) == ("sess-1", "wss://connect.test/sess-1")
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://bb.test/v1/sessions"
    assert request.headers["X-BB-API-Key"] == "bb-key"
    assert json.loads(request.content) == {"projectId": "proj-1"}


@pytest.mark.asyncio
async def test_missing_connect_url_is_built_from_session_id():
    provider, _ = _provider(lambda request: httpx.Response(201, json={"id": "sess-2"}))
    _, connect_url = await provider.create_session()
    assert connect_url == "wss://connect.browserbase.com?apiKey=bb-key&sessionId=sess-2"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(401, json={"error": "bad key"}), httpx.Response(200, json={"status": "no id"})],
)
async def test_create_session_failures_become_provisioning_errors(response):
    provider, _ = _provider(lambda request: response)
    with pytest.raises(ProvisioningError) as info:
        await provider.create_session()
    assert info.value.message == "Failed to initialize browser session"


@pytest.mark.asyncio
async def test_provision_without_credentials_fails_fast():
    provider, seen = _provider(lambda request: httpx.Response(500), api_key="")
    with pytest.raises(ProvisioningError) as info:
        await provider.provision()
    assert "BROWSERBASE_API_KEY" in info.value.message
    assert seen == []


@pytest.mark.asyncio
async def test_closing_an_unconnected_handle_releases_the_remote_session():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/sessions":
            return httpx.Response(201, json={"id": "sess-3", "connectUrl": "wss://connect.test"})
        return httpx.Response(200, json={})

    provider, seen = _provider(handler)
    handle = await provider.provision()
    assert isinstance(handle, PlaywrightHandle)

    await handle.close()
    await handle.close()

    release = [request for request in seen if request.url.path == "/v1/sessions/sess-3"]
    assert len(release) == 1
    assert json.loads(release[0].content) == {"projectId": "proj-1", "status": "REQUEST_RELEASE"}


@pytest.mark.asyncio
async def test_release_failure_is_only_logged():
    provider, _ = _provider(lambda request: httpx.Response(503))
    await provider.end_session("sess-4")


def test_provider_selection():
    assert isinstance(build_browser_provider(Settings(BROWSER_PROVIDER="local")), LocalChromiumProvider)
    assert isinstance(build_browser_provider(Settings(BROWSER_PROVIDER="browserbase")), BrowserbaseProvider)
