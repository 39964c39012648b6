"""FastAPI application setup and lifespan management."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.llm_client import Summarizer, build_summarizer
from backend.research import ResearchService
from backend.sessions import SessionStore
from backend.websocket import ConnectionRegistry
from backend.websocket import router as websocket_router
from crawler.api import router as scrape_router
from crawler.browser import BrowserProvider, build_browser_provider
from crawler.run_crawl import Crawler
from models import HealthResponse
from observability.logging import configure_logging, get_recent_logs
from observability.metrics import MetricsMiddleware, metrics_app
from settings import Settings, get_settings, missing_required_settings

logger = structlog.get_logger(__name__)


async def _sweep_sessions(sessions: SessionStore, interval: float) -> None:
    """Evict expired sessions every ``interval`` seconds until cancelled."""

    while True:
        await asyncio.sleep(interval)
        try:
            sessions.sweep()
        except Exception as exc:  # noqa: BLE001
            logger.error("session_sweep_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the crawl pipeline on ``app.state`` and tear it down on exit.

    Collaborators passed to :func:`create_app` are used as-is; everything
    else is built from settings.
    """

    state = app.state
    settings: Settings = state.settings
    configure_logging(settings.debug)

    missing = missing_required_settings(settings)
    if missing:
        logger.warning("missing_env_settings", missing=missing)

    overrides: dict[str, Any] = state.overrides
    provider: BrowserProvider = overrides.get("provider") or build_browser_provider(settings)
    summarizer: Summarizer = overrides.get("summarizer") or build_summarizer(settings)
    sessions: SessionStore = overrides.get("sessions") or SessionStore(settings.session.ttl_seconds)

    state.sessions = sessions
    state.connections = ConnectionRegistry()
    state.research = ResearchService(
        Crawler.from_settings(provider, settings.crawl),
        summarizer,
        sessions,
    )
    sweeper = asyncio.create_task(_sweep_sessions(sessions, settings.session.sweep_interval_seconds))
    logger.info(
        "app_started",
        browser_provider=settings.browser_provider,
        llm_provider=settings.llm_provider,
        browser_configured=provider.is_configured(),
        llm_configured=summarizer.is_configured(),
    )

    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        logger.info("app_stopped", sessions=sessions.count())
        with suppress(AttributeError):
            del state.research
            del state.connections
            del state.sessions


def _parse_cors_origins(raw: str | list[str] | tuple[str, ...]) -> list[str]:
    """Return a list of CORS origins from a raw env value."""

    if isinstance(raw, (list, tuple)):
        values = [str(item).strip() for item in raw if str(item).strip()]
    else:
        values = [item.strip() for item in str(raw or "").split(",") if item.strip()]
    return values or ["*"]


async def not_found_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse({"error": "Not found", "path": request.url.path}, status_code=404)
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Settings | None = None,
    *,
    provider: BrowserProvider | None = None,
    summarizer: Summarizer | None = None,
    sessions: SessionStore | None = None,
) -> FastAPI:
    """Return a configured application.

    ``provider``, ``summarizer`` and ``sessions`` replace the ones built
    from settings, which is how tests run without a browser or an LLM.
    """

    settings = settings or get_settings()
    app = FastAPI(lifespan=lifespan, debug=settings.debug, title="Web Research Agent")
    app.state.settings = settings
    app.state.overrides = {
        key: value
        for key, value in (("provider", provider), ("summarizer", summarizer), ("sessions", sessions))
        if value is not None
    }

    cors_origins = _parse_cors_origins(settings.cors_origins)
    allow_all_origins = "*" in cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all_origins else cors_origins,
        allow_credentials=not allow_all_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_exception_handler(StarletteHTTPException, not_found_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.mount("/metrics", metrics_app)
    app.include_router(scrape_router)
    app.include_router(websocket_router)

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        """Liveness probe with connected-client and cached-session counts."""
        state = request.app.state
        payload = HealthResponse(
            status="ok",
            timestamp=datetime.now(timezone.utc).isoformat(),
            websocket_connections=state.connections.count(),
            active_sessions=state.sessions.count(),
        )
        return payload.model_dump(by_alias=True)

    if settings.debug:
        @app.get("/logs", include_in_schema=False)
        def logs(limit: int = 200, level: str | None = None) -> dict[str, Any]:
            """Return recent application log lines (default 200), optionally by minimum level."""
            return {"logs": get_recent_logs(limit, level)}

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    _settings = get_settings()
    uvicorn.run("app:app", host=_settings.app_host, port=_settings.app_port, reload=_settings.debug)
