"""Handlers for the two client requests: start a crawl and ask a question.

Both handlers report through an :class:`~backend.events.EventChannel` and
never raise for expected failures; each one ends with a terminal event
(``summary``, ``chat_response`` or ``error``).
"""

from __future__ import annotations

from typing import Optional

import structlog

from backend.errors import GenerationFailedError, ProvisioningError, SessionExpiredError
from backend.events import EventChannel
from backend.llm_client import Summarizer
from backend.prompt import build_fallback_summary, format_summary
from backend.security import UrlRejected, normalize_url
from backend.sessions import SessionStore
from crawler.run_crawl import Crawler
from models import ChatQuestion, ScrapeRequest

logger = structlog.get_logger(__name__)

SCRAPE_FAILED = "An unexpected error occurred during scraping"
AI_UNAVAILABLE = "AI service is not available"
SESSION_EXPIRED = SessionExpiredError.default_message


class ResearchService:
    """Wire a crawler, a text generator and the session cache together."""

    def __init__(
        self,
        crawler: Crawler,
        summarizer: Summarizer,
        sessions: SessionStore,
    ) -> None:
        self.crawler = crawler
        self.summarizer = summarizer
        self.sessions = sessions

    def register(self, channel: EventChannel) -> None:
        channel.on_inbound(
            "start_scrape",
            ScrapeRequest,
            self.handle_start_scrape,
            invalid_message="Invalid scrape request",
        )
        channel.on_inbound(
            "chat_question",
            ChatQuestion,
            self.handle_chat_question,
            invalid_message="Invalid chat request",
        )

    async def handle_start_scrape(self, channel: EventChannel, request: ScrapeRequest) -> Optional[str]:
        """Crawl, cache and summarize ``request.url``.

        Returns the new session id, or ``None`` when the request ended in an
        error event.
        """

        try:
            origin = normalize_url(request.url)
        except UrlRejected as exc:
            logger.warning(
                "scrape_rejected",
                client_id=channel.client_id,
                reason=exc.reason.value,
                url=request.url,
            )
            await channel.send_error(exc.message)
            return None

        log = logger.bind(client_id=channel.client_id, url=origin.href, max_pages=request.max_pages)
        log.info("scrape_started")
        await channel.send_status("Starting web scraping...", 0, origin.href)

        try:
            pages = await self.crawler.crawl(origin, request.max_pages, channel)
        except ProvisioningError as exc:
            log.error("scrape_provisioning_failed", error=exc.message)
            await channel.send_error(exc.message)
            return None
        except Exception:  # noqa: BLE001
            log.exception("scrape_failed")
            await channel.send_error(SCRAPE_FAILED)
            return None

        session_id = self.sessions.create(origin, pages)
        log.info("scrape_finished", session_id=session_id, pages=len(pages))

        if not self.summarizer.is_configured():
            log.warning("summarizer_not_configured")
            await channel.send_summary(build_fallback_summary(pages), len(pages))
            return session_id

        await channel.send_status("Analyzing content with AI...", 95)
        try:
            summary = await self.summarizer.summarize(pages, origin.href)
        except GenerationFailedError as exc:
            await channel.send_error(exc.message)
            return None

        await channel.send_summary(
            format_summary(summary, len(pages), self.summarizer.model),
            len(pages),
            session_id,
        )
        return session_id

    async def handle_chat_question(self, channel: EventChannel, request: ChatQuestion) -> None:
        session = self.sessions.get(request.session_id)
        if session is None:
            await channel.send_error(SESSION_EXPIRED)
            return
        if not self.summarizer.is_configured():
            await channel.send_error(AI_UNAVAILABLE)
            return

        logger.info("chat_question", client_id=channel.client_id, session_id=session.id)
        await channel.send_status("Thinking...", 50)
        try:
            answer = await self.summarizer.answer(request.question, session.pages, session.url)
        except GenerationFailedError as exc:
            await channel.send_error(exc.message)
            return
        await channel.send_chat_response(answer)
