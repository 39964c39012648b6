"""Domain records and request/response models used throughout the application."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from backend.security import NormalizedUrl

MAX_PAGES_LIMIT = 50
DEFAULT_MAX_PAGES = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PageRecord:
    """Extracted content of one successfully visited page."""

    url: NormalizedUrl
    title: str
    content: str
    fetched_at_ms: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict:
        return {
            "url": self.url.href,
            "title": self.title,
            "content": self.content,
            "timestamp": self.fetched_at_ms,
        }


@dataclass(frozen=True)
class CrawlSession:
    """Immutable result of one crawl, cached for follow-up questions."""

    id: str
    origin_url: NormalizedUrl
    pages: tuple[PageRecord, ...]
    created_at: float

    @property
    def url(self) -> str:
        return self.origin_url.href


class ScrapeRequest(BaseModel):
    """Body of ``POST /api/scrape`` and data of the ``start_scrape`` message."""

    url: str = Field(min_length=1)
    max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1, le=MAX_PAGES_LIMIT, alias="maxPages")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"example": {"url": "example.com", "maxPages": 5}},
    )


class ScrapeAccepted(BaseModel):
    session_id: str = Field(alias="sessionId")
    status: str = "started"
    url: str
    max_pages: int = Field(alias="maxPages")

    model_config = ConfigDict(populate_by_name=True)


class ChatQuestion(BaseModel):
    """Data of the ``chat_question`` message."""

    question: str = Field(min_length=1)
    session_id: str = Field(min_length=1, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    websocket_connections: int = Field(alias="websocketConnections")
    active_sessions: int = Field(alias="activeSessions")

    model_config = ConfigDict(populate_by_name=True)
