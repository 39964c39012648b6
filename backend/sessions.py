"""In-memory cache of crawl results keyed by an opaque session id.

Sessions are immutable once created. Expiry is checked lazily on every
lookup and eagerly by :meth:`SessionStore.sweep`, which the application runs
on a fixed interval so memory stays bounded even without reads.
"""

from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Iterable, Optional

import structlog

from backend.security import NormalizedUrl
from models import CrawlSession, PageRecord
from observability.metrics import sessions_active

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60


def new_session_id() -> str:
    return f"session_{secrets.token_urlsafe(18)}"


class SessionStore:
    """Thread-safe TTL map of :class:`CrawlSession` objects.

    ``clock`` returns seconds and defaults to :func:`time.monotonic`; tests
    inject their own to move time forward.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._id_factory = id_factory
        self._sessions: dict[str, CrawlSession] = {}
        self._lock = threading.Lock()

    def _expired(self, session: CrawlSession, now: float) -> bool:
        return now - session.created_at > self.ttl_seconds

    def create(self, url: NormalizedUrl, pages: Iterable[PageRecord]) -> str:
        """Store ``pages`` for ``url`` and return the new session id."""

        frozen_pages = tuple(pages)
        with self._lock:
            session_id = self._id_factory()
            while session_id in self._sessions:
                session_id = self._id_factory()
            self._sessions[session_id] = CrawlSession(
                id=session_id,
                origin_url=url,
                pages=frozen_pages,
                created_at=self._clock(),
            )
            sessions_active.set(len(self._sessions))
        logger.info("session_created", session_id=session_id, pages=len(frozen_pages), url=url.href)
        return session_id

    def get(self, session_id: str) -> Optional[CrawlSession]:
        """Return the session or ``None`` when unknown or past its TTL."""

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("session_not_found", session_id=session_id)
                return None
            if self._expired(session, self._clock()):
                del self._sessions[session_id]
                sessions_active.set(len(self._sessions))
                logger.warning("session_expired", session_id=session_id)
                return None
            return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
            sessions_active.set(len(self._sessions))
        if removed:
            logger.info("session_deleted", session_id=session_id)
        return removed

    def sweep(self) -> int:
        """Evict every expired session; returns how many were removed."""

        with self._lock:
            now = self._clock()
            stale = [sid for sid, session in self._sessions.items() if self._expired(session, now)]
            for sid in stale:
                del self._sessions[sid]
            sessions_active.set(len(self._sessions))
        if stale:
            logger.info("sessions_swept", removed=len(stale))
        return len(stale)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
