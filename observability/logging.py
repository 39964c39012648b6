"""Logging setup for the research agent.

``configure_logging`` routes structlog through stdlib logging and renders
every event as one JSON object. Recent lines stay in an in-memory ring so
``GET /logs`` can show them; lines older than :data:`LOG_RETENTION_DAYS`
are skipped when read.

Per-connection context (``client_id``) is bound with
:func:`bind_connection` and merged into every event logged from the same
task or from tasks it spawns.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from functools import partial
from typing import Deque, List, NamedTuple, Optional

import structlog

get_logger = structlog.get_logger

LOG_RETENTION_DAYS = 7
RING_CAPACITY = 2000
LINE_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class BufferedLine(NamedTuple):
    created: float
    levelno: int
    text: str


_ring: Optional[Deque[BufferedLine]] = None


class _RingBufferHandler(logging.Handler):
    """Keep the newest ``capacity`` formatted records with their timestamps."""

    def __init__(self, capacity: int = RING_CAPACITY) -> None:
        super().__init__()
        self.buffer: Deque[BufferedLine] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
        except Exception:  # pragma: no cover - formatting must never break logging
            text = record.getMessage()
        self.buffer.append(BufferedLine(record.created, record.levelno, text))


def configure_logging(debug: bool = False) -> None:
    """Configure stdlib logging and structlog; repeated calls are harmless."""

    global _ring

    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    logging.basicConfig(level=level, format="%(message)s")
    root.setLevel(level)

    if _ring is None:
        handler = _RingBufferHandler()
        handler.setFormatter(logging.Formatter(LINE_FORMAT))
        root.addHandler(handler)
        _ring = handler.buffer

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(
                serializer=partial(json.dumps, ensure_ascii=False, default=str)
            ),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def bind_connection(client_id: str) -> None:
    structlog.contextvars.bind_contextvars(client_id=client_id)


def clear_connection() -> None:
    structlog.contextvars.unbind_contextvars("client_id")


def get_recent_logs(limit: int = 200, level: str | None = None) -> List[str]:
    """Return up to ``limit`` buffered lines, oldest first.

    ``level`` (e.g. ``"warning"``) drops lines below that severity.
    """

    if limit <= 0 or not _ring:
        return []
    min_level = logging.getLevelName(level.upper()) if level else logging.NOTSET
    if not isinstance(min_level, int):
        min_level = logging.NOTSET
    cutoff = time.time() - LOG_RETENTION_DAYS * 24 * 3600

    selected: list[str] = []
    for line in reversed(_ring):
        if line.created < cutoff or line.levelno < min_level:
            continue
        selected.append(line.text)
        if len(selected) >= limit:
            break
    selected.reverse()
    return selected
