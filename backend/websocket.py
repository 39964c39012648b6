"""WebSocket endpoint and registry of connected clients."""

from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from backend.events import EventChannel
from observability.logging import bind_connection, clear_connection
from observability.metrics import ws_connections

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["realtime"])

WELCOME_MESSAGE = "Connected to Web Research Agent"


class ConnectionRegistry:
    """Map of client id to :class:`EventChannel` for every open socket."""

    def __init__(self) -> None:
        self._channels: dict[str, EventChannel] = {}
        self._lock = asyncio.Lock()

    async def register(self, channel: EventChannel) -> None:
        async with self._lock:
            self._channels[channel.client_id] = channel
            ws_connections.set(len(self._channels))
        logger.info("ws_client_registered", client_id=channel.client_id, connections=len(self._channels))

    async def unregister(self, client_id: str) -> None:
        async with self._lock:
            self._channels.pop(client_id, None)
            ws_connections.set(len(self._channels))
        logger.info("ws_client_unregistered", client_id=client_id, connections=len(self._channels))

    def count(self) -> int:
        return len(self._channels)

    def get(self, client_id: str) -> EventChannel | None:
        return self._channels.get(client_id)

    async def broadcast(self, event: BaseModel) -> int:
        """Send ``event`` to every open channel; returns how many were open."""

        sent = 0
        for channel in list(self._channels.values()):
            if channel.is_open():
                await channel.send(event)
                sent += 1
        return sent


def new_client_id() -> str:
    return f"client_{uuid4().hex}"


def _frame_payload(message: dict[str, Any]) -> str | bytes | None:
    if message.get("text") is not None:
        return message["text"]
    if message.get("bytes") is not None:
        return message["bytes"]
    return None


@router.websocket("/ws")
@router.websocket("/")
async def research_websocket(websocket: WebSocket) -> None:
    """Bidirectional channel for crawl requests, progress and answers.

    Every inbound frame is handled in its own task, so a client may ask a
    question while a crawl is still running. Tasks keep running after the
    client disconnects; their remaining events are dropped.
    """

    await websocket.accept()
    state = websocket.app.state
    registry: ConnectionRegistry = state.connections
    client_id = new_client_id()
    bind_connection(client_id)
    channel = EventChannel(websocket, client_id)
    state.research.register(channel)
    await registry.register(channel)
    await channel.send_status(WELCOME_MESSAGE, 0)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message["type"] != "websocket.receive":
                logger.warning("ws_unexpected_message", client_id=client_id, message_type=message["type"])
                continue
            payload = _frame_payload(message)
            if payload is None:
                continue
            channel.spawn(payload)
    except WebSocketDisconnect:
        pass
    except Exception as exc:  # noqa: BLE001
        logger.error("ws_receive_failed", client_id=client_id, error=str(exc))
    finally:
        logger.info("ws_client_disconnected", client_id=client_id)
        await registry.unregister(client_id)
        clear_connection()
