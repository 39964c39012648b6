"""Wire protocol between a connected client and the research agent.

Outbound messages are the four :data:`ProtocolEvent` variants. Inbound
messages share the ``{"type": ..., "data": {...}}`` envelope and are routed
by :class:`EventChannel` to the handler registered for their type.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from starlette.websockets import WebSocketState

from backend.errors import ProtocolError

logger = structlog.get_logger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StatusUpdateData(_Payload):
    message: str
    progress: int = Field(ge=0, le=100)
    current_page: str = Field(default="", alias="currentPage")


class SummaryData(_Payload):
    summary: str
    pages_analyzed: int = Field(alias="pagesAnalyzed")
    session_id: str | None = Field(default=None, alias="sessionId")


class ChatAnswerData(_Payload):
    answer: str


class ErrorData(_Payload):
    message: str


class StatusUpdate(BaseModel):
    type: Literal["status_update"] = "status_update"
    data: StatusUpdateData


class Summary(BaseModel):
    type: Literal["summary"] = "summary"
    data: SummaryData


class ChatAnswer(BaseModel):
    type: Literal["chat_response"] = "chat_response"
    data: ChatAnswerData


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    data: ErrorData


ProtocolEvent = Annotated[
    Union[StatusUpdate, Summary, ChatAnswer, ErrorEvent],
    Field(discriminator="type"),
]
protocol_event_adapter: TypeAdapter[Any] = TypeAdapter(ProtocolEvent)


def status_update(message: str, progress: float, current_page: str = "") -> StatusUpdate:
    clamped = max(0, min(100, int(round(progress))))
    return StatusUpdate(data=StatusUpdateData(message=message, progress=clamped, current_page=current_page))


def summary_event(summary: str, pages_analyzed: int, session_id: str | None = None) -> Summary:
    return Summary(data=SummaryData(summary=summary, pages_analyzed=pages_analyzed, session_id=session_id))


def chat_answer(answer: str) -> ChatAnswer:
    return ChatAnswer(data=ChatAnswerData(answer=answer))


def error_event(message: str) -> ErrorEvent:
    return ErrorEvent(data=ErrorData(message=message))


def encode_event(event: BaseModel) -> str:
    return event.model_dump_json(by_alias=True, exclude_none=True)


class InboundEnvelope(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


Handler = Callable[["EventChannel", Any], Awaitable[None]]


class EventChannel:
    """Per-client relay: the only writer to one WebSocket.

    ``send`` never raises. Events for a transport that is no longer open
    are dropped without buffering.
    """

    def __init__(self, transport: Any, client_id: str) -> None:
        self.transport = transport
        self.client_id = client_id
        self._handlers: dict[str, tuple[type[BaseModel], Handler, str]] = {}
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    def is_open(self) -> bool:
        return (
            getattr(self.transport, "client_state", None) == WebSocketState.CONNECTED
            and getattr(self.transport, "application_state", None) == WebSocketState.CONNECTED
        )

    async def send(self, event: BaseModel) -> None:
        if not self.is_open():
            logger.debug("ws_send_dropped", client_id=self.client_id, event_type=getattr(event, "type", None))
            return
        try:
            async with self._send_lock:
                await self.transport.send_text(encode_event(event))
        except Exception as exc:  # noqa: BLE001
            logger.warning("ws_send_failed", client_id=self.client_id, error=str(exc))

    async def send_status(self, message: str, progress: float, current_page: str = "") -> None:
        await self.send(status_update(message, progress, current_page))

    async def send_summary(self, summary: str, pages_analyzed: int, session_id: str | None = None) -> None:
        await self.send(summary_event(summary, pages_analyzed, session_id))

    async def send_chat_response(self, answer: str) -> None:
        await self.send(chat_answer(answer))

    async def send_error(self, message: str) -> None:
        await self.send(error_event(message))

    def on_inbound(
        self,
        message_type: str,
        model: type[BaseModel],
        handler: Handler,
        *,
        invalid_message: str = "Invalid request",
    ) -> None:
        """Route ``message_type`` envelopes, validated against ``model``, to ``handler``."""
        self._handlers[message_type] = (model, handler, invalid_message)

    async def dispatch(self, raw: str | bytes) -> None:
        """Parse one inbound frame and run its handler to completion."""

        try:
            envelope = InboundEnvelope.model_validate(json.loads(raw))
        except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as exc:
            logger.warning("ws_invalid_message", client_id=self.client_id, error=str(exc))
            await self.send_error(ProtocolError.default_message)
            return

        route = self._handlers.get(envelope.type)
        if route is None:
            logger.warning("ws_unsupported_message", client_id=self.client_id, message_type=envelope.type)
            await self.send_error(f"Unsupported message type: {envelope.type}")
            return

        model, handler, invalid_message = route
        try:
            request = model.model_validate(envelope.data)
        except PydanticValidationError as exc:
            logger.warning(
                "ws_invalid_request",
                client_id=self.client_id,
                message_type=envelope.type,
                error=str(exc),
            )
            await self.send_error(invalid_message)
            return

        logger.info("ws_request_received", client_id=self.client_id, message_type=envelope.type)
        try:
            await handler(self, request)
        except Exception:  # noqa: BLE001
            logger.exception("ws_handler_failed", client_id=self.client_id, message_type=envelope.type)
            await self.send_error("An unexpected error occurred")

    def spawn(self, raw: str | bytes) -> asyncio.Task:
        """Dispatch ``raw`` in its own task so the receive loop keeps reading."""

        task = asyncio.create_task(self.dispatch(raw))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight request tasks (used by tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
