"""Text-generation backends that summarize crawled pages and answer questions.

Two interchangeable implementations share the :class:`Summarizer` surface:
:class:`AnthropicSummarizer` (Messages API) and :class:`OllamaSummarizer`
(streaming ``/api/generate``). Any provider failure is logged and re-raised
as :class:`GenerationFailedError`; there is no retry.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Optional, Protocol, Sequence

import anthropic
import httpx
import structlog

from backend.errors import GenerationFailedError
from backend.prompt import build_answer_prompt, build_summary_prompt
from models import PageRecord
from settings import AnthropicSettings, OllamaSettings

logger = structlog.get_logger(__name__)

SUMMARY_FAILED = "Failed to generate summary with AI"
ANSWER_FAILED = "Failed to answer question with AI"


class Summarizer(Protocol):
    model: str

    def is_configured(self) -> bool: ...

    async def summarize(self, pages: Sequence[PageRecord], origin_url: str) -> str: ...

    async def answer(self, question: str, pages: Sequence[PageRecord], origin_url: str) -> str: ...


class AnthropicSummarizer:
    """Claude-backed generator using ``anthropic.AsyncAnthropic``."""

    def __init__(self, settings: AnthropicSettings, *, client: Any = None) -> None:
        self._settings = settings
        self.model = settings.model
        self._client = client
        if not settings.api_key:
            logger.warning("anthropic_not_configured")

    def is_configured(self) -> bool:
        return bool(self._settings.api_key) or self._client is not None

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._settings.api_key)
        return self._client

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        message = await self._get_client().messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self._settings.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        texts = [
            block.text
            for block in message.content
            if getattr(block, "type", None) == "text" and getattr(block, "text", None)
        ]
        if not texts:
            raise ValueError("Unexpected response type from Claude")
        return "".join(texts)

    async def summarize(self, pages: Sequence[PageRecord], origin_url: str) -> str:
        prompt = build_summary_prompt(pages, origin_url)
        logger.info("summary_requested", provider="anthropic", url=origin_url, pages=len(pages))
        try:
            return await self._complete(prompt, self._settings.summary_max_tokens)
        except (anthropic.AnthropicError, ValueError) as exc:
            logger.error("summary_generate_failed", provider="anthropic", url=origin_url, error=str(exc))
            raise GenerationFailedError(SUMMARY_FAILED) from exc

    async def answer(self, question: str, pages: Sequence[PageRecord], origin_url: str) -> str:
        prompt = build_answer_prompt(question, pages, origin_url)
        logger.info("answer_requested", provider="anthropic", url=origin_url)
        try:
            return await self._complete(prompt, self._settings.answer_max_tokens)
        except (anthropic.AnthropicError, ValueError) as exc:
            logger.error("answer_generate_failed", provider="anthropic", url=origin_url, error=str(exc))
            raise GenerationFailedError(ANSWER_FAILED) from exc


class OllamaSummarizer:
    """Streaming client for a single Ollama server."""

    def __init__(
        self,
        settings: OllamaSettings,
        *,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self._settings = settings
        self.model = settings.model
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=settings.request_timeout)
        )

    def is_configured(self) -> bool:
        return bool(self._settings.base_url and self.model)

    async def generate(self, prompt: str) -> AsyncIterator[str]:
        url = f"{self._settings.base_url.rstrip('/')}/api/generate"
        payload = {"model": self.model, "prompt": prompt, "stream": True}
        async with self._client_factory() as client:
            async with client.stream("POST", url, json=payload) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(data, dict):
                        continue
                    token = data.get("response")
                    if token:
                        yield token
                        await asyncio.sleep(0)
                    if data.get("done"):
                        return

    async def _collect(self, prompt: str) -> str:
        chunks: list[str] = []
        async for token in self.generate(prompt):
            chunks.append(token)
        text = "".join(chunks).strip()
        if not text:
            raise ValueError("empty completion")
        return text

    async def summarize(self, pages: Sequence[PageRecord], origin_url: str) -> str:
        logger.info("summary_requested", provider="ollama", url=origin_url, pages=len(pages))
        try:
            return await self._collect(build_summary_prompt(pages, origin_url))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("summary_generate_failed", provider="ollama", url=origin_url, error=str(exc))
            raise GenerationFailedError(SUMMARY_FAILED) from exc

    async def answer(self, question: str, pages: Sequence[PageRecord], origin_url: str) -> str:
        logger.info("answer_requested", provider="ollama", url=origin_url)
        try:
            return await self._collect(build_answer_prompt(question, pages, origin_url))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("answer_generate_failed", provider="ollama", url=origin_url, error=str(exc))
            raise GenerationFailedError(ANSWER_FAILED) from exc


def build_summarizer(settings: Any) -> Summarizer:
    """Return the generator selected by ``settings.llm_provider``."""

    if settings.llm_provider == "ollama":
        return OllamaSummarizer(settings.ollama)
    return AnthropicSummarizer(settings.anthropic)
