"""Application settings models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class BrowserbaseSettings(BaseSettings):
    """Credentials for the remote browser provider.

    Environment variables follow the ``BROWSERBASE_`` prefix, e.g.
    ``BROWSERBASE_API_KEY`` and ``BROWSERBASE_PROJECT_ID``.
    """

    api_key: str = ""
    project_id: str = ""
    api_url: str = "https://api.browserbase.com"
    connect_url: str = "wss://connect.browserbase.com"

    model_config = ConfigDict(extra="ignore", env_prefix="BROWSERBASE_")

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.project_id)


class AnthropicSettings(BaseSettings):
    """Anthropic Messages API parameters (``ANTHROPIC_`` prefix)."""

    api_key: str = ""
    model: str = "claude-3-5-sonnet-20241022"
    summary_max_tokens: int = 2048
    answer_max_tokens: int = 3072
    temperature: float = 0.5

    model_config = ConfigDict(extra="ignore", env_prefix="ANTHROPIC_")


class OllamaSettings(BaseSettings):
    """Ollama HTTP backend parameters (``OLLAMA_`` prefix)."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1"
    request_timeout: float | None = None

    model_config = ConfigDict(extra="ignore", env_prefix="OLLAMA_")


class CrawlSettings(BaseSettings):
    """Crawl budget and pacing (``CRAWL_`` prefix, milliseconds for timings)."""

    default_max_pages: int = 5
    max_pages_limit: int = 50
    page_timeout_ms: int = 30000
    settle_ms: int = 1500
    delay_ms: int = 1000
    content_limit: int = 10000

    model_config = ConfigDict(extra="ignore", env_prefix="CRAWL_")


class SessionSettings(BaseSettings):
    """Crawl session cache lifetime (``SESSION_`` prefix)."""

    ttl_seconds: float = 30 * 60
    sweep_interval_seconds: float = 10 * 60

    model_config = ConfigDict(extra="ignore", env_prefix="SESSION_")


class Settings(BaseSettings):
    """Top level application settings loaded from ``.env``.

    Nested models read their own prefixes (``BROWSERBASE_``, ``ANTHROPIC_``,
    ``OLLAMA_``, ``CRAWL_``, ``SESSION_``) when the application starts.
    """

    debug: bool = False
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=3001, alias="APP_PORT")
    cors_origins: str = Field(default="http://localhost:3000", alias="ALLOWED_ORIGINS")
    browser_provider: Literal["browserbase", "local"] = Field(
        default="browserbase", alias="BROWSER_PROVIDER"
    )
    llm_provider: Literal["anthropic", "ollama"] = Field(default="anthropic", alias="LLM_PROVIDER")

    browserbase: BrowserbaseSettings = Field(default_factory=BrowserbaseSettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


def missing_required_settings(settings: Settings) -> list[str]:
    """Return env variable names the selected providers need but lack."""

    missing: list[str] = []
    if settings.browser_provider == "browserbase":
        if not settings.browserbase.api_key:
            missing.append("BROWSERBASE_API_KEY")
        if not settings.browserbase.project_id:
            missing.append("BROWSERBASE_PROJECT_ID")
    if settings.llm_provider == "anthropic" and not settings.anthropic.api_key:
        missing.append("ANTHROPIC_API_KEY")
    return missing


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached application settings."""

    return Settings()
