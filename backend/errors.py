"""Error taxonomy shared by the crawl, session and protocol layers.

Each exception carries a short, human-readable ``message`` that is safe to
send to a client; diagnostic detail belongs in the logs.
"""

from __future__ import annotations


class ResearchAgentError(Exception):
    """Base class for failures surfaced to clients."""

    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ResearchAgentError, ValueError):
    """Bad URL or request shape; reported verbatim to the user."""

    default_message = "Invalid request"


class ProvisioningError(ResearchAgentError):
    """The remote browser could not be provisioned or connected."""

    default_message = "Failed to initialize browser session"


CrawlInitError = ProvisioningError


class PageFetchError(ResearchAgentError):
    """A single page failed to load or extract; recovered inside the crawl."""

    default_message = "Failed to load page"

    def __init__(self, url: str, message: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class SessionExpiredError(ResearchAgentError):
    """Chat against an unknown or expired session."""

    default_message = "Session expired. Please analyze a new website."


class GenerationFailedError(ResearchAgentError):
    """The text-generation provider failed."""

    default_message = "Failed to generate response with AI"


class ProtocolError(ResearchAgentError):
    """Inbound message did not match the expected envelope."""

    default_message = "Invalid message format"
