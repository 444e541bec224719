"""Exception hierarchy shared across the assistant."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all assistant errors."""


class ConfigError(AssistantError):
    """Configuration file missing or invalid."""


class EmbeddingError(AssistantError):
    """The embedding service failed or returned malformed data."""


class LanguageModelError(AssistantError):
    """The chat model could not produce a response."""


class RetrievalUnavailableError(AssistantError):
    """Similarity search is not possible for the current index."""


class RerankUnavailableError(AssistantError):
    """Reranking could not run; callers fall back to plain retrieval."""


class ToolRegistrationError(AssistantError):
    """A provider could not be registered (for example duplicate tool names)."""


class ToolNotFoundError(AssistantError, KeyError):
    """No registered provider exposes the requested tool."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name

    def __str__(self) -> str:
        return f"Tool not found: {self.tool_name}"


class ToolArgumentError(AssistantError):
    """Tool arguments are missing or cannot be coerced to the expected types."""


class ToolExecutionError(AssistantError):
    """A tool provider failed while executing a call."""
