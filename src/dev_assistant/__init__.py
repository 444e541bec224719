"""Developer assistant: project docs retrieval plus a tool-calling agent."""

from .config import AssistantConfig, ChunkingConfig, RetrievalConfig
from .errors import AssistantError

__all__ = ["AssistantConfig", "AssistantError", "ChunkingConfig", "RetrievalConfig"]
