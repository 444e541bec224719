"""Configuration models for the dev assistant."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from dev_assistant.errors import ConfigError

DEFAULT_CONFIG_PATH = "config.yaml"


class ProjectInfo(BaseModel):
    """The project whose documentation is indexed."""

    name: str
    path: str
    docs: list[str] = Field(default_factory=lambda: ["README.md", "docs/**"])
    ignore: list[str] = Field(default_factory=lambda: [".git", "node_modules", "build"])


class AIConfig(BaseModel):
    """Chat model served behind an OpenAI-compatible endpoint."""

    provider: str = "huggingface"
    model: str = "Qwen/Qwen2.5-7B-Instruct"
    api_key: str = ""
    max_tokens: int = Field(default=2048, ge=1)
    api_url: str | None = None
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)


class GitConfig(BaseModel):
    enabled: bool = True


class VectorizationConfig(BaseModel):
    """Embedding service settings (Ollama-style HTTP API)."""

    enabled: bool = False
    ollama_url: str = "http://localhost:11434"
    model: str = "mxbai-embed-large"


class ChunkingConfig(BaseModel):
    """Character-bounded paragraph/sentence chunking."""

    max_chunk_size: int = Field(default=1500, ge=50)


class RetrievalConfig(BaseModel):
    """Configures search limits and embedding input bounds."""

    default_limit: int = Field(default=5, ge=1)
    context_chunks: int = Field(default=3, ge=1)
    candidate_pool: int = Field(default=50, ge=1)
    max_embedding_chars: int = Field(default=8000, ge=100)


class RerankConfig(BaseModel):
    """Configures threshold filtering and model-scored reranking."""

    min_similarity: float = Field(default=0.25, ge=-1.0, le=1.0)
    top_k: int = Field(default=3, ge=1)
    max_chunks_for_model: int = Field(default=20, ge=1)


class AgentConfig(BaseModel):
    """Configures the tool-calling loop."""

    max_iterations: int = Field(default=10, ge=1, le=15)
    rejection_sentinel: str = Field(default="RERANK_REQUIRED", min_length=1)
    max_sessions: int = Field(default=1000, ge=1)


class IndexConfig(BaseModel):
    cache_path: str = ".dev_assistant/index.json"


class ToolServerConfig(BaseModel):
    """An external tool server spoken to over stdio JSON-RPC."""

    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class AssistantConfig(BaseModel):
    """Root configuration loaded from `config.yaml`."""

    project: ProjectInfo
    ai: AIConfig = Field(default_factory=AIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    vectorization: VectorizationConfig = Field(default_factory=VectorizationConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    tool_servers: list[ToolServerConfig] = Field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "AssistantConfig":
        """Load and validate a YAML config file.

        The path defaults to `$DEV_ASSISTANT_CONFIG`, then `config.yaml` in the
        working directory.
        """
        config_path = Path(path or os.getenv("DEV_ASSISTANT_CONFIG", DEFAULT_CONFIG_PATH))
        if not config_path.is_file():
            raise ConfigError(
                f"Config file not found: {config_path}. "
                "Copy config.yaml.example to config.yaml and configure it."
            )
        try:
            payload: Any = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file is not valid YAML: {config_path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {config_path}:\n{exc}") from exc
