"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ToolValue = Union[bool, int, float, str, list[Any], None]
Role = Literal["system", "user", "assistant"]
SearchMode = Literal["vector", "keyword", "none"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Document(_CamelModel):
    """An indexed project file."""

    path: str
    content: str
    line_count: int
    byte_size: int

    @classmethod
    def from_text(cls, path: str, content: str) -> "Document":
        return cls(
            path=path,
            content=content,
            line_count=len(content.splitlines()),
            byte_size=len(content.encode("utf-8")),
        )


class Chunk(_CamelModel):
    """A bounded slice of one document, the unit of retrieval."""

    path: str
    content: str
    chunk_index: int = Field(ge=0)

    @property
    def id(self) -> str:
        return f"{self.path}#{self.chunk_index}"


class ToolProperty(BaseModel):
    type: str
    description: str = ""


class ToolInputSchema(BaseModel):
    type: str = "object"
    properties: dict[str, ToolProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolDescriptor(_CamelModel):
    """Name, description and parameter schema of a callable tool."""

    name: str
    description: str
    input_schema: ToolInputSchema = Field(default_factory=ToolInputSchema)
    tags: list[str] = Field(default_factory=list, exclude=True)


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    tool_name: str = Field(
        min_length=1, validation_alias=AliasChoices("name", "tool", "toolName", "tool_name")
    )
    arguments: dict[str, ToolValue] = Field(
        default_factory=dict, validation_alias=AliasChoices("arguments", "args")
    )


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with its score."""

    chunk: Chunk
    score: float
    rank: int = 0


@dataclass(slots=True)
class SearchResult:
    """Ranked chunks plus the distinct source paths backing them."""

    chunks: list[ScoredChunk]
    sources: list[str]
    mode: SearchMode
    reranked: bool = False

    @property
    def found(self) -> bool:
        return bool(self.chunks)

    @classmethod
    def empty(cls) -> "SearchResult":
        return cls(chunks=[], sources=[], mode="none")


@dataclass(slots=True)
class RankedChunk:
    """A reranking candidate; `model_score` is None when it was never scored."""

    chunk: Chunk
    similarity_score: float
    model_score: float | None = None


@dataclass(slots=True)
class ConversationMessage:
    role: Role
    content: str
    tool_result: bool = False


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    error: bool = False


@dataclass(slots=True)
class RetrievalContext:
    """Formatted context string handed to the model, with provenance."""

    context: str
    sources: list[str] = field(default_factory=list)
