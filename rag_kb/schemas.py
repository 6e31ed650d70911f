"""Data schemas for the knowledge base and its query results."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Snake-case attributes serialized with camelCase JSON keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ChunkRecord(_CamelModel):
    """Represents a single chunk in the knowledge base."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    doc: str
    chunk_index: int = 0
    text: str
    embedding: Optional[List[float]] = None

    @staticmethod
    def make_id(doc: str, chunk_index: int) -> str:
        return f"{doc}::{chunk_index}"


class Manifest(_CamelModel):
    """Knowledge base build manifest, persisted as the index `meta`."""
    created_at: str
    embed_model: str
    chat_model: str
    target_chunk_count: int
    chunk_size_chars: int
    overlap_chars: int
    doc_count: int
    chunk_count: int
    docs_signature: Optional[str] = None


class KnowledgeBaseFile(_CamelModel):
    """On-disk shape of the knowledge base."""
    meta: Manifest
    chunks: List[ChunkRecord] = Field(default_factory=list)


class QABlock(BaseModel):
    """A question/answer pair flattened into one retrievable block."""
    id: str
    title: str
    source: str
    text: str
    tags: List[str] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


class RetrievalResult(_CamelModel):
    """A chunk selected for a query, with its cosine similarity."""
    doc: str
    chunk_index: int
    text: str
    score: float


class SourceRef(_CamelModel):
    """Citation returned to the caller instead of the full chunk."""
    doc: str
    chunk_index: int
    score: float
    snippet: str


class AskResult(_CamelModel):
    """Outcome of answering one question."""
    ok: bool
    answer: Optional[str] = None
    sources: List[SourceRef] = Field(default_factory=list)
    meta: Optional[Manifest] = None
    error: Optional[str] = None


class BuildResult(_CamelModel):
    """Outcome of an explicit rebuild."""
    ok: bool
    meta: Optional[Manifest] = None
    error: Optional[str] = None


class StatusReport(_CamelModel):
    """Corpus listing and current index metadata."""
    docs: List[str] = Field(default_factory=list)
    has_kb: bool = False
    meta: Optional[Manifest] = None
