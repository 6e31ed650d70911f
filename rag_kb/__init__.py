"""rag-kb - Knowledge base construction and retrieval for RAG question answering."""

from .builder import build_kb, compute_chunk_sizing
from .corpus import Document, docs_signature, list_documents, scan_documents
from .errors import (
    EmbeddingProviderError,
    EmptyCorpusError,
    ExtractionError,
    KBError,
    MalformedDatasetError,
)
from .loader import KnowledgeBase, KnowledgeBaseHandle, is_stale, load_kb
from .merge import MergeMode, build_qa_kb, merge_qa, merge_qa_into_kb
from .retriever import cosine_similarity, retrieve
from .schemas import ChunkRecord, Manifest, QABlock, RetrievalResult
from .utils import chunk_text, normalize_text

__version__ = "0.2.0"

__all__ = [
    "build_kb",
    "compute_chunk_sizing",
    "Document",
    "docs_signature",
    "list_documents",
    "scan_documents",
    "EmbeddingProviderError",
    "EmptyCorpusError",
    "ExtractionError",
    "KBError",
    "MalformedDatasetError",
    "KnowledgeBase",
    "KnowledgeBaseHandle",
    "is_stale",
    "load_kb",
    "MergeMode",
    "build_qa_kb",
    "merge_qa",
    "merge_qa_into_kb",
    "cosine_similarity",
    "retrieve",
    "ChunkRecord",
    "Manifest",
    "QABlock",
    "RetrievalResult",
    "chunk_text",
    "normalize_text",
]
