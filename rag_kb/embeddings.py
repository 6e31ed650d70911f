"""Embedding provider adapter over the LangChain `Embeddings` interface."""

from __future__ import annotations

from typing import List

from langchain_community.embeddings import OllamaEmbeddings
from langchain_core.embeddings import Embeddings
from tqdm import tqdm

from .errors import EmbeddingProviderError
from .utils import iter_batches


DEFAULT_BATCH_SIZE = 64


def create_embeddings(model: str, base_url: str) -> Embeddings:
    """Default embeddings client (Ollama)."""
    return OllamaEmbeddings(model=model, base_url=base_url)


def _check_vectors(vectors, expected: int) -> List[List[float]]:
    if not isinstance(vectors, list) or len(vectors) != expected:
        got = len(vectors) if isinstance(vectors, list) else type(vectors).__name__
        raise EmbeddingProviderError(
            f"Embedding batch returned mismatched vector count: expected {expected}, got {got}"
        )
    return [[float(value) for value in vector] for vector in vectors]


def embed_texts(
    embeddings_client: Embeddings,
    texts: List[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
    show_progress: bool = True,
) -> List[List[float]]:
    """
    Embed texts in sequential batches.

    Vector i of the result always belongs to texts[i]. There is no retry:
    the first provider failure aborts the whole call.

    Raises:
        EmbeddingProviderError: If the provider fails or returns a wrong count
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")

    vectors: List[List[float]] = []
    with tqdm(total=len(texts), desc="Embedding chunks", disable=not show_progress) as progress:
        for batch in iter_batches(texts, batch_size):
            try:
                batch_vectors = embeddings_client.embed_documents(batch)
            except Exception as exc:
                raise EmbeddingProviderError(f"Embedding failed: {exc}") from exc
            vectors.extend(_check_vectors(batch_vectors, len(batch)))
            progress.update(len(batch))
    return vectors


def embed_query(embeddings_client: Embeddings, text: str) -> List[float]:
    """Embed a single query string."""
    try:
        vector = embeddings_client.embed_query(text)
    except Exception as exc:
        raise EmbeddingProviderError(f"Query embedding failed: {exc}") from exc
    if not vector:
        raise EmbeddingProviderError("Query embedding is empty")
    return [float(value) for value in vector]
