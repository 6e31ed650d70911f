"""Rank knowledge base chunks against a query with a per-document cap."""

from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

import numpy as np
from langchain_core.embeddings import Embeddings

from .embeddings import embed_query
from .loader import KnowledgeBase, normalize_rows
from .schemas import ChunkRecord, RetrievalResult


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between a and b; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


def rank_chunks(kb: KnowledgeBase, query_vector: Sequence[float]) -> List[Tuple[ChunkRecord, float]]:
    """
    Score every chunk against the query, best first.

    The whole FAISS index is searched, then scores are re-sorted with a
    stable sort so equal scores keep the stored chunk order.
    """
    if kb.index is None or not kb.chunks:
        return []

    query = np.asarray([query_vector], dtype="float32")
    if query.shape[1] != kb.index.d:
        raise ValueError(
            f"Query embedding has {query.shape[1]} dimensions, index has {kb.index.d}"
        )
    query = normalize_rows(query)

    total = kb.index.ntotal
    distances, labels = kb.index.search(query, total)
    scores = np.zeros(total, dtype="float64")
    scores[labels[0]] = distances[0]
    scores = np.clip(scores, -1.0, 1.0)

    order = np.argsort(-scores, kind="stable")
    return [(kb.chunks[int(i)], float(scores[int(i)])) for i in order]


def select_diverse(
    ranked: List[Tuple[ChunkRecord, float]],
    top_k: int,
    per_doc_cap: int,
) -> List[RetrievalResult]:
    """Take ranked chunks in order, at most per_doc_cap per document, until top_k."""
    if top_k < 1:
        raise ValueError("top_k must be >= 1")
    if per_doc_cap < 1:
        raise ValueError("per_doc_cap must be >= 1")

    picked: List[RetrievalResult] = []
    per_doc: Dict[str, int] = {}
    for chunk, score in ranked:
        count = per_doc.get(chunk.doc, 0)
        if count >= per_doc_cap:
            continue
        picked.append(
            RetrievalResult(doc=chunk.doc, chunk_index=chunk.chunk_index, text=chunk.text, score=score)
        )
        per_doc[chunk.doc] = count + 1
        if len(picked) >= top_k:
            break
    return picked


def retrieve(
    kb: KnowledgeBase,
    query: str,
    embeddings_client: Embeddings,
    top_k: int = 10,
    per_doc_cap: int = 3,
) -> List[RetrievalResult]:
    """
    Retrieve the context chunks for a query.

    Args:
        kb: Loaded knowledge base (never modified)
        query: User question
        embeddings_client: Same embedding model the index was built with
        top_k: Maximum number of chunks returned
        per_doc_cap: Maximum number of chunks from any one document

    Returns:
        Up to top_k results ordered by descending score

    Raises:
        EmbeddingProviderError: If the query cannot be embedded
    """
    if top_k < 1:
        raise ValueError("top_k must be >= 1")
    if per_doc_cap < 1:
        raise ValueError("per_doc_cap must be >= 1")
    query_vector = embed_query(embeddings_client, query)
    return select_diverse(rank_chunks(kb, query_vector), top_k, per_doc_cap)
