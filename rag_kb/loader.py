"""Load knowledge bases from disk and decide when they need a rebuild."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import faiss
import numpy as np

from .corpus import docs_signature, list_documents
from .schemas import ChunkRecord, Manifest
from .utils import read_json


@dataclass
class KnowledgeBase:
    """In-memory knowledge base representation."""
    index: Optional[faiss.Index]
    chunks: List[ChunkRecord]
    manifest: Optional[Manifest]

    @property
    def dimension(self) -> int:
        return self.index.d if self.index is not None else 0


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalized float32 copy of matrix; zero rows stay zero."""
    out = np.array(matrix, dtype="float32", order="C", copy=True)
    faiss.normalize_L2(out)
    return out


def build_index(chunks: List[ChunkRecord]) -> Optional[faiss.Index]:
    """Inner-product FAISS index over L2-normalized chunk embeddings."""
    if not chunks:
        return None
    dims = {len(chunk.embedding or []) for chunk in chunks}
    if len(dims) != 1:
        raise ValueError(f"Inconsistent embedding dimensions in knowledge base: {sorted(dims)}")
    matrix = normalize_rows(np.array([chunk.embedding for chunk in chunks], dtype="float32"))
    index = faiss.IndexFlatIP(matrix.shape[1])
    index.add(matrix)
    return index


def knowledge_base_from_payload(payload: Dict[str, Any]) -> KnowledgeBase:
    """
    Build an in-memory knowledge base from a decoded index file.

    Records without an embedding (for example QA blocks merged without an
    embeddings client) are not retrievable and are left out. A payload of
    another shape (a bare block list, `{blocks: [...]}`) loads as an empty,
    unsigned knowledge base, which is always stale.

    Raises:
        ValueError: If a chunk or the meta section is invalid
    """
    if not isinstance(payload, dict):
        payload = {}

    raw_meta = payload.get("meta")
    manifest = Manifest.model_validate(raw_meta) if isinstance(raw_meta, dict) else None

    raw_chunks = payload.get("chunks")
    if not isinstance(raw_chunks, list):
        raw_chunks = []
    chunks = [ChunkRecord.model_validate(raw) for raw in raw_chunks]
    chunks = [chunk for chunk in chunks if chunk.embedding]

    return KnowledgeBase(index=build_index(chunks), chunks=chunks, manifest=manifest)


def load_kb(kb_path: Union[str, Path]) -> Optional[KnowledgeBase]:
    """
    Load a knowledge base from disk.

    Args:
        kb_path: Path to the knowledge base JSON file

    Returns:
        KnowledgeBase, or None when no index has been built yet

    Raises:
        ValueError: If data format is invalid
    """
    kb_file = Path(kb_path)
    if not kb_file.exists():
        return None
    return knowledge_base_from_payload(read_json(kb_file))


def is_stale(kb: Optional[KnowledgeBase], corpus_dir: Union[str, Path]) -> bool:
    """True when kb is missing, unsigned, or built from a different corpus."""
    if kb is None or kb.manifest is None or not kb.manifest.docs_signature:
        return True
    return docs_signature(list_documents(corpus_dir)) != kb.manifest.docs_signature


class KnowledgeBaseHandle:
    """
    Explicit handle on the persisted knowledge base.

    `get()` returns a fresh knowledge base, rebuilding synchronously when the
    index is missing or stale. Rebuilds are serialized by a lock, and the
    staleness check is repeated once the lock is held so a caller that waited
    on someone else's rebuild does not rebuild again.
    """

    def __init__(
        self,
        kb_path: Union[str, Path],
        corpus_dir: Union[str, Path],
        build: Callable[[], Any],
        stale_check: Optional[Callable[[Optional[KnowledgeBase]], bool]] = None,
        load: Callable[[Union[str, Path]], Optional[KnowledgeBase]] = load_kb,
    ):
        self.kb_path = Path(kb_path)
        self.corpus_dir = Path(corpus_dir)
        self._build = build
        self._load = load
        self._stale_check = stale_check or (lambda kb: is_stale(kb, self.corpus_dir))
        self._lock = threading.Lock()

    def load(self) -> Optional[KnowledgeBase]:
        return self._load(self.kb_path)

    def is_stale(self, kb: Optional[KnowledgeBase]) -> bool:
        return self._stale_check(kb)

    def rebuild(self) -> Optional[KnowledgeBase]:
        """Rebuild unconditionally and return the reloaded knowledge base."""
        with self._lock:
            self._build()
            return self.load()

    def get(self) -> Optional[KnowledgeBase]:
        kb = self.load()
        if not self.is_stale(kb):
            return kb
        with self._lock:
            kb = self.load()
            if self.is_stale(kb):
                self._build()
                kb = self.load()
        return kb
