"""Shared fixtures for rag-kb tests."""

from pathlib import Path
from typing import Dict, List, Optional

import pytest
from langchain_core.embeddings import Embeddings


class LetterEmbeddings(Embeddings):
    """Deterministic 26-dim letter-count embeddings; records every call."""

    def __init__(self):
        self.document_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    @staticmethod
    def vector(text: str) -> List[float]:
        counts = [0.0] * 26
        for ch in text.lower():
            if "a" <= ch <= "z":
                counts[ord(ch) - ord("a")] += 1.0
        return counts

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls.append(list(texts))
        return [self.vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        return self.vector(text)


class FixedQueryEmbeddings(Embeddings):
    """Returns a fixed query vector."""

    def __init__(self, query_vector: List[float]):
        self.query_vector = query_vector

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [list(self.query_vector) for _ in texts]

    def embed_query(self, text: str) -> List[float]:
        return list(self.query_vector)


class FailingEmbeddings(Embeddings):
    """Simulates a provider outage."""

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        raise RuntimeError("provider unavailable")

    def embed_query(self, text: str) -> List[float]:
        raise RuntimeError("provider unavailable")


def paragraph(word: str, repeat: int = 40) -> str:
    return " ".join([word] * repeat)


def write_doc(directory: Path, name: str, paragraphs: List[str]) -> Path:
    path = directory / name
    path.write_text("\n\n".join(paragraphs), encoding="utf-8")
    return path


@pytest.fixture
def embeddings() -> LetterEmbeddings:
    return LetterEmbeddings()


@pytest.fixture
def corpus_dir(tmp_path: Path) -> Path:
    docs = tmp_path / "docs"
    docs.mkdir()
    return docs


@pytest.fixture
def kb_path(tmp_path: Path) -> Path:
    return tmp_path / "kb.json"


def chunk_payload(chunks: List[Dict], meta: Optional[Dict] = None) -> Dict:
    """Index payload from (doc, embedding) dicts, numbered per document."""
    counters: Dict[str, int] = {}
    records = []
    for chunk in chunks:
        index = counters.get(chunk["doc"], 0)
        counters[chunk["doc"]] = index + 1
        records.append(
            {
                "id": f"{chunk['doc']}::{index}",
                "doc": chunk["doc"],
                "chunkIndex": index,
                "text": chunk.get("text", f"{chunk['doc']} chunk {index}"),
                "embedding": chunk["embedding"],
            }
        )
    return {"meta": meta, "chunks": records}
