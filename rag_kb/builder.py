"""Build the knowledge base index from a corpus directory."""

from __future__ import annotations

import math
import shutil
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from langchain_core.embeddings import Embeddings
from tqdm import tqdm

from .corpus import docs_signature, extract_text, list_documents, scan_documents
from .embeddings import DEFAULT_BATCH_SIZE, embed_texts
from .errors import EmptyCorpusError, UserAbort
from .schemas import ChunkRecord, KnowledgeBaseFile, Manifest
from .utils import backup_path, chunk_text, clamp_int, normalize_text, utc_isoformat, write_json_atomic


MIN_DOC_CHARS = 80

DEFAULT_TARGET_CHUNKS = 150

DEFAULT_CHUNK_SIZE = 1400
MIN_CHUNK_SIZE = 800
MAX_CHUNK_SIZE = 3200

OVERLAP_RATIO = 0.12
MIN_OVERLAP = 80
MAX_OVERLAP = 450


def compute_chunk_sizing(total_chars: int, target_chunks: int) -> Tuple[int, int]:
    """
    Pick chunk size and overlap from the corpus size.

    The chunk size aims at `target_chunks` chunks for the whole corpus,
    clamped to [800, 3200]; the overlap is 12% of it, clamped to [80, 450].

    Returns:
        (chunk_size_chars, overlap_chars)
    """
    if total_chars <= 0 or target_chunks <= 0:
        chunk_size = DEFAULT_CHUNK_SIZE
    else:
        chunk_size = clamp_int(
            math.ceil(total_chars / target_chunks), DEFAULT_CHUNK_SIZE, MIN_CHUNK_SIZE, MAX_CHUNK_SIZE
        )
    overlap = clamp_int(round(chunk_size * OVERLAP_RATIO), MIN_OVERLAP, MIN_OVERLAP, MAX_OVERLAP)
    return chunk_size, overlap


def _confirm_rebuild() -> None:
    """Ask before rebuilding when attached to a terminal."""
    if sys.stdin.isatty():
        answer = input("Proceed with rebuild? (y/n): ").strip().lower()
        if answer not in ("y", "yes"):
            raise UserAbort("KB rebuild aborted by user.")


def _load_corpus_texts(documents, show_progress: bool) -> List[Tuple[str, str]]:
    """Extract and normalize each document, dropping near-empty ones."""
    texts: List[Tuple[str, str]] = []
    progress = tqdm(documents, desc="Parsing documents", disable=not show_progress)
    for document in progress:
        progress.set_postfix_str(document.name)
        text = normalize_text(extract_text(document))
        if len(text) < MIN_DOC_CHARS:
            tqdm.write(f"[WARN] skipped short document: {document.name} ({len(text)} chars)")
            continue
        texts.append((document.name, text))
    return texts


def build_kb(
    corpus_dir: Union[str, Path],
    kb_path: Union[str, Path],
    embeddings_client: Embeddings,
    embed_model: str,
    chat_model: str = "",
    target_chunks: int = DEFAULT_TARGET_CHUNKS,
    batch_size: int = DEFAULT_BATCH_SIZE,
    confirm: bool = False,
    now: Optional[Callable[[], datetime]] = None,
    show_progress: bool = True,
) -> Manifest:
    """
    Build the knowledge base from the documents in corpus_dir.

    Args:
        corpus_dir: Directory containing .pdf/.txt/.md files
        kb_path: Knowledge base JSON file to (re)write
        embeddings_client: LangChain embeddings instance (e.g., OllamaEmbeddings)
        embed_model: Name of embedding model (for manifest metadata)
        chat_model: Name of answer model (for manifest metadata)
        target_chunks: Chunk budget the adaptive chunk size aims for
        batch_size: Batch size for embedding
        confirm: Prompt before rebuilding when stdin is a terminal
        now: Clock used for createdAt and the backup name
        show_progress: Show tqdm progress bars

    Returns:
        Manifest with build metadata

    Raises:
        UserAbort: If user cancels at prompt
        EmptyCorpusError: If no document survives extraction and filtering
        ExtractionError: If a document cannot be read
        EmbeddingProviderError: If embedding fails
    """
    start_time = time.perf_counter()
    kb_path = Path(kb_path)

    included, skipped = scan_documents(corpus_dir)
    print(f"Scan summary: included={len(included)}, skipped={len(skipped)}")

    if not included:
        raise EmptyCorpusError(f"No documents found in {corpus_dir} (PDF/TXT/MD).")

    if confirm:
        _confirm_rebuild()

    texts = _load_corpus_texts(included, show_progress)
    if not texts:
        raise EmptyCorpusError(
            f"No document in {corpus_dir} has at least {MIN_DOC_CHARS} characters of text."
        )

    total_chars = sum(len(text) for _, text in texts)
    chunk_size, overlap = compute_chunk_sizing(total_chars, target_chunks)

    pieces: List[Tuple[str, int, str]] = []
    for name, text in texts:
        for chunk_index, piece in enumerate(chunk_text(text, chunk_size, overlap)):
            pieces.append((name, chunk_index, piece))

    print(f"Starting embedding: chunks={len(pieces)}, chunk_size={chunk_size}, overlap={overlap}")
    vectors = embed_texts(
        embeddings_client,
        [piece for _, _, piece in pieces],
        batch_size=batch_size,
        show_progress=show_progress,
    )

    records = [
        ChunkRecord(
            id=ChunkRecord.make_id(name, chunk_index),
            doc=name,
            chunk_index=chunk_index,
            text=piece,
            embedding=vector,
        )
        for (name, chunk_index, piece), vector in zip(pieces, vectors)
    ]

    # Signed after extraction so edits made during the build leave the index stale.
    signature = docs_signature(list_documents(corpus_dir))

    moment = now() if now else datetime.now(timezone.utc)
    manifest = Manifest(
        created_at=utc_isoformat(moment),
        embed_model=embed_model,
        chat_model=chat_model,
        target_chunk_count=target_chunks,
        chunk_size_chars=chunk_size,
        overlap_chars=overlap,
        doc_count=len(texts),
        chunk_count=len(records),
        docs_signature=signature,
    )
    payload = KnowledgeBaseFile(meta=manifest, chunks=records).to_json_dict()

    if kb_path.exists():
        backup = backup_path(kb_path, moment)
        shutil.copy2(kb_path, backup)
        print(f"Backup written: {backup}")

    write_json_atomic(kb_path, payload)

    elapsed = time.perf_counter() - start_time
    print(f"Build summary: docs={manifest.doc_count}, chunks={manifest.chunk_count}")
    print(f"Build summary: duration={elapsed:.1f}s, output={kb_path}")

    return manifest
