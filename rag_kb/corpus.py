"""Document discovery, text extraction and corpus fingerprinting."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .errors import ExtractionError


SUPPORTED_EXTENSIONS = {".pdf", ".txt", ".md"}

SIGNATURE_SEPARATOR = "::"


@dataclass(frozen=True)
class Document:
    """A file in the corpus directory, as seen at listing time."""
    name: str
    full_path: str
    size_bytes: int
    mtime_ms: float
    extension: str

    @property
    def signature_token(self) -> str:
        return f"{self.name}|{self.size_bytes}|{self.mtime_ms}"


def scan_documents(corpus_dir: Union[str, Path]) -> Tuple[List[Document], List[Dict[str, str]]]:
    """
    Scan the corpus directory for supported documents.

    Only the top level is listed. Dotfiles, non-files and unsupported
    extensions are reported as skipped. The directory is created when it
    does not exist yet.

    Returns:
        (included_documents sorted by name, skipped_entries_with_reasons)
    """
    corpus_dir = Path(corpus_dir)
    corpus_dir.mkdir(parents=True, exist_ok=True)

    included: List[Document] = []
    skipped: List[Dict[str, str]] = []

    for name in sorted(os.listdir(corpus_dir)):
        if name.startswith("."):
            continue
        full_path = corpus_dir / name
        try:
            stat = full_path.stat()
        except OSError:
            skipped.append({"path": str(full_path), "reason": "stat_failed"})
            continue
        if not full_path.is_file():
            continue

        extension = full_path.suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            skipped.append({"path": str(full_path), "reason": "unsupported_extension"})
            continue

        included.append(
            Document(
                name=name,
                full_path=str(full_path),
                size_bytes=stat.st_size,
                mtime_ms=stat.st_mtime_ns / 1_000_000,
                extension=extension,
            )
        )

    return included, skipped


def list_documents(corpus_dir: Union[str, Path]) -> List[Document]:
    """Eligible documents in corpus_dir."""
    included, _ = scan_documents(corpus_dir)
    return included


def docs_signature(documents: Iterable[Document]) -> str:
    """
    Fingerprint a document set from name, size and mtime.

    Tokens are sorted, so the result does not depend on listing order.
    Content is not hashed: a file rewritten with the same size and mtime
    keeps the same signature.
    """
    return SIGNATURE_SEPARATOR.join(sorted(doc.signature_token for doc in documents))


def _extract_pdf(path: str) -> str:
    reader = PdfReader(path)
    parts: List[str] = []
    for page in reader.pages:
        text = page.extract_text()
        if text:
            parts.append(text.strip())
    return "\n\n".join(parts)


def extract_text(document: Document) -> str:
    """
    Read the raw text of a document.

    Raises:
        ExtractionError: If the file cannot be read or parsed
    """
    try:
        if document.extension == ".pdf":
            return _extract_pdf(document.full_path)
        with open(document.full_path, "r", encoding="utf-8") as handle:
            return handle.read()
    except (OSError, ValueError, PyPdfError) as exc:
        raise ExtractionError(document.full_path, str(exc)) from exc
