"""Utility functions for KB building."""

from __future__ import annotations

import json
import math
import os
import re
import tempfile
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union


PARAGRAPH_SEPARATOR = "\n\n"

# Paragraphs longer than this multiple of the chunk size are hard-split.
OVERSIZE_FACTOR = 1.8

_LINE_ENDINGS_RE = re.compile(r"\r\n?")
_TRAILING_WS_RE = re.compile(r"[ \t]+\n")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]{2,}")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: Optional[str]) -> str:
    """Canonicalize line endings and whitespace.

    Converts CRLF/CR to LF, strips trailing whitespace on every line,
    collapses 3+ consecutive newlines to one blank line, collapses runs of
    spaces/tabs to a single space and trims the result.
    """
    if not text:
        return ""
    text = _LINE_ENDINGS_RE.sub("\n", text).replace("\u00a0", " ")
    text = _TRAILING_WS_RE.sub("\n", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    return text.strip()


def split_paragraphs(text: str) -> List[str]:
    """Split normalized text on blank lines, dropping empty paragraphs."""
    parts = _PARAGRAPH_SPLIT_RE.split(normalize_text(text))
    return [part.strip() for part in parts if part.strip()]


def split_text(text: str, max_len: int) -> List[str]:
    """Hard-split text into consecutive slices of max_len characters."""
    if max_len <= 0:
        return [text]
    return [text[start : start + max_len] for start in range(0, len(text), max_len)]


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """
    Split text into overlapping chunks along paragraph boundaries.

    Paragraphs are packed into a buffer of at most chunk_size characters.
    When the next paragraph does not fit, the buffer is emitted and the new
    buffer starts with the last `overlap` characters of the emitted one.
    Paragraphs longer than chunk_size * 1.8 are emitted as fixed-size slices
    without overlap.

    Args:
        text: Raw document text (normalized here)
        chunk_size: Target chunk size in characters
        overlap: Characters carried over between consecutive chunks

    Returns:
        List of non-empty chunk strings

    Raises:
        ValueError: If chunk_size/overlap are out of range
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if overlap <= 0:
        raise ValueError("overlap must be > 0")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    limit = chunk_size * OVERSIZE_FACTOR
    chunks: List[str] = []
    current = ""

    def flush(value: str) -> None:
        value = value.strip()
        if value:
            chunks.append(value)

    for paragraph in split_paragraphs(text):
        if len(paragraph) > limit:
            flush(current)
            current = ""
            for piece in split_text(paragraph, chunk_size):
                flush(piece)
            continue

        if len(current) + len(paragraph) + len(PARAGRAPH_SEPARATOR) <= chunk_size:
            current = f"{current}{PARAGRAPH_SEPARATOR}{paragraph}" if current else paragraph
            continue

        flush(current)
        tail = current[-overlap:] if current else ""
        # Keep the seeded buffer within the oversize bound.
        room = int(limit) - len(paragraph) - len(PARAGRAPH_SEPARATOR)
        if len(tail) > room:
            tail = tail[len(tail) - room :] if room > 0 else ""
        current = f"{tail}{PARAGRAPH_SEPARATOR}{paragraph}" if tail else paragraph

    flush(current)
    return chunks


def iter_batches(items: List, batch_size: int) -> Iterable[List]:
    """Yield batches of items."""
    for start in range(0, len(items), batch_size):
        yield items[start : start + batch_size]


def clamp_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    """Coerce value to an int within [minimum, maximum], or return default."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(minimum, min(maximum, int(number)))


def fold_text(text: Any) -> str:
    """Trim, case-fold and strip accents for duplicate detection."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).strip().casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def make_snippet(text: str, limit: int = 240) -> str:
    """Single-line excerpt of text, truncated with an ellipsis."""
    flat = collapse_whitespace(text)
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "…"


def utc_isoformat(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a 'Z' suffix."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def backup_stamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with ':' and '.' replaced by '-'."""
    return utc_isoformat(now).replace(":", "-").replace(".", "-")


def backup_path(path: Union[str, Path], now: Optional[datetime] = None) -> Path:
    """Path of the timestamped backup written next to path."""
    path = Path(path)
    return path.with_name(f"{path.stem}_backup_{backup_stamp(now)}.json")


def read_json(path: Union[str, Path]) -> Any:
    """Load a JSON file, tolerating a UTF-8 byte order mark."""
    with open(path, "r", encoding="utf-8-sig") as handle:
        return json.load(handle)


def write_json_atomic(path: Union[str, Path], payload: Any, indent: Optional[int] = None) -> None:
    """Write JSON to a temp file in the target directory, then rename over path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}_", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=indent)
            handle.flush()
            os.fsync(handle.fileno())
        # mkstemp creates 0600; give the file the mode a plain open() would.
        umask = os.umask(0)
        os.umask(umask)
        os.chmod(tmp_name, 0o666 & ~umask)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
