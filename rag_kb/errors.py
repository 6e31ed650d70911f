"""Exceptions raised by the knowledge base core."""

from __future__ import annotations

from typing import Optional


class KBError(Exception):
    """Base class for knowledge base failures."""
    pass


class EmptyCorpusError(KBError):
    """Raised when a build finds no eligible documents."""
    pass


class ExtractionError(KBError):
    """Raised when a document's text cannot be read or parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to extract text from {path}: {reason}")
        self.path = path
        self.reason = reason


class EmbeddingProviderError(KBError):
    """Raised when the embedding provider fails or returns a bad payload."""
    pass


class MalformedDatasetError(KBError):
    """Raised when a QA dataset file is not a recognized record list."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class GenerationError(KBError):
    """Raised when the answer generator fails."""
    pass


class UserAbort(KBError):
    """Raised when user aborts the build process."""
    pass
