"""Exception taxonomy shared by the ingestion and query pipelines."""
from __future__ import annotations


class RagError(RuntimeError):
    """Base class for every error raised by the RAG pipeline."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class InvalidChunkConfiguration(RagError):
    """Raised when chunk size and overlap cannot produce forward progress."""


class UnsupportedFileType(RagError):
    """Raised for uploads whose extension is not in the accepted set."""


class DocumentExtractionFailure(RagError):
    """Raised when a supported file cannot be parsed into text."""


class EmbeddingGenerationFailure(RagError):
    """Raised when the embedding backend fails or times out."""


class StoreUnavailable(RagError):
    """Raised when the vector store backend cannot be reached."""


class DimensionMismatch(RagError):
    """Raised when a vector does not match the index dimension."""


class InvalidQueryParameters(RagError):
    """Raised for search requests with unusable parameters."""


class ChatModelFailure(RagError):
    """Raised when the chat-completion backend fails or times out."""


class SessionBusy(RagError):
    """Raised when a session already has a generation in flight."""


class SessionNotFound(RagError):
    """Raised when a conversation session does not exist."""


__all__ = [
    "ChatModelFailure",
    "DimensionMismatch",
    "DocumentExtractionFailure",
    "EmbeddingGenerationFailure",
    "InvalidChunkConfiguration",
    "InvalidQueryParameters",
    "RagError",
    "SessionBusy",
    "SessionNotFound",
    "StoreUnavailable",
    "UnsupportedFileType",
]
